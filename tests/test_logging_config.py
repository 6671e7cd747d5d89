import logging

import pytest

from airdropper.logging_config import setup_logging


@pytest.fixture
def log_file(tmp_path):
    yield tmp_path / "airdropper.log"
    for name in ("airdropper", "xrpl", "httpx"):
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)


def test_levels(log_file):
    setup_logging("debug", str(log_file))
    assert logging.getLogger("airdropper").level == logging.DEBUG
    assert logging.getLogger("xrpl").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_file_is_written_on_first_record(log_file):
    setup_logging("info", str(log_file))
    assert not log_file.exists()
    logging.getLogger("airdropper.test").info("hello from the tests")
    for handler in logging.getLogger("airdropper").handlers:
        handler.flush()
    assert "hello from the tests" in log_file.read_text()
