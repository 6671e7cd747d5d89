import logging.config
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "airdropper.log")

# Libraries that are chatty below WARNING
QUIET = ("xrpl", "httpx")


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """airdropper logs to stderr and a log file; everything else only warns."""
    handlers = ["console", "file"]
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)-6s %(name)s:%(lineno)d %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default", "stream": "ext://sys.stderr"},
            "file": {
                "class": "logging.FileHandler",
                "formatter": "default",
                "filename": log_file or LOG_FILE,
                "delay": True,  # no file until something is logged
            },
        },
        "loggers": {
            "airdropper": {"level": (level or LOG_LEVEL).upper(), "handlers": handlers, "propagate": False},
            **{name: {"level": "WARNING", "handlers": handlers, "propagate": False} for name in QUIET},
        },
        "root": {"level": "WARNING", "handlers": ["console"]},
    })
