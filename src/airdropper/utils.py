import hashlib
from itertools import islice
from pathlib import Path
from typing import Iterable, Iterator, TypeVar

from airdropper.constants import STAGE_SUFFIX, Stage

T = TypeVar("T")


def sha512half(b: bytes) -> bytes:
    return hashlib.sha512(b).digest()[:32]


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    it = iter(items)
    while chunk := list(islice(it, size)):
        yield chunk


def stage_path(base: Path, stage: Stage) -> Path:
    """wallets.csv -> wallets_checked.csv etc. The allocate stage owns the base path itself."""
    suffix = STAGE_SUFFIX.get(stage)
    if suffix is None:
        return base
    return base.with_name(f"{base.stem}_{suffix}{base.suffix}")
