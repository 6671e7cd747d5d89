"""CSV checkpoints for the wallet list and the balance snapshot.

Wallet list rows: address, amount, destination, status, status payload.
Snapshot rows:    address, balance.
No header. Empty trailing fields may be omitted.
"""

import csv
import logging
import os
import shutil
from itertools import count
from pathlib import Path
from typing import Iterable

from airdropper.errors import CheckpointError, ParseError
from airdropper.models import (
    PAYLOAD_RULES,
    BalanceRecord,
    PayloadRule,
    RecipientEntry,
    RecipientList,
    Status,
    is_hash256,
    validate_address,
)

log = logging.getLogger("airdropper.checkpoint")


def backup_path(path: Path) -> Path:
    """Lowest unused `<name>.<n>` sibling."""
    for n in count(1):
        candidate = path.with_name(f"{path.name}.{n}")
        if not candidate.exists():
            return candidate
    raise AssertionError("unreachable")


def backup(path: Path, *, keep: bool = False) -> Path | None:
    """Move `path` to its next backup name, or copy it there when `keep` is set."""
    if not path.exists():
        return None
    dst = backup_path(path)
    try:
        if keep:
            shutil.copy2(path, dst)
        else:
            path.rename(dst)
    except OSError as e:
        raise CheckpointError(f"could not back up {path}: {e}") from e
    log.info("Backed up %s -> %s", path, dst.name)
    return dst


def _parse_amount(raw: str, where: str) -> int:
    raw = raw.strip()
    if not (raw.isascii() and raw.isdigit()):
        raise ParseError(f"{where}: invalid amount {raw!r}")
    return int(raw)


def _read_rows(path: Path) -> Iterable[tuple[int, list[str]]]:
    try:
        with path.open(newline="") as f:
            for lineno, row in enumerate(csv.reader(f), start=1):
                if not row or not "".join(row).strip():
                    continue
                yield lineno, row
    except OSError as e:
        raise CheckpointError(f"could not read {path}: {e}") from e


def _write_rows(path: Path, rows: Iterable[list[str]], *, rotate: bool = True) -> None:
    """Write through a temp sibling that replaces `path` in one step.

    With `rotate`, the current file is first copied to a backup. `path` exists throughout.
    """
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp.open("w", newline="") as f:
            writer = csv.writer(f, lineterminator="\n")
            writer.writerows(rows)
            f.flush()
            os.fsync(f.fileno())
        if rotate:
            backup(path, keep=True)
        os.replace(tmp, path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise CheckpointError(f"could not write {path}: {e}") from e


# ============================================================================
# Wallet list
# ============================================================================

def parse_entry(row: list[str], where: str) -> RecipientEntry:
    if len(row) < 2 or len(row) > 5:
        raise ParseError(f"{where}: expected 2 to 5 fields, got {len(row)}")
    row = row + [""] * (5 - len(row))
    # reasons are kept verbatim, they may end in whitespace
    address, amount, destination, tag = (field.strip() for field in row[:4])
    payload = row[4] if PAYLOAD_RULES.get(tag) is PayloadRule.REASON else row[4].strip()

    try:
        holder = validate_address(address)
    except ParseError as e:
        raise ParseError(f"{where}: {e}") from None
    amount = _parse_amount(amount, where)

    if destination and not is_hash256(destination):
        log.warning("%s: ignoring malformed destination %r", where, destination)
        destination = ""

    if tag:
        try:
            status = Status(tag, payload or None)
        except ParseError as e:
            raise ParseError(f"{where}: {e}") from None
    elif payload:
        raise ParseError(f"{where}: status payload without a status")
    else:
        status = Status.unprocessed()

    return RecipientEntry(holder=holder, amount=amount, destination=destination.upper() or None, status=status)


def format_entry(e: RecipientEntry) -> list[str]:
    return [e.holder, str(e.amount), e.destination or "", e.status.kind.value, e.status.payload or ""]


def load_wallet_list(path: Path) -> RecipientList:
    path = Path(path)
    entries = [parse_entry(row, f"{path}:{lineno}") for lineno, row in _read_rows(path)]
    wl = RecipientList(entries)
    log.info("Loaded %d entries from %s", len(wl), path)
    return wl


def save_wallet_list(path: Path, wallet_list: RecipientList, *, rotate: bool = True) -> None:
    path = Path(path)
    wallet_list.sort()
    _write_rows(path, (format_entry(e) for e in wallet_list), rotate=rotate)
    log.info("Saved %d entries to %s", len(wallet_list), path)


# ============================================================================
# Snapshot
# ============================================================================

def load_snapshot(path: Path) -> list[BalanceRecord]:
    path = Path(path)
    records = []
    for lineno, row in _read_rows(path):
        where = f"{path}:{lineno}"
        if len(row) != 2:
            raise ParseError(f"{where}: expected 2 fields, got {len(row)}")
        try:
            holder = validate_address(row[0])
        except ParseError as e:
            raise ParseError(f"{where}: {e}") from None
        records.append(BalanceRecord(holder, _parse_amount(row[1], where)))
    log.info("Loaded %d balances from %s", len(records), path)
    return records


def save_snapshot(path: Path, records: Iterable[BalanceRecord]) -> None:
    path = Path(path)
    rows = sorted(([r.holder, str(r.balance)] for r in records), key=lambda row: row[0])
    _write_rows(path, rows)
    log.info("Saved %d balances to %s", len(rows), path)
