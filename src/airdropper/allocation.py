import logging
from typing import Iterable

from airdropper.errors import EmptyPool
from airdropper.models import BalanceRecord, RecipientEntry, RecipientList, merge_balances

log = logging.getLogger("airdropper.allocation")


def allocate(
    balances: Iterable[BalanceRecord],
    total: int,
    *,
    minimum_balance: int = 0,
    blacklist: Iterable[str] = (),
) -> RecipientList:
    """Split `total` atomic units across holders in proportion to their balances.

    Shares are floored, so the sum never exceeds `total`. Holders whose share rounds
    to zero get no entry at all.
    """
    if total < 0:
        raise ValueError(f"total must not be negative, got {total}")
    blocked = set(blacklist)

    records = merge_balances(balances)
    eligible = [r for r in records if r.holder not in blocked and r.balance >= minimum_balance]
    dropped = len(records) - len(eligible)
    if dropped:
        log.info("Dropped %d holders (blacklisted or below minimum balance %d)", dropped, minimum_balance)

    pool = sum(r.balance for r in eligible)
    if pool == 0:
        raise EmptyPool(f"no balance left to allocate against ({len(eligible)} eligible holders)")

    entries = []
    for r in eligible:
        share = r.balance * total // pool
        if share > 0:
            entries.append(RecipientEntry(r.holder, share))

    allocated = sum(e.amount for e in entries)
    assert allocated <= total, f"allocated {allocated} > total {total}"
    log.info(
        "Allocated %d of %d to %d recipients (%d holders got a zero share, dust %d)",
        allocated, total, len(entries), len(eligible) - len(entries), total - allocated,
    )
    return RecipientList(entries)
