import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable

from airdropper.errors import LedgerClientError
from airdropper.ledger import LedgerClient
from airdropper.models import Asset, BalanceRecord, merge_balances

log = logging.getLogger("airdropper.snapshot")


def take_snapshot(
    client: LedgerClient,
    asset: Asset,
    *,
    minimum_balance: int = 0,
    blacklist: Iterable[str] = (),
) -> list[BalanceRecord]:
    """Holder balances of `asset`, read from the issuer's trust lines.

    Lines report the balance from the issuer's side, so a holder's positive
    balance shows up negated.
    """
    blocked = set(blacklist)
    records = []
    seen = skipped = 0
    for holder, line in client.enumerate_holdings(asset):
        seen += 1
        if line.get("currency") != asset.currency:
            continue
        try:
            balance = asset.to_atomic(-Decimal(line["balance"]))
        except (KeyError, InvalidOperation, ValueError) as e:
            raise LedgerClientError(f"unreadable trust line for {holder}: {line}") from e
        if balance <= 0 or balance < minimum_balance or holder in blocked:
            skipped += 1
            continue
        records.append(BalanceRecord(holder, balance))

    merged = merge_balances(records)
    log.info("Snapshot of %s: %d lines, %d holders kept, %d skipped", asset, seen, len(merged), skipped)
    return merged
