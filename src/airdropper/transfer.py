import logging
from collections import Counter
from typing import Callable

import airdropper.constants as C
from airdropper.config import FeeBudget
from airdropper.constants import StatusKind
from airdropper.errors import LedgerClientError
from airdropper.ledger import LedgerClient, Transfer
from airdropper.models import RecipientEntry, RecipientList, Status
from airdropper.utils import chunked

log = logging.getLogger("airdropper.transfer")


def send_transfers(
    wallet_list: RecipientList,
    client: LedgerClient,
    budget: FeeBudget,
    *,
    funding_address: str,
    derive: Callable[[str], str],
    transfers_per_tx: int = C.TRANSFERS_PER_TX,
    wait: bool = False,
    dry_run: bool = False,
    on_group_done: Callable[[], None] | None = None,
) -> Counter:
    """Batch the Qualified entries into transactions and submit them one after another.

    Every entry of a group ends up with the same status: Unconfirmed under the group's
    submission id, or Failed with the reason the submission failed. Waiting for
    finality still leaves the group Unconfirmed; only reconciliation marks success.
    `on_group_done` runs after each submitted group has its status, to checkpoint it.
    """
    outcome: Counter = Counter()
    qualified = wallet_list.with_status(StatusKind.QUALIFIED)
    sendable: list[RecipientEntry] = []
    for entry in qualified:
        if entry.holder == funding_address:
            log.warning("Skipping %s: it is the funding account", entry.holder)
            outcome["skipped"] += 1
            continue
        sendable.append(entry)

    groups = list(chunked(sendable, transfers_per_tx))
    log.info("Sending %d transfers in %d transactions%s", len(sendable), len(groups), " (dry run)" if dry_run else "")

    for n, group in enumerate(groups, start=1):
        transfers = [Transfer(e.resolve_destination(derive), e.holder, e.amount) for e in group]
        try:
            tx = client.build_transfer_transaction(transfers, budget)
            if dry_run:
                log.info("[dry run] %d/%d would submit %s: %s", n, len(groups), tx, tx.tx_json)
                outcome["dry_run"] += len(group)
                continue
            submit = client.submit_and_confirm if wait else client.submit_transaction
            submission_id = submit(tx)
        except LedgerClientError as e:
            log.warning("Transaction %d/%d (%d transfers) failed: %s", n, len(groups), len(group), e)
            status = Status.failed(f"submission failed: {e}")
        else:
            log.info("Transaction %d/%d submitted: %s (%d transfers)", n, len(groups), submission_id, len(group))
            status = Status.unconfirmed(submission_id)

        for entry in group:
            entry.transition(status)
        outcome[status.kind] += len(group)
        if on_group_done is not None:
            on_group_done()

    return outcome
