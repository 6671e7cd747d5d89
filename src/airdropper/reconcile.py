import logging

from airdropper.constants import Finality
from airdropper.errors import LedgerClientError
from airdropper.ledger import LedgerClient
from airdropper.models import RecipientList, Status

log = logging.getLogger("airdropper.reconcile")


def reconcile(wallet_list: RecipientList, client: LedgerClient) -> int:
    """Query finality once per pending submission and resolve its entries.

    Returns how many submissions are still unresolved.
    """
    groups = wallet_list.unconfirmed_by_submission()
    unresolved = 0
    for submission_id, entries in groups.items():
        try:
            result = client.get_finality(submission_id)
        except LedgerClientError as e:
            log.warning("Finality query for %s failed: %s", submission_id, e)
            unresolved += 1
            continue

        match result.finality:
            case Finality.CONFIRMED:
                for e in entries:
                    e.transition(Status.succeeded(submission_id))
                log.info("%s confirmed (%d transfers)", submission_id, len(entries))
            case Finality.FAILED:
                reason = f"{submission_id}: finalized with {result.engine_result or 'unknown result'}"
                for e in entries:
                    e.transition(Status.failed(reason))
                log.warning("%s finalized without moving funds: %s", submission_id, result.engine_result)
            case _:
                log.debug("%s not finalized yet", submission_id)
                unresolved += 1

    log.info("Reconciled %d submissions, %d still unresolved", len(groups), unresolved)
    return unresolved
