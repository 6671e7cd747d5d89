import logging
from collections import Counter

import airdropper.constants as C
from airdropper.constants import StatusKind
from airdropper.errors import LedgerClientError
from airdropper.ledger import LedgerClient
from airdropper.models import RecipientList, Status
from airdropper.trustlines import TrustLineResolver
from airdropper.utils import chunked

log = logging.getLogger("airdropper.qualification")


def check_qualification(
    wallet_list: RecipientList,
    client: LedgerClient,
    resolver: TrustLineResolver,
    *,
    chunk_size: int = C.LOOKUP_CHUNK_SIZE,
) -> Counter:
    """One pass over the Unprocessed entries.

    A failed lookup fails every entry of its chunk. Otherwise each entry is judged on
    its own destination node.
    """
    pending = wallet_list.with_status(StatusKind.UNPROCESSED)
    outcome: Counter = Counter()
    if not pending:
        return outcome

    for entry in pending:
        entry.resolve_destination(resolver.derive)

    for n, chunk in enumerate(chunked(pending, chunk_size), start=1):
        ids = [e.destination for e in chunk]
        try:
            nodes = client.get_multiple_accounts(ids)
            if len(nodes) != len(ids):
                raise LedgerClientError(f"asked for {len(ids)} destinations, got {len(nodes)}")
        except LedgerClientError as e:
            log.warning("Lookup of chunk %d (%d entries) failed: %s", n, len(chunk), e)
            for entry in chunk:
                entry.transition(Status.failed(f"destination lookup failed: {e}"))
            outcome[StatusKind.FAILED] += len(chunk)
            continue

        for entry, node in zip(chunk, nodes):
            if resolver.qualifies(entry.holder, node):
                entry.transition(Status.qualified())
            else:
                entry.transition(Status.disqualified())
            outcome[entry.status.kind] += 1
        log.debug("Chunk %d: %d entries looked up", n, len(chunk))

    log.info(
        "Checked %d entries: %d qualified, %d disqualified, %d failed",
        len(pending), outcome[StatusKind.QUALIFIED], outcome[StatusKind.DISQUALIFIED], outcome[StatusKind.FAILED],
    )
    return outcome
