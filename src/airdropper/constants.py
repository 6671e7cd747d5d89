from typing import Final
from enum import StrEnum


class StatusKind(StrEnum):
    UNPROCESSED  = "unprocessed"
    DISQUALIFIED = "disqualified"
    QUALIFIED    = "qualified"
    UNCONFIRMED  = "unconfirmed"
    SUCCEEDED    = "succeeded"
    FAILED       = "failed"
    EXCLUDED     = "excluded"


class Stage(StrEnum):
    ALLOCATE = "allocate"
    CHECK    = "check"
    SEND     = "send"
    CONFIRM  = "confirm"


class Finality(StrEnum):
    CONFIRMED     = "CONFIRMED"
    FAILED        = "FAILED"
    NOT_FINALIZED = "NOT_FINALIZED"


TERMINAL_STATUS: Final = frozenset({StatusKind.SUCCEEDED, StatusKind.DISQUALIFIED, StatusKind.EXCLUDED})

# Checkpoint file suffix written by each stage (base list has none)
STAGE_SUFFIX: Final = {
    Stage.CHECK: "checked",
    Stage.SEND: "sent",
    Stage.CONFIRM: "confirmed",
}

# Failed reasons starting with this tag may be false negatives: the transfer could have finalized unobserved
AMBIGUOUS_TAG: Final = "unconfirmed-timeout"

LOOKUP_CHUNK_SIZE = 100
TRANSFERS_PER_TX = 8  # XRPL Batch carries at most 8 inner transactions
CHECK_MAX_RETRY = 4
TRANSFER_MAX_RETRY = 1  # For now, manually retry with another `send`
CONFIRM_MAX_RETRY = 3
CONFIRM_SLEEP_SEC = 90.0

BASE_FEE_DROPS = 10
MAX_FEE_DROPS = 1000  # Cap to prevent draining the funding account during fee escalation
HORIZON = 15  # Transactions expire if not validated within 15 ledgers (~45-60 seconds)
RPC_URL = "http://localhost:5005"
PROBE_RETRIES = 5
PROBE_DELAY = 2.0
RPC_TIMEOUT = 10.0
POLL_INTERVAL = 1.0  # Between finality polls while waiting on a submission

# RippleState ledger space key, see ledger object ids
RIPPLE_STATE_SPACE: Final = bytes.fromhex("0072")
TXN_PREFIX: Final = bytes.fromhex("54584E00")

__all__ = [
    "AMBIGUOUS_TAG",
    "BASE_FEE_DROPS",
    "CHECK_MAX_RETRY",
    "CONFIRM_MAX_RETRY",
    "CONFIRM_SLEEP_SEC",
    "HORIZON",
    "LOOKUP_CHUNK_SIZE",
    "MAX_FEE_DROPS",
    "POLL_INTERVAL",
    "PROBE_DELAY",
    "PROBE_RETRIES",
    "RPC_TIMEOUT",
    "RIPPLE_STATE_SPACE",
    "RPC_URL",
    "STAGE_SUFFIX",
    "TERMINAL_STATUS",
    "TRANSFERS_PER_TX",
    "TRANSFER_MAX_RETRY",
    "TXN_PREFIX",

    ######
    "Finality",
    "Stage",
    "StatusKind",
]
