"""Exception taxonomy.

Structural failures (bad checkpoint, empty pool, missing predecessor stage, bad config)
abort the invocation. Ledger failures are caught by the stages and recorded on entries.
"""


class AirdropError(Exception):
    """Base for every error the CLI turns into a non-zero exit."""


class ParseError(AirdropError, ValueError):
    """Malformed address, amount, identifier or status in persisted state."""


class InvalidTransition(AirdropError, ValueError):
    """A status change that the lifecycle does not allow."""


class CheckpointError(AirdropError, OSError):
    """Checkpoint file could not be read or written."""


class ConfigError(AirdropError):
    """Missing or invalid configuration, including the funding seed."""


class LedgerClientError(AirdropError):
    """Transport or ledger-side failure of a network call. `error` holds the ledger's error code, if any."""

    def __init__(self, message: str, error: str | None = None):
        self.error = error
        super().__init__(message)


class SubmissionRejected(LedgerClientError):
    """The ledger definitely did not accept the transaction (tem/tef/terPRE_SEQ)."""

    def __init__(self, engine_result: str, message: str | None = None):
        self.engine_result = engine_result
        super().__init__(message or engine_result, error=engine_result)


class EmptyPool(AirdropError):
    """The balance snapshot sums to zero so no share can be computed."""


class StageNotReady(AirdropError):
    def __init__(self, stage: str, hint: str):
        self.stage = stage
        self.hint = hint
        super().__init__(f"{stage} stage not ready: {hint}")
