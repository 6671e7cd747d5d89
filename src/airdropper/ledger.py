"""What the stages need from a ledger network, and the records exchanged with it."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, Protocol

from airdropper.constants import Finality

if TYPE_CHECKING:
    from airdropper.config import FeeBudget
    from airdropper.models import Asset


@dataclass(frozen=True, slots=True)
class Transfer:
    destination: str  # trust line index
    holder: str
    amount: int  # atomic units


@dataclass(frozen=True, slots=True)
class SequencingToken:
    sequence: int  # next account sequence of the funding account
    ledger_index: int  # latest validated ledger


@dataclass(slots=True)
class PreparedTransaction:
    submission_id: str
    transfers: list[Transfer]
    tx_json: dict[str, Any] = field(default_factory=dict)
    signed_blob: str | None = None

    def __str__(self):
        return f"{self.submission_id} ({len(self.transfers)} transfers)"


@dataclass(frozen=True, slots=True)
class FinalityResult:
    finality: Finality
    engine_result: str | None = None


class LedgerClient(Protocol):
    """Every method blocks. Transport and ledger errors raise LedgerClientError."""

    def get_account(self, address: str) -> dict | None: ...

    def get_multiple_accounts(self, ids: list[str]) -> list[dict | None]: ...

    def enumerate_holdings(self, asset: "Asset") -> Iterator[tuple[str, dict]]: ...

    def build_transfer_transaction(self, transfers: list[Transfer], budget: "FeeBudget") -> PreparedTransaction: ...

    def submit_transaction(self, tx: PreparedTransaction) -> str: ...

    def submit_and_confirm(self, tx: PreparedTransaction) -> str: ...

    def get_finality(self, submission_id: str) -> FinalityResult: ...

    def get_latest_sequencing_token(self) -> SequencingToken: ...
