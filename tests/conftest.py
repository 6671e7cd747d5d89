import pytest
from xrpl.core.addresscodec import encode_classic_address

from airdropper.config import FeeBudget, RetrySettings
from airdropper.constants import Finality
from airdropper.errors import LedgerClientError
from airdropper.ledger import FinalityResult, PreparedTransaction, SequencingToken
from airdropper.models import Asset, RecipientEntry, RecipientList
from airdropper.stages import Pipeline
from airdropper.trustlines import TrustLineResolver


def address(n: int) -> str:
    return encode_classic_address(bytes([n]) * 20)


ISSUER = address(200)
FUNDER = address(201)


def trust_line(holder: str, asset: Asset, balance: str = "0") -> dict:
    """A RippleState node as ledger_entry returns it."""
    low, high = sorted([holder, asset.issuer])
    return {
        "LedgerEntryType": "RippleState",
        "Balance": {"currency": asset.currency, "issuer": "rrrrrrrrrrrrrrrrrrrrBZbvji", "value": balance},
        "LowLimit": {"currency": asset.currency, "issuer": low, "value": "1000000"},
        "HighLimit": {"currency": asset.currency, "issuer": high, "value": "0"},
        "Flags": 131072,
    }


class FakeLedger:
    """Scriptable LedgerClient. Records every call, fails on request."""

    def __init__(self, asset: Asset):
        self.asset = asset
        self.resolver = TrustLineResolver(asset)
        self.nodes: dict[str, dict] = {}
        self.lines: list[tuple[str, dict]] = []
        self.lookup_failures = 0  # upcoming get_multiple_accounts calls that fail
        self.submit_results: list[BaseException | None] = []  # upcoming submissions, None succeeds
        self.finality: dict[str, FinalityResult | Exception] = {}
        self.default_finality: FinalityResult | Exception = FinalityResult(Finality.CONFIRMED, "tesSUCCESS")

        self.lookups: list[list[str]] = []
        self.built: list[PreparedTransaction] = []
        self.submitted: list[PreparedTransaction] = []
        self.waited: list[str] = []
        self.finality_queries: list[str] = []

    def open_trust_line(self, holder: str) -> None:
        self.nodes[self.resolver.derive(holder)] = trust_line(holder, self.asset)

    def get_account(self, address: str) -> dict | None:
        return {"Account": address}

    def get_multiple_accounts(self, ids: list[str]) -> list[dict | None]:
        self.lookups.append(list(ids))
        if self.lookup_failures:
            self.lookup_failures -= 1
            raise LedgerClientError("ledger_entry: timed out")
        return [self.nodes.get(i) for i in ids]

    def enumerate_holdings(self, asset: Asset):
        yield from self.lines

    def build_transfer_transaction(self, transfers, budget: FeeBudget) -> PreparedTransaction:
        tx = PreparedTransaction(
            submission_id=f"{len(self.built) + 1:064X}",
            transfers=list(transfers),
            tx_json={"Fee": str(budget.fee_for(len(transfers)))},
        )
        self.built.append(tx)
        return tx

    def submit_transaction(self, tx: PreparedTransaction) -> str:
        if self.submit_results:
            exc = self.submit_results.pop(0)
            if exc is not None:
                raise exc
        self.submitted.append(tx)
        return tx.submission_id

    def submit_and_confirm(self, tx: PreparedTransaction) -> str:
        submission_id = self.submit_transaction(tx)
        self.waited.append(submission_id)
        return submission_id

    def get_finality(self, submission_id: str) -> FinalityResult:
        self.finality_queries.append(submission_id)
        result = self.finality.get(submission_id, self.default_finality)
        if isinstance(result, Exception):
            raise result
        return result

    def get_latest_sequencing_token(self) -> SequencingToken:
        return SequencingToken(sequence=1, ledger_index=100)


@pytest.fixture
def asset() -> Asset:
    return Asset("USD", ISSUER, 6)


@pytest.fixture
def holders() -> list[str]:
    return [address(n) for n in range(1, 21)]


@pytest.fixture
def ledger(asset, holders) -> FakeLedger:
    fake = FakeLedger(asset)
    for holder in holders:
        fake.open_trust_line(holder)
    return fake


@pytest.fixture
def wallet_list(holders) -> RecipientList:
    return RecipientList(RecipientEntry(h, 1_000 * (i + 1)) for i, h in enumerate(holders))


@pytest.fixture
def retry() -> RetrySettings:
    return RetrySettings(lookup_chunk_size=5, transfers_per_tx=4, confirm_sleep_sec=0)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def pipeline(tmp_path, ledger, asset, retry, sleeps) -> Pipeline:
    return Pipeline(
        tmp_path / "wallets.csv",
        ledger,
        asset=asset,
        retry=retry,
        funding_address=FUNDER,
        prompt=lambda question: True,
        sleep=sleeps.append,
    )
