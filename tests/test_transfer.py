import pytest

from airdropper.config import FeeBudget
from airdropper.constants import StatusKind
from airdropper.errors import LedgerClientError, SubmissionRejected
from airdropper.models import RecipientEntry, RecipientList, Status
from airdropper.transfer import send_transfers

from conftest import FUNDER, address


@pytest.fixture
def qualified(holders) -> RecipientList:
    return RecipientList(RecipientEntry(h, 10 * (i + 1), status=Status.qualified()) for i, h in enumerate(holders[:10]))


def send(wl, ledger, **kwargs):
    kwargs.setdefault("transfers_per_tx", 4)
    return send_transfers(wl, ledger, FeeBudget(), funding_address=FUNDER, derive=ledger.resolver.derive, **kwargs)


def test_groups_share_one_submission(ledger, qualified):
    outcome = send(qualified, ledger)

    assert [len(tx.transfers) for tx in ledger.submitted] == [4, 4, 2]
    assert outcome[StatusKind.UNCONFIRMED] == 10
    for tx in ledger.submitted:
        ids = {qualified.get(t.holder).status for t in tx.transfers}
        assert ids == {Status.unconfirmed(tx.submission_id)}


def test_transfers_carry_entry_details(ledger, qualified):
    send(qualified, ledger)
    transfers = [t for tx in ledger.built for t in tx.transfers]
    assert [(t.holder, t.amount) for t in transfers] == [(e.holder, e.amount) for e in qualified]
    assert all(t.destination == ledger.resolver.derive(t.holder) for t in transfers)
    assert ledger.built[0].tx_json["Fee"] == str(FeeBudget().fee_for(4))


def test_failed_submission_fails_its_group_only(ledger, qualified):
    ledger.submit_results = [None, SubmissionRejected("tefPAST_SEQ"), None]
    outcome = send(qualified, ledger)

    failed = qualified.with_status(StatusKind.FAILED)
    assert failed == qualified.entries[4:8]
    assert all("tefPAST_SEQ" in e.status.payload for e in failed)
    assert outcome[StatusKind.FAILED] == 4
    assert qualified.count(StatusKind.UNCONFIRMED) == 6


def test_transport_error_is_a_failure(ledger, qualified):
    ledger.submit_results = [LedgerClientError("submit: ConnectError")] * 3
    send(qualified, ledger)
    assert qualified.count(StatusKind.FAILED) == 10


def test_wait_still_leaves_unconfirmed(ledger, qualified):
    send(qualified, ledger, wait=True)
    assert len(ledger.waited) == 3
    assert qualified.count(StatusKind.UNCONFIRMED) == 10
    assert qualified.count(StatusKind.SUCCEEDED) == 0


def test_dry_run_builds_but_does_not_submit(ledger, qualified):
    before = [e.status for e in qualified]
    send(qualified, ledger, dry_run=True)
    assert len(ledger.built) == 3
    assert ledger.submitted == []
    assert [e.status for e in qualified] == before


def test_funding_account_is_never_paid(ledger):
    wl = RecipientList([
        RecipientEntry(FUNDER, 5, status=Status.qualified()),
        RecipientEntry(address(1), 5, status=Status.qualified()),
    ])
    outcome = send(wl, ledger)
    assert outcome["skipped"] == 1
    assert wl.get(FUNDER).status == Status.qualified()
    assert [t.holder for t in ledger.submitted[0].transfers] == [address(1)]


def test_only_qualified_entries_are_sent(ledger):
    wl = RecipientList([
        RecipientEntry(address(1), 5, status=Status.unprocessed()),
        RecipientEntry(address(2), 5, status=Status.disqualified()),
        RecipientEntry(address(3), 5, status=Status.excluded("manual")),
    ])
    send(wl, ledger)
    assert ledger.built == []


def test_each_group_is_reported_once_it_has_a_status(ledger, qualified):
    ledger.submit_results = [None, SubmissionRejected("tefPAST_SEQ")]
    seen = []

    def record():
        seen.append(qualified.count_each_status())

    send(qualified, ledger, on_group_done=record)
    assert seen == [
        {"unconfirmed": 4, "qualified": 6},
        {"unconfirmed": 4, "failed": 4, "qualified": 2},
        {"unconfirmed": 6, "failed": 4},
    ]


def test_dry_run_reports_nothing(ledger, qualified):
    seen = []
    send(qualified, ledger, dry_run=True, on_group_done=lambda: seen.append(1))
    assert seen == []
