from airdropper.constants import Finality, StatusKind
from airdropper.errors import LedgerClientError
from airdropper.ledger import FinalityResult
from airdropper.models import RecipientEntry, RecipientList, Status
from airdropper.reconcile import reconcile

from conftest import address

A, B, C = "AA" * 32, "BB" * 32, "CC" * 32


def pending() -> RecipientList:
    return RecipientList([
        RecipientEntry(address(1), 1, status=Status.unconfirmed(A)),
        RecipientEntry(address(2), 1, status=Status.unconfirmed(A)),
        RecipientEntry(address(3), 1, status=Status.unconfirmed(B)),
        RecipientEntry(address(4), 1, status=Status.unconfirmed(C)),
        RecipientEntry(address(5), 1, status=Status.qualified()),
    ])


def test_one_query_per_submission(ledger):
    wl = pending()
    assert reconcile(wl, ledger) == 0
    assert sorted(ledger.finality_queries) == [A, B, C]
    assert wl.count(StatusKind.SUCCEEDED) == 4
    assert wl.get(address(1)).status == Status.succeeded(A)
    assert wl.get(address(5)).status == Status.qualified()


def test_outcomes(ledger):
    ledger.finality = {
        A: FinalityResult(Finality.NOT_FINALIZED),
        B: FinalityResult(Finality.FAILED, "tecPATH_DRY"),
        C: LedgerClientError("tx: timed out"),
    }
    wl = pending()
    assert reconcile(wl, ledger) == 2

    assert wl.get(address(1)).status == Status.unconfirmed(A)
    assert wl.get(address(2)).status == Status.unconfirmed(A)
    assert wl.get(address(3)).status == Status.failed(f"{B}: finalized with tecPATH_DRY")
    assert not wl.get(address(3)).status.is_ambiguous
    assert wl.get(address(4)).status == Status.unconfirmed(C)


def test_nothing_pending(ledger):
    wl = RecipientList([RecipientEntry(address(1), 1, status=Status.succeeded(A))])
    assert reconcile(wl, ledger) == 0
    assert ledger.finality_queries == []
