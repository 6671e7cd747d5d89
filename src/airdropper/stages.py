"""Stage orchestration: Allocate -> Check -> Send -> Confirm.

Every stage reads the checkpoint its predecessor wrote (or its own, to resume), works
on the recipient list in place and writes its checkpoint after every attempt. The
wallet list on disk is the only state carried between invocations.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from airdropper import checkpoint
from airdropper.allocation import allocate
from airdropper.config import FeeBudget, RetrySettings
from airdropper.constants import Stage, StatusKind
from airdropper.errors import AirdropError, StageNotReady
from airdropper.ledger import LedgerClient
from airdropper.models import Asset, BalanceRecord, RecipientList
from airdropper.qualification import check_qualification
from airdropper.reconcile import reconcile
from airdropper.snapshot import take_snapshot
from airdropper.transfer import send_transfers
from airdropper.trustlines import TrustLineResolver
from airdropper.utils import stage_path

log = logging.getLogger("airdropper.stages")


@dataclass
class StageReport:
    stage: Stage | str
    counts: Counter = field(default_factory=Counter)
    amounts: dict[str, int] = field(default_factory=dict)
    attempts: int = 0
    path: Path | None = None  # checkpoint written, None on a dry run

    @classmethod
    def of(cls, stage: Stage, wallet_list: RecipientList, attempts: int, path: Path | None) -> "StageReport":
        return cls(stage, wallet_list.count_each_status(), wallet_list.amount_by_status(), attempts, path)

    @property
    def succeeded(self) -> int:
        return self.counts[StatusKind.SUCCEEDED.value]

    @property
    def excluded(self) -> int:
        return self.counts[StatusKind.EXCLUDED.value]

    @property
    def failed(self) -> int:
        return self.counts[StatusKind.FAILED.value]

    def __str__(self):
        counts = ", ".join(f"{k}={v}" for k, v in sorted(self.counts.items()))
        return f"{self.stage}: {counts or 'no entries'} after {self.attempts} attempt(s)"


def ask(question: str) -> bool:
    return input(f"{question} [y/N] ").strip().lower() in ("y", "yes")


class Pipeline:
    def __init__(
        self,
        base_path: Path,
        client: LedgerClient | None,
        *,
        asset: Asset | None = None,
        retry: RetrySettings | None = None,
        fee: FeeBudget | None = None,
        funding_address: str | None = None,
        dry_run: bool = False,
        prompt: Callable[[str], bool] = ask,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_path = Path(base_path)
        self.client = client
        self.asset = asset
        self.retry = retry or RetrySettings()
        self.fee = fee or FeeBudget()
        self.funding_address = funding_address
        self.dry_run = dry_run
        self.prompt = prompt
        self.sleep = sleep
        self.resolver = TrustLineResolver(asset) if asset is not None else None

    def path(self, stage: Stage) -> Path:
        return stage_path(self.base_path, stage)

    def _save(self, path: Path, wallet_list: RecipientList, *, rotate: bool = True) -> Path | None:
        if self.dry_run:
            log.info("[dry run] not writing %s", path)
            return None
        checkpoint.save_wallet_list(path, wallet_list, rotate=rotate)
        return path

    def _require_client(self, stage: Stage) -> LedgerClient:
        if self.client is None or self.resolver is None:
            raise AirdropError(f"{stage} needs a ledger client and an asset")
        return self.client

    # ------------------------------------------------------------------------

    def snapshot(self, path: Path, asset: Asset, *, minimum_balance: int = 0, blacklist: Iterable[str] = ()) -> list[BalanceRecord]:
        client = self.client
        if client is None:
            raise AirdropError("snapshot needs a ledger client")
        records = take_snapshot(client, asset, minimum_balance=minimum_balance, blacklist=blacklist)
        if self.dry_run:
            log.info("[dry run] not writing %s", path)
        else:
            checkpoint.save_snapshot(path, records)
        return records

    def allocate(
        self, snapshot_path: Path, total: int, *, minimum_balance: int = 0, blacklist: Iterable[str] = ()
    ) -> StageReport:
        if not Path(snapshot_path).exists():
            raise StageNotReady(Stage.ALLOCATE, f"{snapshot_path} not found, run snapshot first")
        balances = checkpoint.load_snapshot(snapshot_path)
        wallet_list = allocate(balances, total, minimum_balance=minimum_balance, blacklist=blacklist)
        written = self._save(self.base_path, wallet_list)
        return StageReport.of(Stage.ALLOCATE, wallet_list, 1, written)

    def check(self) -> StageReport:
        stage = Stage.CHECK
        client = self._require_client(stage)
        checked = self.path(stage)
        if checked.exists():
            log.info("Resuming check from %s", checked)
            wallet_list = checkpoint.load_wallet_list(checked)
        elif self.base_path.exists():
            wallet_list = checkpoint.load_wallet_list(self.base_path)
        else:
            raise StageNotReady(stage, f"{self.base_path} not found, run allocate first")

        max_retry = self.retry.check_max_retry
        written = None
        attempt = 0
        for attempt in range(1, max_retry + 1):
            check_qualification(wallet_list, client, self.resolver, chunk_size=self.retry.lookup_chunk_size)
            failed = wallet_list.count(StatusKind.FAILED)
            if failed and attempt < max_retry:
                log.info("Check attempt %d/%d: %d failed, retrying", attempt, max_retry, failed)
                wallet_list.reset_failed(StatusKind.UNPROCESSED)
            elif failed:
                log.warning("Check attempt %d/%d: excluding %d entries that kept failing", attempt, max_retry, failed)
                wallet_list.exclude_failed()
            written = self._save(checked, wallet_list)
            if not failed:
                break

        report = StageReport.of(stage, wallet_list, attempt, written)
        log.info("%s", report)
        return report

    def _resume_send(self, client: LedgerClient, confirmed: Path, sent: Path) -> RecipientList:
        """Fold the last confirm run back into a sendable list.

        Submissions still unaccounted for may have paid out, so their entries are
        excluded for manual review instead of being sent again.
        """
        log.info("Resuming send from %s", confirmed)
        wallet_list = checkpoint.load_wallet_list(confirmed)
        wallet_list.revive_ambiguous()
        reconcile(wallet_list, client)
        wallet_list.fail_unconfirmed()
        excluded = wallet_list.exclude_failed(only_ambiguous=True)
        if excluded:
            log.warning("Excluded %d entries whose transfers could not be confirmed; review them manually", excluded)
        retried = wallet_list.reset_failed(StatusKind.QUALIFIED)
        if retried:
            log.info("%d failed entries will be sent again", retried)
        self._save(sent, wallet_list)
        if not self.dry_run:
            checkpoint.backup(confirmed)
        return wallet_list

    def send(self, *, wait: bool = False, assume_yes: bool = False) -> StageReport:
        stage = Stage.SEND
        client = self._require_client(stage)
        if self.funding_address is None:
            raise AirdropError("send needs a funding wallet")
        checked, sent, confirmed = self.path(Stage.CHECK), self.path(stage), self.path(Stage.CONFIRM)

        if confirmed.exists():
            wallet_list = self._resume_send(client, confirmed, sent)
        elif checked.exists():
            if sent.exists():
                raise StageNotReady(stage, f"{sent} exists but {confirmed.name} does not, run confirm first")
            wallet_list = checkpoint.load_wallet_list(checked)
        else:
            raise StageNotReady(stage, f"{checked} not found, run check first")

        pending = wallet_list.with_status(StatusKind.QUALIFIED)
        if not pending:
            log.info("Nothing to send")
            return StageReport.of(stage, wallet_list, 0, None)

        if not (self.dry_run or assume_yes):
            total = sum(e.amount for e in pending)
            amount = self.asset.from_atomic(total) if self.asset else str(total)
            if not self.prompt(f"Send {amount} to {len(pending)} recipients from {self.funding_address}?"):
                raise AirdropError("send aborted at the prompt")

        def save_progress() -> None:
            # every submission id is on disk before the next group goes out
            self._save(sent, wallet_list, rotate=False)

        max_retry = self.retry.transfer_max_retry
        written = None
        attempt = 0
        for attempt in range(1, max_retry + 1):
            send_transfers(
                wallet_list,
                client,
                self.fee,
                funding_address=self.funding_address,
                derive=self.resolver.derive,
                transfers_per_tx=self.retry.transfers_per_tx,
                wait=wait,
                dry_run=self.dry_run,
                on_group_done=save_progress,
            )
            failed = wallet_list.count(StatusKind.FAILED)
            if failed and attempt < max_retry:
                log.info("Send attempt %d/%d: %d transfers failed, retrying", attempt, max_retry, failed)
                wallet_list.reset_failed(StatusKind.QUALIFIED)
            elif failed:
                log.warning("Send attempt %d/%d: %d transfers failed, a later send retries them", attempt, max_retry, failed)
            written = self._save(sent, wallet_list, rotate=False)
            if not failed:
                break

        report = StageReport.of(stage, wallet_list, attempt, written)
        log.info("%s", report)
        return report

    def confirm(self) -> StageReport:
        stage = Stage.CONFIRM
        client = self._require_client(stage)
        sent, confirmed = self.path(Stage.SEND), self.path(stage)
        if confirmed.exists():
            source = confirmed
        elif sent.exists():
            source = sent
        else:
            raise StageNotReady(stage, f"{sent} not found, run send first")
        wallet_list = checkpoint.load_wallet_list(source)

        revived = wallet_list.revive_ambiguous()
        if revived:
            log.info("Looking again at %d entries that could not be confirmed before", revived)

        max_retry = self.retry.confirm_max_retry
        written = None
        attempt = 0
        for attempt in range(1, max_retry + 1):
            unresolved = reconcile(wallet_list, client)
            if not unresolved:
                break
            if attempt < max_retry:
                log.info(
                    "Confirm attempt %d/%d: %d submissions pending, sleeping %ss",
                    attempt, max_retry, unresolved, self.retry.confirm_sleep_sec,
                )
                written = self._save(confirmed, wallet_list)
                self.sleep(self.retry.confirm_sleep_sec)

        timed_out = wallet_list.fail_unconfirmed()
        if timed_out:
            log.warning("%d entries could not be confirmed; run confirm again later", timed_out)
        written = self._save(confirmed, wallet_list)

        report = StageReport.of(stage, wallet_list, attempt, written)
        log.info("%s", report)
        return report

    def display(self, path: Path | None = None) -> StageReport:
        path = Path(path) if path is not None else self.base_path
        if not path.exists():
            raise StageNotReady("display", f"{path} not found")
        wallet_list = checkpoint.load_wallet_list(path)
        log.info("Read %d entries from %s", len(wallet_list.entries), path)
        return StageReport("display", wallet_list.count_each_status(), wallet_list.amount_by_status(), 0, None)
