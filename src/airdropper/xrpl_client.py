"""Ledger client for the XRP Ledger over JSON-RPC.

Transfers are issued-currency Payments from the funding account. A group of more than
one goes out as a single all-or-nothing Batch; the funding account's sequence numbers
are tracked locally between submissions.
"""

import contextlib
import logging
import time
from typing import Any, Iterator

import httpx
from xrpl.account import get_next_valid_seq_number
from xrpl.clients import JsonRpcClient
from xrpl.constants import XRPLException
from xrpl.core.binarycodec import encode, encode_for_signing
from xrpl.core.keypairs import sign
from xrpl.ledger import get_latest_validated_ledger_sequence
from xrpl.models import Batch, BatchFlag, Payment, TransactionFlag
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.requests import AccountInfo, AccountLines, LedgerEntry, SubmitOnly, Tx
from xrpl.wallet import Wallet

import airdropper.constants as C
from airdropper.config import FeeBudget
from airdropper.constants import Finality
from airdropper.errors import ConfigError, LedgerClientError, SubmissionRejected
from airdropper.ledger import FinalityResult, PreparedTransaction, SequencingToken, Transfer
from airdropper.models import Asset
from airdropper.utils import sha512half

log = logging.getLogger("airdropper.xrpl_client")

ACCOUNT_LINES_LIMIT = 400


def txid_from_blob(blob_hex: str) -> str:
    # XRPL txid = SHA512Half(0x54584E00 || serialized tx)
    return sha512half(C.TXN_PREFIX + bytes.fromhex(blob_hex)).hex().upper()


def is_definite_rejection(engine_result: str) -> bool:
    """tem/tef and terPRE_SEQ never apply. Anything else may still make it into a ledger."""
    return engine_result.startswith(("tem", "tef")) or engine_result == "terPRE_SEQ"


def probe(url: str, max_retries: int = C.PROBE_RETRIES, retry_delay: float = C.PROBE_DELAY, timeout: float = C.RPC_TIMEOUT) -> dict:
    """Probe the RPC endpoint with retries until it responds.

    Returns the server_info `info` object.
    """
    payload = {"method": "server_info", "params": [{}]}

    for attempt in range(1, max_retries + 1):
        try:
            with httpx.Client(timeout=timeout) as http:
                r = http.post(url, json=payload)
                r.raise_for_status()
                info = r.json().get("result", {}).get("info", {})
                log.info(f"RPC endpoint responding (attempt {attempt}/{max_retries}): {info.get('server_state', '?')}")
                return info
        except (httpx.HTTPError, ValueError) as e:
            if attempt < max_retries:
                log.info(f"RPC not ready yet (attempt {attempt}/{max_retries}): {e.__class__.__name__} - retrying in {retry_delay}s...")
                time.sleep(retry_delay)
            else:
                log.error(f"RPC failed after {max_retries} attempts")
                raise LedgerClientError(f"{url} not reachable: {e}") from e
    raise LedgerClientError(f"{url} not reachable")


@contextlib.contextmanager
def _wrapped(what: str):
    try:
        yield
    except (httpx.HTTPError, XRPLException) as e:
        raise LedgerClientError(f"{what}: {e.__class__.__name__}: {e}") from e


class XrplLedgerClient:
    def __init__(
        self,
        rpc_url: str,
        *,
        asset: Asset | None = None,
        wallet: Wallet | None = None,
        horizon: int = C.HORIZON,
        client: JsonRpcClient | None = None,
        sleep=time.sleep,
    ):
        self.url = rpc_url
        self.client = client or JsonRpcClient(rpc_url)
        self.asset = asset
        self.wallet = wallet
        self.horizon = horizon
        self.sleep = sleep
        self.next_seq: int | None = None

    def __repr__(self):
        return f"XrplLedgerClient({self.url!r})"

    def _request(self, req) -> dict[str, Any]:
        """Result of a successful request. Failed requests raise with the ledger's error code."""
        method = req.method.value
        with _wrapped(method):
            resp = self.client.request(req)
        if not resp.is_successful():
            error = resp.result.get("error", "unknown")
            message = resp.result.get("error_message") or error
            raise LedgerClientError(f"{method}: {message}", error=error)
        return resp.result

    def _require(self) -> tuple[Wallet, Asset]:
        if self.wallet is None or self.asset is None:
            raise ConfigError("building transfers needs a funding wallet and an asset")
        return self.wallet, self.asset

    # ------------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------------

    def get_account(self, address: str) -> dict | None:
        try:
            result = self._request(AccountInfo(account=address, ledger_index="validated"))
        except LedgerClientError as e:
            if e.error == "actNotFound":
                return None
            raise
        return result["account_data"]

    def get_multiple_accounts(self, ids: list[str]) -> list[dict | None]:
        nodes: list[dict | None] = []
        for index in ids:
            try:
                result = self._request(LedgerEntry(index=index, ledger_index="validated"))
            except LedgerClientError as e:
                if e.error == "entryNotFound":
                    nodes.append(None)
                    continue
                raise
            nodes.append(result.get("node"))
        return nodes

    def enumerate_holdings(self, asset: Asset) -> Iterator[tuple[str, dict]]:
        """Trust lines of the issuer, pinned to the validated ledger of the first page."""
        marker = None
        ledger_index: int | str = "validated"
        pages = 0
        while True:
            result = self._request(
                AccountLines(account=asset.issuer, ledger_index=ledger_index, limit=ACCOUNT_LINES_LIMIT, marker=marker)
            )
            pages += 1
            ledger_index = result.get("ledger_index", ledger_index)
            for line in result.get("lines", []):
                yield line["account"], line
            marker = result.get("marker")
            if marker is None:
                log.debug("Read %d pages of trust lines for %s at ledger %s", pages, asset.issuer, ledger_index)
                return

    # ------------------------------------------------------------------------
    # Sequencing
    # ------------------------------------------------------------------------

    def get_latest_sequencing_token(self) -> SequencingToken:
        if self.wallet is None:
            raise ConfigError("sequencing needs a funding wallet")
        wallet = self.wallet
        with _wrapped("sequencing token"):
            seq = get_next_valid_seq_number(wallet.address, self.client, ledger_index="current")
            ledger_index = get_latest_validated_ledger_sequence(self.client)
        self.next_seq = seq
        return SequencingToken(sequence=seq, ledger_index=ledger_index)

    def _sequence_and_lls(self) -> tuple[int, int]:
        if self.next_seq is None:
            token = self.get_latest_sequencing_token()
            return token.sequence, token.ledger_index + self.horizon
        with _wrapped("validated ledger"):
            return self.next_seq, get_latest_validated_ledger_sequence(self.client) + self.horizon

    def _reset_sequence(self, reason: str) -> None:
        if self.next_seq is not None:
            log.info("Dropping cached sequence %s: %s", self.next_seq, reason)
        self.next_seq = None

    # ------------------------------------------------------------------------
    # Build / submit
    # ------------------------------------------------------------------------

    def build_transfer_transaction(self, transfers: list[Transfer], budget: FeeBudget) -> PreparedTransaction:
        if not transfers:
            raise ValueError("no transfers to build a transaction from")
        wallet, asset = self._require()

        fee = budget.fee_for(len(transfers))
        if fee > budget.max_fee_drops:
            raise LedgerClientError(
                f"Fee too high ({fee} drops > {budget.max_fee_drops} max) for {len(transfers)} transfers, refusing to send"
            )

        seq, lls = self._sequence_and_lls()

        def payment(t: Transfer, **kwargs) -> Payment:
            amount = IssuedCurrencyAmount(currency=asset.currency, issuer=asset.issuer, value=asset.from_atomic(t.amount))
            return Payment(account=wallet.address, destination=t.holder, amount=amount, **kwargs)

        if len(transfers) == 1:
            txn = payment(transfers[0], sequence=seq, fee=str(fee), last_ledger_sequence=lls)
        else:
            inner = [
                payment(
                    t,
                    flags=TransactionFlag.TF_INNER_BATCH_TXN,
                    sequence=seq + 1 + i,
                    fee="0",
                    signing_pub_key="",
                )
                for i, t in enumerate(transfers)
            ]
            txn = Batch(
                account=wallet.address,
                flags=BatchFlag.TF_ALL_OR_NOTHING,
                raw_transactions=inner,
                sequence=seq,
                fee=str(fee),
                last_ledger_sequence=lls,
            )

        tx = txn.to_xrpl()
        if tx.get("Flags") == 0:
            del tx["Flags"]
        tx["SigningPubKey"] = wallet.public_key
        with _wrapped("sign"):
            tx["TxnSignature"] = sign(encode_for_signing(tx), wallet.private_key)
            signed_blob = encode(tx)
        txid = txid_from_blob(signed_blob)
        log.debug("Built %s seq=%s lls=%s fee=%s transfers=%d", txid, seq, lls, fee, len(transfers))
        return PreparedTransaction(submission_id=txid, transfers=list(transfers), tx_json=tx, signed_blob=signed_blob)

    def submit_transaction(self, tx: PreparedTransaction) -> str:
        try:
            result = self._request(SubmitOnly(tx_blob=tx.signed_blob))
        except LedgerClientError:
            self._reset_sequence(f"submit of {tx.submission_id} failed")
            raise

        er = result.get("engine_result", "")
        if is_definite_rejection(er):
            self._reset_sequence(er)
            raise SubmissionRejected(er, f"REJECTED: {er} {result.get('engine_result_message', '')}".rstrip())
        if er.startswith("tel"):
            # Held locally, may still apply before LastLedgerSequence
            log.warning(f"tel* (may retry): {er} - {tx.submission_id} - tracking until expiry")

        srv_txid = result.get("tx_json", {}).get("hash")
        if srv_txid and srv_txid != tx.submission_id:
            log.warning("Server hash %s differs from local %s", srv_txid, tx.submission_id)
            tx.submission_id = srv_txid

        # The outer transaction plus one sequence per inner payment
        consumed = 1 if len(tx.transfers) == 1 else 1 + len(tx.transfers)
        self.next_seq = tx.tx_json["Sequence"] + consumed
        log.debug("Submitted %s: %s", tx.submission_id, er)
        return tx.submission_id

    def submit_and_confirm(self, tx: PreparedTransaction) -> str:
        """Submit, then block until the submission is final or its LastLedgerSequence has passed.

        The outcome is only logged; reconciliation decides what happened.
        """
        submission_id = self.submit_transaction(tx)
        lls = tx.tx_json["LastLedgerSequence"]
        while True:
            try:
                result = self.get_finality(submission_id)
                if result.finality is not Finality.NOT_FINALIZED:
                    log.info("%s finalized: %s (%s)", submission_id, result.finality, result.engine_result)
                    return submission_id
                with _wrapped("validated ledger"):
                    validated = get_latest_validated_ledger_sequence(self.client)
            except LedgerClientError as e:
                log.warning("Waiting on %s: %s", submission_id, e)
                return submission_id
            if validated > lls:
                log.warning("%s not validated by ledger %s (LastLedgerSequence %s)", submission_id, validated, lls)
                return submission_id
            self.sleep(C.POLL_INTERVAL)

    # ------------------------------------------------------------------------
    # Finality
    # ------------------------------------------------------------------------

    def _lookup_tx(self, submission_id: str) -> dict | None:
        try:
            return self._request(Tx(transaction=submission_id))
        except LedgerClientError as e:
            if e.error == "txnNotFound":
                return None
            raise

    def get_finality(self, submission_id: str) -> FinalityResult:
        result = self._lookup_tx(submission_id)
        if result is None or not result.get("validated"):
            return FinalityResult(Finality.NOT_FINALIZED)

        er = result.get("meta", {}).get("TransactionResult")
        if er != "tesSUCCESS":
            return FinalityResult(Finality.FAILED, er)

        tx_json = result.get("tx_json") or result
        raw = tx_json.get("RawTransactions") or []
        if tx_json.get("TransactionType") == "Batch" and raw:
            # All-or-nothing: the outer batch succeeds even when its payments were rolled back
            inner_id = txid_from_blob(encode(raw[0]["RawTransaction"]))
            inner = self._lookup_tx(inner_id)
            inner_er = (inner or {}).get("meta", {}).get("TransactionResult")
            if not inner or not inner.get("validated") or inner_er != "tesSUCCESS":
                log.warning("Batch %s validated but inner %s did not apply (%s)", submission_id, inner_id, inner_er)
                self._reset_sequence("batch rolled back")
                return FinalityResult(Finality.FAILED, f"tesSUCCESS, inner payments rolled back ({inner_er or 'not applied'})")

        return FinalityResult(Finality.CONFIRMED, er)
