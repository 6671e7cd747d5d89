"""Recipient records, their status lifecycle and the balance snapshot records."""

import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from enum import StrEnum, auto
from typing import Callable, Final, Iterable, Iterator

from xrpl.core.addresscodec import is_valid_classic_address

from airdropper.constants import AMBIGUOUS_TAG, TERMINAL_STATUS, StatusKind
from airdropper.errors import InvalidTransition, ParseError

_HASH_RE: Final = re.compile(r"^[0-9A-Fa-f]{64}$")
_CURRENCY_HEX_RE: Final = re.compile(r"^[0-9A-Fa-f]{40}$")
_AMBIGUOUS_RE: Final = re.compile(rf"^{AMBIGUOUS_TAG} ([0-9A-F]{{64}}):")


def is_hash256(value: str) -> bool:
    """True for a 64 hex char ledger hash (transaction id or ledger object index)."""
    return bool(_HASH_RE.match(value))


def validate_address(address: str) -> str:
    address = address.strip()
    if not is_valid_classic_address(address):
        raise ParseError(f"invalid address: {address!r}")
    return address


def validate_currency(currency: str) -> str:
    if _CURRENCY_HEX_RE.match(currency):
        return currency.upper()
    if len(currency) == 3 and currency != "XRP" and currency.isascii() and currency.isprintable():
        return currency
    raise ParseError(f"invalid currency code: {currency!r}")


# ============================================================================
# Status
# ============================================================================

class PayloadRule(StrEnum):
    NONE = auto()
    SUBMISSION_ID = auto()
    REASON = auto()


# Which discriminant/payload pairs are legal. Anything else is rejected.
PAYLOAD_RULES: Final = {
    StatusKind.UNPROCESSED: PayloadRule.NONE,
    StatusKind.DISQUALIFIED: PayloadRule.NONE,
    StatusKind.QUALIFIED: PayloadRule.NONE,
    StatusKind.UNCONFIRMED: PayloadRule.SUBMISSION_ID,
    StatusKind.SUCCEEDED: PayloadRule.SUBMISSION_ID,
    StatusKind.FAILED: PayloadRule.REASON,
    StatusKind.EXCLUDED: PayloadRule.REASON,
}

_ALLOWED_TRANSITIONS: Final = {
    StatusKind.UNPROCESSED: frozenset({StatusKind.QUALIFIED, StatusKind.DISQUALIFIED, StatusKind.FAILED}),
    StatusKind.QUALIFIED: frozenset({StatusKind.UNCONFIRMED, StatusKind.FAILED}),
    StatusKind.UNCONFIRMED: frozenset({StatusKind.SUCCEEDED, StatusKind.FAILED}),
    StatusKind.FAILED: frozenset(
        {StatusKind.UNPROCESSED, StatusKind.QUALIFIED, StatusKind.EXCLUDED, StatusKind.UNCONFIRMED}
    ),
    StatusKind.SUCCEEDED: frozenset(),
    StatusKind.DISQUALIFIED: frozenset(),
    StatusKind.EXCLUDED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class Status:
    kind: StatusKind
    payload: str | None = None

    def __post_init__(self):
        try:
            kind = StatusKind(self.kind)
        except ValueError:
            raise ParseError(f"unknown status: {self.kind!r}") from None
        object.__setattr__(self, "kind", kind)

        rule = PAYLOAD_RULES[kind]
        if rule is PayloadRule.NONE:
            if self.payload:
                raise ParseError(f"status {kind} takes no payload, got {self.payload!r}")
            object.__setattr__(self, "payload", None)
        elif rule is PayloadRule.SUBMISSION_ID:
            if not self.payload or not is_hash256(self.payload):
                raise ParseError(f"status {kind} needs a submission id, got {self.payload!r}")
            object.__setattr__(self, "payload", self.payload.upper())
        elif not self.payload:
            raise ParseError(f"status {kind} needs a reason")

    def __str__(self):
        return self.kind.value

    @classmethod
    def unprocessed(cls) -> "Status":
        return cls(StatusKind.UNPROCESSED)

    @classmethod
    def disqualified(cls) -> "Status":
        return cls(StatusKind.DISQUALIFIED)

    @classmethod
    def qualified(cls) -> "Status":
        return cls(StatusKind.QUALIFIED)

    @classmethod
    def unconfirmed(cls, submission_id: str) -> "Status":
        return cls(StatusKind.UNCONFIRMED, submission_id)

    @classmethod
    def succeeded(cls, submission_id: str) -> "Status":
        return cls(StatusKind.SUCCEEDED, submission_id)

    @classmethod
    def failed(cls, reason: str) -> "Status":
        return cls(StatusKind.FAILED, reason)

    @classmethod
    def excluded(cls, reason: str) -> "Status":
        return cls(StatusKind.EXCLUDED, reason)

    @classmethod
    def ambiguous(cls, submission_id: str) -> "Status":
        """Failed after confirmation ran out of attempts. The transfer may still have finalized."""
        return cls.failed(
            f"{AMBIGUOUS_TAG} {submission_id.upper()}: could not confirm transaction; "
            "it may have finalized unobserved, reconcile manually before resending"
        )

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_STATUS

    @property
    def submission_id(self) -> str | None:
        if PAYLOAD_RULES[self.kind] is PayloadRule.SUBMISSION_ID:
            return self.payload
        return self.ambiguous_submission_id

    @property
    def ambiguous_submission_id(self) -> str | None:
        if self.kind is not StatusKind.FAILED:
            return None
        m = _AMBIGUOUS_RE.match(self.payload or "")
        return m.group(1) if m else None

    @property
    def is_ambiguous(self) -> bool:
        return self.ambiguous_submission_id is not None


# ============================================================================
# Records
# ============================================================================

@dataclass(frozen=True, slots=True)
class Asset:
    """An issued currency. `decimals` fixes the atomic unit (10**-decimals of one token)."""

    currency: str
    issuer: str
    decimals: int = 6

    def __post_init__(self):
        object.__setattr__(self, "currency", validate_currency(self.currency))
        object.__setattr__(self, "issuer", validate_address(self.issuer))
        if not 0 <= self.decimals <= 15:
            raise ValueError(f"decimals must be within 0..15, got {self.decimals}")

    def to_atomic(self, value: Decimal | str) -> int:
        try:
            scaled = Decimal(value).scaleb(self.decimals)
        except InvalidOperation:
            raise ParseError(f"invalid {self.currency} amount: {value!r}") from None
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))

    def from_atomic(self, amount: int) -> str:
        return format(Decimal(amount).scaleb(-self.decimals), "f")

    def __str__(self):
        return f"{self.currency}.{self.issuer}"


@dataclass(frozen=True, slots=True)
class BalanceRecord:
    holder: str
    balance: int

    def __post_init__(self):
        if self.balance < 0:
            raise ValueError(f"negative balance for {self.holder}: {self.balance}")


def merge_balances(records: Iterable[BalanceRecord]) -> list[BalanceRecord]:
    """Sum balances per holder, sorted by address."""
    totals: dict[str, int] = defaultdict(int)
    for r in records:
        totals[r.holder] += r.balance
    return [BalanceRecord(holder, bal) for holder, bal in sorted(totals.items())]


@dataclass(slots=True)
class RecipientEntry:
    holder: str
    amount: int
    destination: str | None = None
    status: Status = field(default_factory=Status.unprocessed)

    def __str__(self):
        return f"{self.holder} -- {self.amount} -- {self.status}"

    def transition(self, new: Status) -> None:
        current = self.status
        if new.kind not in _ALLOWED_TRANSITIONS[current.kind]:
            raise InvalidTransition(f"{self.holder}: {current} -> {new} is not allowed")
        if current.kind is StatusKind.FAILED and new.kind is StatusKind.UNCONFIRMED:
            # Only an ambiguous failure goes back to waiting on the same submission
            if current.ambiguous_submission_id != new.payload:
                raise InvalidTransition(f"{self.holder}: {current.payload!r} is not awaiting {new.payload}")
        self.status = new

    def resolve_destination(self, derive: Callable[[str], str]) -> str:
        if self.destination is None:
            self.destination = derive(self.holder)
        return self.destination


class RecipientList:
    """Recipient entries ordered by holder address. Mutated in place by the running stage."""

    def __init__(self, entries: Iterable[RecipientEntry] = ()):
        self.entries: list[RecipientEntry] = list(entries)
        self.sort()

    def __iter__(self) -> Iterator[RecipientEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __eq__(self, other):
        if not isinstance(other, RecipientList):
            return NotImplemented
        return self.entries == other.entries

    def sort(self) -> None:
        self.entries.sort(key=lambda e: e.holder)

    def get(self, holder: str) -> RecipientEntry | None:
        for e in self.entries:
            if e.holder == holder:
                return e
        return None

    def with_status(self, *kinds: StatusKind) -> list[RecipientEntry]:
        wanted = set(kinds)
        return [e for e in self.entries if e.status.kind in wanted]

    def count(self, kind: StatusKind) -> int:
        return sum(1 for e in self.entries if e.status.kind is kind)

    def count_each_status(self) -> Counter:
        return Counter(e.status.kind.value for e in self.entries)

    def amount_by_status(self) -> dict[str, int]:
        totals: dict[str, int] = defaultdict(int)
        for e in self.entries:
            totals[e.status.kind.value] += e.amount
        return dict(totals)

    def total_amount(self) -> int:
        return sum(e.amount for e in self.entries)

    # Failed -> given status, used for retrying a stage
    def reset_failed(self, to: StatusKind) -> int:
        failed = self.with_status(StatusKind.FAILED)
        for e in failed:
            e.transition(Status(to))
        return len(failed)

    # Failed -> Excluded, set aside for manual review
    def exclude_failed(self, *, only_ambiguous: bool = False) -> int:
        n = 0
        for e in self.with_status(StatusKind.FAILED):
            if only_ambiguous and not e.status.is_ambiguous:
                continue
            e.transition(Status.excluded(e.status.payload))
            n += 1
        return n

    # Unconfirmed -> Failed, tagged as a possible false negative
    def fail_unconfirmed(self) -> int:
        pending = self.with_status(StatusKind.UNCONFIRMED)
        for e in pending:
            e.transition(Status.ambiguous(e.status.payload))
        return len(pending)

    # ambiguous Failed -> Unconfirmed, to look for the submission again
    def revive_ambiguous(self) -> int:
        n = 0
        for e in self.with_status(StatusKind.FAILED):
            sid = e.status.ambiguous_submission_id
            if sid is not None:
                e.transition(Status.unconfirmed(sid))
                n += 1
        return n

    def unconfirmed_by_submission(self) -> dict[str, list[RecipientEntry]]:
        groups: dict[str, list[RecipientEntry]] = defaultdict(list)
        for e in self.with_status(StatusKind.UNCONFIRMED):
            groups[e.status.payload].append(e)
        return dict(groups)
