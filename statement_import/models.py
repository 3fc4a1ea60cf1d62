"""Data models for statement import.

Legacy records arrive as signed :class:`RawTransaction`s; reviewers and the
ledger see :class:`CandidateTransaction`s, whose ``amount`` is never negative
(direction lives in ``type``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from .errors import SaveFailed


class Category(StrEnum):
    FOOD = "food"
    TRANSPORT = "transport"
    ENTERTAINMENT = "entertainment"
    HEALTHCARE = "healthcare"
    SHOPPING = "shopping"
    BILLS = "bills"
    SALARY = "salary"
    INVESTMENT = "investment"
    HOUSING = "housing"
    OTHER = "other"


class TransactionType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class LegacyTypeCode(StrEnum):
    """``TRNTYPE`` vocabulary of the legacy bank-export format."""

    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    INT = "INT"
    DIV = "DIV"
    FEE = "FEE"
    SRVCHG = "SRVCHG"
    DEP = "DEP"
    ATM = "ATM"
    POS = "POS"
    XFER = "XFER"
    CHECK = "CHECK"
    PAYMENT = "PAYMENT"
    CASH = "CASH"
    DIRECTDEP = "DIRECTDEP"
    DIRECTDEBIT = "DIRECTDEBIT"
    REPEATPMT = "REPEATPMT"
    OTHER = "OTHER"

    @property
    def transaction_type(self) -> TransactionType:
        if self in _INCOME_CODES:
            return TransactionType.INCOME
        if self in _TRANSFER_CODES:
            return TransactionType.TRANSFER
        return TransactionType.EXPENSE

    @classmethod
    def lookup(cls, raw: str) -> LegacyTypeCode | None:
        try:
            return cls(raw.strip().upper())
        except ValueError:
            return None


_INCOME_CODES = frozenset(
    {
        LegacyTypeCode.CREDIT,
        LegacyTypeCode.INT,
        LegacyTypeCode.DIV,
        LegacyTypeCode.DEP,
        LegacyTypeCode.DIRECTDEP,
    }
)
_TRANSFER_CODES = frozenset({LegacyTypeCode.XFER, LegacyTypeCode.OTHER})


class ImportStatus(StrEnum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    PARSING = "parsing"
    CHECKING_DUPLICATES = "checking_duplicates"
    REVIEWING = "reviewing"
    SAVING = "saving"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_running(self) -> bool:
        """True while a stage is executing (not idle, reviewing or terminal)."""

        return self in (
            ImportStatus.EXTRACTING,
            ImportStatus.PARSING,
            ImportStatus.CHECKING_DUPLICATES,
            ImportStatus.SAVING,
        )


@dataclass(frozen=True, slots=True)
class RawTransaction:
    """One ``<STMTTRN>`` record from a legacy bank export.

    ``amount`` is the signed ``TRNAMT``; ``type_code`` is the raw ``TRNTYPE``
    and wins over the sign when recognized.
    """

    external_id: str
    type_code: str
    posted: date
    amount: Decimal
    name: str
    memo: str | None = None
    check_number: str | None = None


@dataclass(frozen=True, slots=True)
class StatementAccount:
    account_id: str
    account_type: str = "CHECKING"
    bank_id: str | None = None


@dataclass(frozen=True, slots=True)
class Statement:
    """Account plus transactions in source-file order.

    ``skipped`` counts ``<STMTTRN>`` blocks dropped for missing fields or an
    unparseable date/amount. An empty statement is valid.
    """

    account: StatementAccount
    transactions: tuple[RawTransaction, ...] = ()
    period_start: date | None = None
    period_end: date | None = None
    skipped: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.transactions


@dataclass(frozen=True, slots=True)
class PageText:
    page_number: int
    text: str
    confidence: float

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True, slots=True)
class ExtractedText:
    pages: tuple[PageText, ...]
    total_pages: int

    @property
    def all_text(self) -> str:
        return "\n\n".join(p.text for p in self.pages)

    @property
    def non_empty_pages(self) -> tuple[PageText, ...]:
        return tuple(p for p in self.pages if not p.is_empty)

    @property
    def average_confidence(self) -> float:
        """Mean confidence over pages that produced text (0.0 when none did)."""

        pages = self.non_empty_pages
        if not pages:
            return 0.0
        return sum(p.confidence for p in pages) / len(pages)


@dataclass(frozen=True, slots=True)
class CandidateTransaction:
    """A transaction proposed for import, held for review before commit."""

    id: str
    date: date
    description: str
    amount: Decimal
    type: TransactionType
    suggested_category: Category | None = None
    confidence: float = 1.0

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"CandidateTransaction.amount must be non-negative: {self.amount}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"CandidateTransaction.confidence must be in [0,1]: {self.confidence}")


@dataclass(frozen=True, slots=True)
class LedgerTransaction:
    """A transaction as stored by the ledger collaborator.

    ``amount`` is unsigned, matching :class:`CandidateTransaction`.
    """

    id: str
    account_id: str
    amount: Decimal
    description: str
    category: Category
    type: TransactionType
    date: date
    owner_id: str
    created_at: datetime
    updated_at: datetime
    external_id: str | None = None


@dataclass(frozen=True, slots=True)
class RecordError:
    """A single record rejected with a hard validation error."""

    record_id: str | None
    reason: str


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Outcome of the review stage: accepted, duplicate and rejected records.

    ``accepted`` and ``duplicates`` are disjoint by candidate ``id``.
    ``skipped`` counts records dropped by tolerant parsing (not errors).
    """

    accepted: tuple[CandidateTransaction, ...] = ()
    duplicates: tuple[CandidateTransaction, ...] = ()
    errors: tuple[RecordError, ...] = ()
    skipped: int = 0

    def __post_init__(self) -> None:
        overlap = {c.id for c in self.accepted} & {c.id for c in self.duplicates}
        if overlap:
            raise ValueError(f"ImportResult: ids both accepted and duplicate: {sorted(overlap)}")

    def accepted_ids(self) -> list[str]:
        return [c.id for c in self.accepted]

    @property
    def success_count(self) -> int:
        return len(self.accepted)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def skipped_count(self) -> int:
        return self.skipped

    @property
    def is_empty(self) -> bool:
        return not (self.accepted or self.duplicates or self.errors)


@dataclass(frozen=True, slots=True)
class SaveFailure:
    candidate: CandidateTransaction
    error: SaveFailed

    @property
    def description(self) -> str:
        return f"{self.candidate.description}: {self.error.message}"


@dataclass(frozen=True, slots=True)
class CommitReport:
    """Per-record outcome of a commit. Partial success is normal."""

    saved: tuple[LedgerTransaction, ...] = ()
    failed: tuple[SaveFailure, ...] = ()
    duplicate_count: int = 0
    ignored_ids: tuple[str, ...] = field(default=())

    @property
    def saved_count(self) -> int:
        return len(self.saved)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def total_processed(self) -> int:
        return self.saved_count + self.failed_count + self.duplicate_count


__all__ = [
    "Category",
    "TransactionType",
    "LegacyTypeCode",
    "ImportStatus",
    "RawTransaction",
    "StatementAccount",
    "Statement",
    "PageText",
    "ExtractedText",
    "CandidateTransaction",
    "LedgerTransaction",
    "RecordError",
    "ImportResult",
    "SaveFailure",
    "CommitReport",
]
