"""Duplicate detection against already-ledgered transactions.

Two policies exist, one per import source, and they are kept distinct on
purpose:

============  ================  ===================================================
Policy        Date window       Description similarity
============  ================  ===================================================
``LEGACY``    same day          equal, either contains the other, or the existing
                                description contains the candidate's first 10 chars
``DOCUMENT``  +/- 1 day         equal, or either contains the other
============  ================  ===================================================

Amounts must match within ``AMOUNT_TOLERANCE`` in both policies. All text
comparisons are case-insensitive.

The set of existing transactions is always a bounded window:
:func:`fetch_existing_window` asks the ledger for one account (legacy) or for
a recent date range (document), never for the whole ledger.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import StrEnum

from .ledger.base import Ledger
from .logging_setup import get_logger
from .models import CandidateTransaction, LedgerTransaction

_logger = get_logger("statement_import.duplicates")

AMOUNT_TOLERANCE = Decimal("0.01")
LEGACY_PREFIX_LENGTH = 10


class DuplicatePolicy(StrEnum):
    LEGACY = "legacy"
    DOCUMENT = "document"

    @property
    def day_window(self) -> int:
        return 0 if self is DuplicatePolicy.LEGACY else 1


def amounts_match(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) < AMOUNT_TOLERANCE


def dates_match(a: date, b: date, policy: DuplicatePolicy) -> bool:
    return abs((a - b).days) <= policy.day_window


def descriptions_match(candidate: str, existing: str, policy: DuplicatePolicy) -> bool:
    cand = candidate.strip().lower()
    other = existing.strip().lower()
    if cand == other:
        return True
    # Empty strings are "contained" in everything; treat them as non-matching.
    if cand and other and (cand in other or other in cand):
        return True
    if policy is DuplicatePolicy.LEGACY and cand:
        return cand[:LEGACY_PREFIX_LENGTH] in other
    return False


def is_duplicate(
    candidate: CandidateTransaction,
    existing: LedgerTransaction,
    policy: DuplicatePolicy,
) -> bool:
    return (
        amounts_match(candidate.amount, existing.amount)
        and dates_match(candidate.date, existing.date, policy)
        and descriptions_match(candidate.description, existing.description, policy)
    )


@dataclass(frozen=True, slots=True)
class Partition:
    unique: tuple[CandidateTransaction, ...]
    duplicates: tuple[CandidateTransaction, ...]

    def __iter__(self):
        # Allows ``unique, duplicates = partition(...)``.
        yield self.unique
        yield self.duplicates


class DuplicateDetector:
    """Partition candidates into unique and duplicate under one policy."""

    def __init__(self, policy: DuplicatePolicy) -> None:
        self.policy = policy

    def partition(
        self,
        candidates: Iterable[CandidateTransaction],
        existing: Sequence[LedgerTransaction],
    ) -> Partition:
        # Index existing rows by date so each candidate only scans its window.
        by_date: dict[date, list[LedgerTransaction]] = {}
        for tx in existing:
            by_date.setdefault(tx.date, []).append(tx)

        unique: list[CandidateTransaction] = []
        duplicates: list[CandidateTransaction] = []
        window = self.policy.day_window
        for candidate in candidates:
            nearby = (
                tx
                for offset in range(-window, window + 1)
                for tx in by_date.get(candidate.date + timedelta(days=offset), ())
            )
            if any(is_duplicate(candidate, tx, self.policy) for tx in nearby):
                duplicates.append(candidate)
            else:
                unique.append(candidate)

        _logger.info(
            "duplicates:partition policy=%s candidates=%d existing=%d unique=%d duplicates=%d",
            self.policy.value,
            len(unique) + len(duplicates),
            len(existing),
            len(unique),
            len(duplicates),
        )
        return Partition(unique=tuple(unique), duplicates=tuple(duplicates))


def partition(
    candidates: Iterable[CandidateTransaction],
    existing: Sequence[LedgerTransaction],
    policy: DuplicatePolicy,
) -> Partition:
    """Module-level shortcut for ``DuplicateDetector(policy).partition(...)``."""

    return DuplicateDetector(policy).partition(candidates, existing)


def fetch_existing_window(
    ledger: Ledger,
    policy: DuplicatePolicy,
    *,
    account_id: str,
    today: date,
    window_days: int,
) -> list[LedgerTransaction]:
    """Fetch the bounded set of ledger rows that candidates are compared against.

    Parameters
    ----------
    ledger:
        Ledger collaborator.
    policy:
        ``LEGACY`` fetches every transaction of ``account_id``; ``DOCUMENT``
        fetches the ``window_days`` days ending at ``today`` (inclusive).
    """

    if policy is DuplicatePolicy.LEGACY:
        rows = ledger.get_transactions_for_account(account_id)
    else:
        start = today - timedelta(days=window_days)
        rows = ledger.get_transactions_between(start, today)
    _logger.debug(
        "duplicates:window policy=%s account_id=%s rows=%d", policy.value, account_id, len(rows)
    )
    return list(rows)


__all__ = [
    "AMOUNT_TOLERANCE",
    "DuplicateDetector",
    "DuplicatePolicy",
    "Partition",
    "amounts_match",
    "dates_match",
    "descriptions_match",
    "fetch_existing_window",
    "is_duplicate",
    "partition",
]
