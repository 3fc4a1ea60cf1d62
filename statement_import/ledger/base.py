"""Ledger collaborator interface and an in-process implementation.

The import pipeline only reads bounded windows and inserts records one at a
time; it never updates or deletes ledger rows.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from datetime import date
from typing import Protocol, runtime_checkable

from ..models import LedgerTransaction


@runtime_checkable
class Ledger(Protocol):
    def get_transactions_for_account(self, account_id: str) -> Sequence[LedgerTransaction]: ...

    def get_transactions_between(self, start: date, end: date) -> Sequence[LedgerTransaction]:
        """Return transactions with ``start <= date <= end``."""
        ...

    def add_transaction(self, tx: LedgerTransaction) -> None:
        """Persist ``tx``; raise on failure."""
        ...


class InMemoryLedger:
    """List-backed ledger, safe to share across threads."""

    def __init__(self, transactions: Sequence[LedgerTransaction] = ()) -> None:
        self._lock = threading.Lock()
        self._rows: list[LedgerTransaction] = list(transactions)

    def get_transactions_for_account(self, account_id: str) -> list[LedgerTransaction]:
        with self._lock:
            return [tx for tx in self._rows if tx.account_id == account_id]

    def get_transactions_between(self, start: date, end: date) -> list[LedgerTransaction]:
        with self._lock:
            return [tx for tx in self._rows if start <= tx.date <= end]

    def add_transaction(self, tx: LedgerTransaction) -> None:
        with self._lock:
            if any(row.id == tx.id for row in self._rows):
                raise ValueError(f"duplicate ledger id: {tx.id}")
            self._rows.append(tx)

    def all(self) -> list[LedgerTransaction]:
        with self._lock:
            return list(self._rows)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


__all__ = ["InMemoryLedger", "Ledger"]
