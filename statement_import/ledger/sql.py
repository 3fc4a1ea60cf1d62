"""SQLAlchemy-backed ledger.

Each ``add_transaction`` runs in its own session/transaction so one failed
insert never rolls back records written before it.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import select

from ..logging_setup import get_logger
from ..models import Category, LedgerTransaction, TransactionType
from .client import get_engine, session_scope
from .models import Base, LedgerTransactionRow

_logger = get_logger("statement_import.ledger.sql")


def _to_row(tx: LedgerTransaction) -> LedgerTransactionRow:
    return LedgerTransactionRow(
        id=tx.id,
        account_id=tx.account_id,
        owner_id=tx.owner_id,
        amount=tx.amount,
        description=tx.description,
        category=tx.category.value,
        type=tx.type.value,
        date=tx.date,
        external_id=tx.external_id,
        created_at=tx.created_at,
        updated_at=tx.updated_at,
    )


def _from_row(row: LedgerTransactionRow) -> LedgerTransaction:
    return LedgerTransaction(
        id=row.id,
        account_id=row.account_id,
        amount=row.amount,
        description=row.description,
        category=Category(row.category),
        type=TransactionType(row.type),
        date=row.date,
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        external_id=row.external_id,
    )


class SqlLedger:
    """Ledger collaborator over a SQLAlchemy database URL."""

    def __init__(self, database_url: str | None = None) -> None:
        self._url = database_url

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=get_engine(database_url=self._url))

    def get_transactions_for_account(self, account_id: str) -> list[LedgerTransaction]:
        stmt = (
            select(LedgerTransactionRow)
            .where(LedgerTransactionRow.account_id == account_id)
            .order_by(LedgerTransactionRow.date, LedgerTransactionRow.id)
        )
        with session_scope(database_url=self._url) as session:
            return [_from_row(r) for r in session.execute(stmt).scalars()]

    def get_transactions_between(self, start: date, end: date) -> list[LedgerTransaction]:
        stmt = (
            select(LedgerTransactionRow)
            .where(LedgerTransactionRow.date >= start, LedgerTransactionRow.date <= end)
            .order_by(LedgerTransactionRow.date, LedgerTransactionRow.id)
        )
        with session_scope(database_url=self._url) as session:
            return [_from_row(r) for r in session.execute(stmt).scalars()]

    def add_transaction(self, tx: LedgerTransaction) -> None:
        with session_scope(database_url=self._url) as session:
            session.add(_to_row(tx))
        _logger.debug("ledger_sql:insert id=%s account_id=%s", tx.id, tx.account_id)

    def update_categories(self, transactions: list[LedgerTransaction]) -> int:
        """Write back ``category``/``updated_at`` for already-stored rows."""

        changed = 0
        with session_scope(database_url=self._url) as session:
            for tx in transactions:
                row = session.get(LedgerTransactionRow, tx.id)
                if row is None:
                    continue
                row.category = tx.category.value
                row.updated_at = tx.updated_at
                changed += 1
        _logger.info("ledger_sql:update_categories changed=%d", changed)
        return changed


__all__ = ["SqlLedger"]
