"""Keyword categorizer for transaction descriptions.

``categorize`` is a pure, first-match-wins lookup over an ordered list of
keyword groups. Group order is part of the contract: a description that hits
several groups gets the earliest one (``"mercado livre"`` is food because
``"mercado"`` is checked before the shopping terms).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime

from .logging_setup import get_logger
from .models import Category, LedgerTransaction, LegacyTypeCode, RawTransaction

_logger = get_logger("statement_import.categorizer")

# Ordered: food, transport, shopping, entertainment, healthcare, bills.
KEYWORD_GROUPS: tuple[tuple[Category, tuple[str, ...]], ...] = (
    (
        Category.FOOD,
        ("restaurante", "ifood", "uber eats", "rappi", "mercado", "supermercado"),
    ),
    (Category.TRANSPORT, ("uber", "99", "posto", "gasolina", "combustível")),
    (Category.SHOPPING, ("amazon", "mercado livre", "americanas", "magazine")),
    (Category.ENTERTAINMENT, ("netflix", "spotify", "cinema", "streaming")),
    (Category.HEALTHCARE, ("farmácia", "hospital", "médico", "clínica")),
    (Category.BILLS, ("energia", "água", "internet", "celular", "aluguel")),
)

# Only consulted when keywords give nothing better than OTHER.
_TYPE_CODE_FALLBACK: dict[LegacyTypeCode, Category] = {
    LegacyTypeCode.INT: Category.INVESTMENT,
    LegacyTypeCode.DIV: Category.INVESTMENT,
    LegacyTypeCode.DIRECTDEP: Category.SALARY,
}


def categorize(description: str) -> Category:
    """Map a free-text description to a :class:`Category` (default ``OTHER``)."""

    lowered = description.lower()
    for category, keywords in KEYWORD_GROUPS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return Category.OTHER


def categorize_raw(tx: RawTransaction) -> Category:
    """Categorize a legacy record from its name and memo, then its type code."""

    text = f"{tx.name} {tx.memo}" if tx.memo else tx.name
    category = categorize(text)
    if category is not Category.OTHER:
        return category
    code = LegacyTypeCode.lookup(tx.type_code)
    if code is None:
        return Category.OTHER
    return _TYPE_CODE_FALLBACK.get(code, Category.OTHER)


def backfill_categories(
    transactions: Iterable[LedgerTransaction],
    *,
    categorizer: Callable[[str], Category] = categorize,
    now: datetime | None = None,
) -> list[LedgerTransaction]:
    """Return copies of ``OTHER``-category transactions that now categorize better.

    Transactions that already carry a specific category are never touched;
    ones that still come out as ``OTHER`` are left out of the result.
    """

    stamp = now or datetime.now(UTC)
    updated: list[LedgerTransaction] = []
    seen = 0
    for tx in transactions:
        if tx.category is not Category.OTHER:
            continue
        seen += 1
        category = categorizer(tx.description)
        if category is Category.OTHER:
            continue
        updated.append(replace(tx, category=category, updated_at=stamp))
    _logger.info("categorizer:backfill candidates=%d updated=%d", seen, len(updated))
    return updated


__all__ = [
    "KEYWORD_GROUPS",
    "backfill_categories",
    "categorize",
    "categorize_raw",
]
