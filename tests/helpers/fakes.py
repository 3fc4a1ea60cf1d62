"""In-process stand-ins for the OCR, inference and ledger collaborators."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from statement_import.inference import ModelHandle, ModelManifest
from statement_import.ledger import InMemoryLedger
from statement_import.models import Category, LedgerTransaction, TransactionType
from statement_import.ocr import AccuracyLevel, RecognizedRegion
from statement_import.settings import ImportSettings


class FakeRecognizer:
    """Returns scripted regions per call, in page-render order.

    ``pages`` holds one list of ``(text, confidence)`` pairs per page. Calls
    beyond the script return no regions.
    """

    def __init__(self, pages: Sequence[Sequence[tuple[str, float]]]) -> None:
        self._pages = [list(p) for p in pages]
        self._lock = threading.Lock()
        self.calls: list[tuple[tuple[int, int], tuple[str, ...], AccuracyLevel]] = []

    def recognize(
        self, image: Any, languages: Sequence[str], accuracy: AccuracyLevel
    ) -> list[RecognizedRegion]:
        with self._lock:
            index = len(self.calls)
            self.calls.append((tuple(image.size), tuple(languages), accuracy))
        script = self._pages[index] if index < len(self._pages) else []
        return [RecognizedRegion(text=t, confidence=c) for t, c in script]


class FakeEngine:
    """Engine that returns a fixed text (or raises) and records prompts."""

    def __init__(self, output: str | Exception) -> None:
        self.output = output
        self.prompts: list[str] = []

    def run(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self.output, Exception):
            raise self.output
        return self.output


def write_manifest(model_dir: Path, *, name: str = "statement-parser-v1", **extra: Any) -> Path:
    model_dir.mkdir(parents=True, exist_ok=True)
    path = model_dir / f"{name}.json"
    path.write_text(json.dumps({"name": name, "model": "local-parser", **extra}), encoding="utf-8")
    return path


def make_model_handle(
    tmp_path: Path,
    engine: FakeEngine,
    *,
    installed: bool = True,
    settings: ImportSettings | None = None,
) -> ModelHandle:
    """A :class:`ModelHandle` whose factory always returns ``engine``."""

    settings = settings or ImportSettings(model_dir=tmp_path / "models")
    if installed:
        write_manifest(settings.model_dir, name=settings.model_name)

    def _factory(_manifest: ModelManifest) -> FakeEngine:
        return engine

    return ModelHandle(settings, engine_factory=_factory)


def ledger_tx(
    *,
    id: str,
    amount: str,
    description: str,
    on: date,
    account_id: str = "acc-1",
    category: Category = Category.OTHER,
    type: TransactionType = TransactionType.EXPENSE,
) -> LedgerTransaction:
    now = datetime(2024, 1, 1, tzinfo=UTC)
    return LedgerTransaction(
        id=id,
        account_id=account_id,
        amount=Decimal(amount),
        description=description,
        category=category,
        type=type,
        date=on,
        owner_id="owner-1",
        created_at=now,
        updated_at=now,
    )


class FailingLedger(InMemoryLedger):
    """Rejects inserts whose description matches ``fail_when``."""

    def __init__(
        self,
        transactions: Sequence[LedgerTransaction] = (),
        *,
        fail_when: Callable[[LedgerTransaction], bool],
    ) -> None:
        super().__init__(transactions)
        self._fail_when = fail_when

    def add_transaction(self, tx: LedgerTransaction) -> None:
        if self._fail_when(tx):
            raise RuntimeError(f"constraint violated for {tx.description}")
        super().add_transaction(tx)


class BlockingLedger(InMemoryLedger):
    """Blocks window reads until released, to hold an import mid-run."""

    def __init__(self, transactions: Sequence[LedgerTransaction] = ()) -> None:
        super().__init__(transactions)
        self.entered = threading.Event()
        self.release = threading.Event()

    def _block(self) -> None:
        self.entered.set()
        if not self.release.wait(timeout=5):
            raise TimeoutError("BlockingLedger was never released")

    def get_transactions_for_account(self, account_id: str) -> list[LedgerTransaction]:
        self._block()
        return super().get_transactions_for_account(account_id)

    def get_transactions_between(self, start: date, end: date) -> list[LedgerTransaction]:
        self._block()
        return super().get_transactions_between(start, end)
