from __future__ import annotations

import asyncio
import threading
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from statement_import.document_extractor import DocumentTextExtractor
from statement_import.errors import (
    EncodingError,
    FileNotReadable,
    ImportCancelled,
    ImportInProgress,
    InvalidTransition,
    ModelUnavailable,
    NoTransactionsFound,
    SaveFailed,
    StatementImportError,
)
from statement_import.ledger import InMemoryLedger
from statement_import.models import (
    CandidateTransaction,
    Category,
    ImportStatus,
    TransactionType,
)
from statement_import.orchestrator import ImportOrchestrator, to_ledger_transaction
from statement_import.recognition import StatementTextRecognizer
from statement_import.settings import ImportSettings
from tests.helpers.fakes import (
    BlockingLedger,
    FailingLedger,
    FakeEngine,
    FakeRecognizer,
    ledger_tx,
    make_model_handle,
)
from tests.helpers.openai_stub import transactions_json
from tests.helpers.statements import Tx, make_pdf, tag_soup, xml

ACCOUNT = "acc-1"
OWNER = "owner-1"


def _existing_restaurant():
    return ledger_tx(
        id="ledger-1",
        amount="45.90",
        description="RESTAURANTE DO JOAO",
        on=date(2024, 1, 5),
        account_id=ACCOUNT,
    )


def _run_in_thread(fn, *args):
    outcome: dict[str, object] = {}

    def _target():
        try:
            outcome["result"] = fn(*args)
        except Exception as exc:  # noqa: BLE001
            outcome["error"] = exc

    t = threading.Thread(target=_target, daemon=True)
    t.start()
    return t, outcome


# ---- Legacy path -------------------------------------------------------------


@pytest.mark.parametrize("render", [tag_soup, xml])
def test_legacy_import_end_to_end(render):
    ledger = InMemoryLedger([_existing_restaurant()])
    orch = ImportOrchestrator(ledger)

    result = orch.begin_import(render().encode("utf-8"), ACCOUNT)

    assert (result.success_count, result.duplicate_count, result.error_count) == (2, 1, 0)
    assert [c.id for c in result.duplicates] == ["F1"]
    assert orch.status is ImportStatus.REVIEWING
    assert orch.progress == pytest.approx(0.9)
    assert len(ledger) == 1

    report = orch.commit(result.accepted_ids(), ACCOUNT, OWNER)

    assert (report.saved_count, report.failed_count, report.duplicate_count) == (2, 0, 1)
    assert report.total_processed == 3
    assert orch.status is ImportStatus.COMPLETED
    assert orch.progress == 1.0
    assert len(ledger) == 3
    fuel = next(t for t in ledger.all() if t.external_id == "F3")
    assert fuel.amount == Decimal("120.00")
    assert fuel.type is TransactionType.EXPENSE
    assert fuel.category is Category.TRANSPORT
    assert fuel.owner_id == OWNER
    salary = next(t for t in ledger.all() if t.external_id == "F2")
    assert salary.type is TransactionType.INCOME
    assert salary.description == "SALARIO ACME - Pagamento mensal"


def test_status_sequence_and_progress_are_observable():
    orch = ImportOrchestrator(InMemoryLedger())
    statuses: list[ImportStatus] = []
    progress: list[float] = []

    def _observe(snapshot):
        if not statuses or statuses[-1] is not snapshot.status:
            statuses.append(snapshot.status)
        progress.append(snapshot.progress)

    orch.subscribe(_observe)
    result = orch.begin_import(tag_soup().encode("utf-8"), ACCOUNT)
    orch.commit(result.accepted_ids(), ACCOUNT, OWNER)

    assert statuses == [
        ImportStatus.IDLE,
        ImportStatus.EXTRACTING,
        ImportStatus.PARSING,
        ImportStatus.CHECKING_DUPLICATES,
        ImportStatus.REVIEWING,
        ImportStatus.SAVING,
        ImportStatus.COMPLETED,
    ]
    after_reset = progress[1:]
    assert after_reset == sorted(after_reset)
    assert after_reset[-1] == 1.0


def test_empty_legacy_statement_reaches_review_with_empty_result():
    orch = ImportOrchestrator(InMemoryLedger())

    result = orch.begin_import(tag_soup([]).encode("utf-8"), ACCOUNT)

    assert result.is_empty
    assert orch.status is ImportStatus.REVIEWING


def test_commit_while_idle_is_invalid_transition():
    orch = ImportOrchestrator(InMemoryLedger())

    with pytest.raises(InvalidTransition):
        orch.commit(["F1"], ACCOUNT, OWNER)
    assert orch.status is ImportStatus.IDLE


def test_partial_save_failure_is_reported_per_record():
    ledger = FailingLedger(
        [_existing_restaurant()], fail_when=lambda tx: "POSTO" in tx.description
    )
    orch = ImportOrchestrator(ledger)
    result = orch.begin_import(tag_soup().encode("utf-8"), ACCOUNT)

    report = orch.commit(result.accepted_ids(), ACCOUNT, OWNER)

    assert report.saved_count == 1
    assert report.failed_count == 1
    failure = report.failed[0]
    assert failure.candidate.id == "F3"
    assert isinstance(failure.error, SaveFailed)
    assert "constraint violated" in failure.description
    assert orch.status is ImportStatus.COMPLETED
    assert len(ledger) == 2


def test_unselected_and_duplicate_ids_are_not_saved():
    ledger = InMemoryLedger([_existing_restaurant()])
    orch = ImportOrchestrator(ledger)
    orch.begin_import(tag_soup().encode("utf-8"), ACCOUNT)

    report = orch.commit(["F1", "F2", "nope"], ACCOUNT, OWNER)

    assert [t.external_id for t in report.saved] == ["F2"]
    assert report.ignored_ids == ("F1", "nope")
    assert len(ledger) == 2


def test_duplicate_fitids_in_one_file_stay_distinct():
    txs = [
        Tx("DUP", "DEBIT", "20240105", "-10.00", "CAFE A"),
        Tx("DUP", "DEBIT", "20240106", "-20.00", "CAFE B"),
    ]
    orch = ImportOrchestrator(InMemoryLedger())

    result = orch.begin_import(tag_soup(txs).encode("utf-8"), ACCOUNT)

    assert result.accepted_ids() == ["DUP", "DUP#2"]


def test_second_begin_while_running_is_rejected():
    ledger = BlockingLedger()
    orch = ImportOrchestrator(ledger)
    data = tag_soup().encode("utf-8")

    thread, outcome = _run_in_thread(orch.begin_import, data, ACCOUNT)
    assert ledger.entered.wait(timeout=5)
    try:
        with pytest.raises(ImportInProgress):
            orch.begin_import(data, ACCOUNT)
        with pytest.raises(ImportInProgress):
            orch.reset()
    finally:
        ledger.release.set()
        thread.join(timeout=5)

    assert "error" not in outcome
    assert orch.status is ImportStatus.REVIEWING


def test_begin_from_review_requires_reset():
    orch = ImportOrchestrator(InMemoryLedger())
    data = tag_soup().encode("utf-8")
    orch.begin_import(data, ACCOUNT)

    with pytest.raises(InvalidTransition):
        orch.begin_import(data, ACCOUNT)

    orch.reset()
    assert orch.status is ImportStatus.IDLE
    assert orch.result is None
    assert orch.begin_import(data, ACCOUNT).success_count == 3


def test_cancel_while_running_takes_effect_at_next_stage():
    ledger = BlockingLedger()
    orch = ImportOrchestrator(ledger)

    thread, outcome = _run_in_thread(orch.begin_import, tag_soup().encode("utf-8"), ACCOUNT)
    assert ledger.entered.wait(timeout=5)
    orch.cancel()
    ledger.release.set()
    thread.join(timeout=5)

    assert isinstance(outcome.get("error"), ImportCancelled)
    assert orch.status is ImportStatus.FAILED
    assert orch.result is None
    assert len(ledger) == 0


def test_subscriber_can_cancel_from_a_progress_callback():
    orch = ImportOrchestrator(InMemoryLedger())
    orch.subscribe(lambda s: s.status is ImportStatus.EXTRACTING and orch.cancel())

    thread, outcome = _run_in_thread(orch.begin_import, tag_soup().encode("utf-8"), ACCOUNT)
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert isinstance(outcome.get("error"), ImportCancelled)
    assert orch.status is ImportStatus.FAILED


def test_subscriber_can_reset_when_the_import_completes():
    orch = ImportOrchestrator(InMemoryLedger())
    orch.subscribe(lambda s: s.status is ImportStatus.COMPLETED and orch.reset())
    orch.begin_import(tag_soup().encode("utf-8"), ACCOUNT)

    thread, outcome = _run_in_thread(orch.commit, ["F1"], ACCOUNT, OWNER)
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert outcome["result"].saved_count == 1
    assert orch.status is ImportStatus.IDLE
    assert orch.report is None


def test_cancel_during_review_discards_result():
    orch = ImportOrchestrator(InMemoryLedger())
    orch.begin_import(tag_soup().encode("utf-8"), ACCOUNT)

    orch.cancel()

    assert orch.status is ImportStatus.FAILED
    assert orch.result is None
    assert isinstance(orch.channel.snapshot.error, ImportCancelled)
    with pytest.raises(InvalidTransition):
        orch.commit(["F2"], ACCOUNT, OWNER)


def test_source_failures_move_to_failed(tmp_path: Path):
    orch = ImportOrchestrator(InMemoryLedger())

    with pytest.raises(FileNotReadable):
        orch.begin_import(tmp_path / "missing.ofx", ACCOUNT)
    assert orch.status is ImportStatus.FAILED
    assert isinstance(orch.channel.snapshot.error, FileNotReadable)

    orch.reset()
    with pytest.raises(EncodingError):
        orch.begin_import(b"<OFX>\n<NAME>\x81\n</OFX>", ACCOUNT)
    assert orch.status is ImportStatus.FAILED


def test_unexpected_errors_are_wrapped():
    class _BrokenLedger(InMemoryLedger):
        def get_transactions_for_account(self, account_id):
            raise KeyError("index corrupted")

    orch = ImportOrchestrator(_BrokenLedger())

    with pytest.raises(StatementImportError) as excinfo:
        orch.begin_import(tag_soup().encode("utf-8"), ACCOUNT)
    assert isinstance(excinfo.value.__cause__, KeyError)
    assert orch.status is ImportStatus.FAILED


def test_import_from_path(tmp_path: Path):
    path = tmp_path / "extrato.ofx"
    path.write_text(tag_soup(), encoding="utf-8")
    orch = ImportOrchestrator(InMemoryLedger())

    assert orch.begin_import(path, ACCOUNT).success_count == 3


def test_async_wrappers():
    ledger = InMemoryLedger()
    orch = ImportOrchestrator(ledger)

    async def _flow():
        result = await orch.begin_import_async(xml().encode("utf-8"), ACCOUNT)
        return await orch.commit_async(result.accepted_ids(), ACCOUNT, OWNER)

    report = asyncio.run(_flow())

    assert report.saved_count == 3
    assert orch.status is ImportStatus.COMPLETED


# ---- Document path -----------------------------------------------------------


def _pdf_orchestrator(tmp_path: Path, ledger, engine: FakeEngine, *, installed: bool = True):
    ocr = FakeRecognizer([[("07/01/2024 POSTO SHELL 120,00", 0.9), ("08/01 SABOR 30,00", 0.9)]])
    settings = ImportSettings(page_concurrency=1, model_dir=tmp_path / "models")
    orch = ImportOrchestrator(
        ledger,
        extractor=DocumentTextExtractor(ocr, settings=settings),
        recognizer=StatementTextRecognizer(
            make_model_handle(tmp_path, engine, installed=installed, settings=settings)
        ),
        settings=settings,
        today=lambda: date(2024, 1, 31),
    )
    return orch, ocr


def _pdf_bytes() -> bytes:
    return make_pdf(["extrato"])


def test_pdf_import_uses_document_dedup_window(tmp_path: Path):
    existing = ledger_tx(
        id="ledger-1",
        amount="120.00",
        description="POSTO SHELL AV PAULISTA",
        on=date(2024, 1, 6),
        account_id="another-account",
    )
    engine = FakeEngine(
        transactions_json(
            {
                "date": "2024-01-07",
                "description": "Posto Shell",
                "amount": 120.0,
                "type": "expense",
                "suggested_category": "transport",
            },
            {
                "date": "2024-01-08",
                "description": "Restaurante Sabor",
                "amount": "30,00",
                "type": "expense",
                "suggested_category": "other",
            },
        )
    )
    ledger = InMemoryLedger([existing])
    orch, _ = _pdf_orchestrator(tmp_path, ledger, engine)

    result = orch.begin_import(_pdf_bytes(), ACCOUNT)

    assert [c.description for c in result.duplicates] == ["Posto Shell"]
    (accepted,) = result.accepted
    assert accepted.suggested_category is Category.FOOD
    assert accepted.confidence == pytest.approx(0.9)
    assert accepted.amount == Decimal("30.00")

    report = orch.commit(result.accepted_ids(), ACCOUNT, OWNER)
    assert report.saved_count == 1
    assert report.saved[0].account_id == ACCOUNT


def test_pdf_import_fails_fast_without_model(tmp_path: Path):
    orch, ocr = _pdf_orchestrator(tmp_path, InMemoryLedger(), FakeEngine("[]"), installed=False)

    with pytest.raises(ModelUnavailable):
        orch.begin_import(_pdf_bytes(), ACCOUNT)
    assert ocr.calls == []
    assert orch.status is ImportStatus.FAILED


def test_pdf_import_without_recognizer_is_model_unavailable():
    orch = ImportOrchestrator(InMemoryLedger())

    with pytest.raises(ModelUnavailable):
        orch.begin_import(_pdf_bytes(), ACCOUNT)


def test_pdf_with_no_recognized_transactions(tmp_path: Path):
    orch, _ = _pdf_orchestrator(tmp_path, InMemoryLedger(), FakeEngine('{"transactions": []}'))

    with pytest.raises(NoTransactionsFound):
        orch.begin_import(_pdf_bytes(), ACCOUNT)
    assert orch.status is ImportStatus.FAILED


# ---- Conversion --------------------------------------------------------------


def test_to_ledger_transaction_falls_back_to_keyword_category():
    now = datetime(2024, 2, 1, tzinfo=UTC)
    candidate = CandidateTransaction(
        id="pdf-abc",
        date=date(2024, 1, 9),
        description="Netflix",
        amount=Decimal("39.90"),
        type=TransactionType.EXPENSE,
    )

    tx = to_ledger_transaction(candidate, account_id=ACCOUNT, owner_id=OWNER, now=now)

    assert tx.category is Category.ENTERTAINMENT
    assert tx.external_id == "pdf-abc"
    assert tx.created_at == tx.updated_at == now
    assert tx.id != candidate.id
