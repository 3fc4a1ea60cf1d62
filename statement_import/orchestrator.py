"""End-to-end import driver: read -> parse/recognize -> dedup -> review -> commit.

Status flow (see :mod:`statement_import.progress`)::

    idle -> extracting -> parsing -> checking_duplicates -> reviewing
         -> saving -> completed
    (any active state) -> failed

``begin_import`` runs up to ``reviewing`` and returns the
:class:`~statement_import.models.ImportResult`; nothing is written until the
caller picks ids and calls ``commit``. Progress bands: extraction 0.0-0.3,
parsing/recognition 0.3-0.7, duplicate check 0.7-0.9, saving 0.9-1.0.

One import at a time per instance: a second ``begin_import`` while one is
running is rejected with :class:`ImportInProgress`. Cancellation is honored
only between stages; a running extraction or model call finishes first.
State checks and the transitions they guard run inside
:meth:`ProgressChannel.atomic`, so subscribers are never called with a lock
held and may call ``cancel`` or ``reset`` themselves.
"""

from __future__ import annotations

import asyncio
import os
import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime

from .categorizer import categorize
from .document_extractor import DocumentTextExtractor, read_document
from .duplicates import fetch_existing_window, partition
from .errors import (
    ImportCancelled,
    ImportInProgress,
    InvalidFormat,
    InvalidTransition,
    ModelInferenceFailed,
    ModelUnavailable,
    NoTransactionsFound,
    SaveFailed,
    StatementImportError,
)
from .ingest import ParsedSource, PdfCandidates, SourceKind, parse_legacy_source, sniff_source
from .ledger.base import Ledger
from .legacy_parser import LegacyFormatParser
from .logging_setup import get_logger
from .models import (
    CandidateTransaction,
    CommitReport,
    ImportResult,
    ImportStatus,
    LedgerTransaction,
    SaveFailure,
)
from .progress import STAGE_END, ProgressChannel, ProgressSnapshot
from .recognition import StatementTextRecognizer
from .settings import ImportSettings

_logger = get_logger("statement_import.orchestrator")

type ImportSource = bytes | str | os.PathLike[str]


def to_ledger_transaction(
    candidate: CandidateTransaction,
    *,
    account_id: str,
    owner_id: str,
    now: datetime,
) -> LedgerTransaction:
    return LedgerTransaction(
        id=str(uuid.uuid4()),
        account_id=account_id,
        amount=candidate.amount,
        description=candidate.description,
        category=candidate.suggested_category or categorize(candidate.description),
        type=candidate.type,
        date=candidate.date,
        owner_id=owner_id,
        created_at=now,
        updated_at=now,
        external_id=candidate.id,
    )


class ImportOrchestrator:
    """Drive one statement import at a time against a ledger.

    Parameters
    ----------
    ledger:
        Ledger collaborator used for the dedup window and for commits.
    extractor / recognizer:
        Required only for PDF sources. Without a recognizer a PDF import fails
        with :class:`ModelUnavailable` before any page is read.
    settings:
        Limits and windows; defaults to :class:`ImportSettings` defaults.
    today:
        Clock for the document dedup window (injectable for tests).
    """

    def __init__(
        self,
        ledger: Ledger,
        *,
        extractor: DocumentTextExtractor | None = None,
        recognizer: StatementTextRecognizer | None = None,
        parser: LegacyFormatParser | None = None,
        settings: ImportSettings | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.ledger = ledger
        self.extractor = extractor
        self.recognizer = recognizer
        self.parser = parser or LegacyFormatParser()
        self.settings = settings or ImportSettings()
        self._today = today
        self.channel = ProgressChannel()
        self._cancel = threading.Event()
        self._result: ImportResult | None = None
        self._report: CommitReport | None = None

    # ---- observation -------------------------------------------------------

    @property
    def status(self) -> ImportStatus:
        return self.channel.status

    @property
    def progress(self) -> float:
        return self.channel.progress

    @property
    def result(self) -> ImportResult | None:
        return self._result

    @property
    def report(self) -> CommitReport | None:
        return self._report

    def subscribe(self, callback: Callable[[ProgressSnapshot], None]) -> Callable[[], None]:
        return self.channel.subscribe(callback)

    # ---- begin -------------------------------------------------------------

    def begin_import(self, source: ImportSource, target_account: str) -> ImportResult:
        """Run every stage up to review and return the (uncommitted) result."""

        with self.channel.atomic():
            status = self.channel.status
            if status.is_running:
                raise ImportInProgress(status)
            if status is not ImportStatus.IDLE:
                raise InvalidTransition(status, ImportStatus.EXTRACTING)
            self._cancel.clear()
            self._result = None
            self._report = None
            self.channel.reset()
            self.channel.transition(ImportStatus.EXTRACTING, progress=0.0, message="Lendo arquivo")

        _logger.info("import:begin account_id=%s", target_account)
        try:
            result = self._run(source, target_account)
        except StatementImportError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            wrapped = StatementImportError(f"Erro inesperado: {exc}")
            self._fail(wrapped)
            raise wrapped from exc
        return result

    async def begin_import_async(self, source: ImportSource, target_account: str) -> ImportResult:
        return await asyncio.to_thread(self.begin_import, source, target_account)

    def _run(self, source: ImportSource, target_account: str) -> ImportResult:
        # Stage 1: read, sniff once, and (PDF only) extract page text.
        data = read_document(source, max_bytes=self.settings.max_document_bytes)
        kind = sniff_source(data)
        _logger.info("import:sniffed kind=%s bytes=%d", kind.value, len(data))

        extracted = None
        if kind is SourceKind.PDF:
            if self.recognizer is None or self.extractor is None:
                raise ModelUnavailable()
            self.recognizer.ensure_available()
            band = STAGE_END[ImportStatus.EXTRACTING]
            extracted = self.extractor.extract(
                data, on_progress=lambda f: self.channel.advance(band * f)
            )
        self._checkpoint(ImportStatus.PARSING, "Analisando transações")

        # Stage 2: parse (legacy) or recognize (PDF).
        parsed: ParsedSource
        if extracted is not None:
            assert self.recognizer is not None
            try:
                outcome = self.recognizer.recognize_detailed(extracted)
            except StatementImportError:
                raise
            except Exception as exc:
                raise ModelInferenceFailed(str(exc)) from exc
            parsed = PdfCandidates(extracted=extracted, outcome=outcome)
            if not outcome.candidates and not outcome.errors:
                raise NoTransactionsFound()
        else:
            try:
                parsed = parse_legacy_source(data, kind, self.parser)
            except StatementImportError:
                raise
            except Exception as exc:
                raise InvalidFormat(str(exc)) from exc
        candidates = parsed.candidates
        self._checkpoint(ImportStatus.CHECKING_DUPLICATES, "Verificando duplicatas")

        # Stage 3: duplicate check against a bounded window of the ledger.
        existing = fetch_existing_window(
            self.ledger,
            parsed.policy,
            account_id=target_account,
            today=self._today(),
            window_days=self.settings.dedup_window_days,
        )
        split = partition(candidates, existing, parsed.policy)
        result = ImportResult(
            accepted=split.unique,
            duplicates=split.duplicates,
            errors=parsed.errors,
            skipped=parsed.skipped,
        )
        self._result = result
        self._checkpoint(ImportStatus.REVIEWING, "Aguardando revisão")
        _logger.info(
            "import:reviewing kind=%s accepted=%d duplicates=%d errors=%d skipped=%d",
            kind.value,
            result.success_count,
            result.duplicate_count,
            result.error_count,
            result.skipped_count,
        )
        return result

    def _checkpoint(self, target: ImportStatus, message: str) -> None:
        """Finish the current stage, honor cancellation, then enter ``target``."""

        with self.channel.atomic():
            current = self.channel.status
            self.channel.advance(STAGE_END.get(current, self.channel.progress))
            if self._cancel.is_set():
                raise ImportCancelled()
            self.channel.transition(target, message=message)

    def _fail(self, error: StatementImportError) -> None:
        _logger.error(
            "import:failed status=%s code=%s message=%s",
            self.status.value,
            error.code,
            error.message,
        )
        self._result = None
        with self.channel.atomic():
            status = self.channel.status
            if status.is_running or status is ImportStatus.REVIEWING:
                self.channel.fail(error)

    # ---- commit ------------------------------------------------------------

    def commit(
        self,
        selected_ids: Iterable[str],
        target_account: str,
        owner: str,
    ) -> CommitReport:
        """Write the selected accepted candidates one at a time.

        Ids that are not among the accepted candidates (duplicates, unknown
        ids) are ignored and listed in ``CommitReport.ignored_ids``. A failed
        write is recorded and the remaining records are still attempted.
        """

        with self.channel.atomic():
            status = self.channel.status
            if status is not ImportStatus.REVIEWING or self._result is None:
                raise InvalidTransition(status, ImportStatus.SAVING)
            result = self._result
            self.channel.transition(
                ImportStatus.SAVING,
                progress=STAGE_END[ImportStatus.CHECKING_DUPLICATES],
                message="Salvando transações",
            )

        wanted = list(dict.fromkeys(selected_ids))
        accepted_ids = set(result.accepted_ids())
        ignored = tuple(i for i in wanted if i not in accepted_ids)
        if ignored:
            _logger.warning("commit:ignored_ids count=%d ids=%s", len(ignored), list(ignored))
        chosen = set(wanted)
        to_save = [c for c in result.accepted if c.id in chosen]

        saved: list[LedgerTransaction] = []
        failed: list[SaveFailure] = []
        now = datetime.now(UTC)
        start = STAGE_END[ImportStatus.CHECKING_DUPLICATES]
        total = len(to_save)
        for i, candidate in enumerate(to_save, start=1):
            tx = to_ledger_transaction(
                candidate, account_id=target_account, owner_id=owner, now=now
            )
            try:
                self.ledger.add_transaction(tx)
            except Exception as exc:  # noqa: BLE001
                error = SaveFailed(str(exc))
                failed.append(SaveFailure(candidate=candidate, error=error))
                _logger.warning(
                    "commit:save_failed candidate_id=%s error=%s",
                    candidate.id,
                    exc.__class__.__name__,
                )
            else:
                saved.append(tx)
            self.channel.advance(start + (1.0 - start) * i / total)

        report = CommitReport(
            saved=tuple(saved),
            failed=tuple(failed),
            duplicate_count=result.duplicate_count,
            ignored_ids=ignored,
        )
        self._report = report
        self.channel.transition(
            ImportStatus.COMPLETED, progress=1.0, message="Importação concluída"
        )
        _logger.info(
            "commit:done account_id=%s saved=%d failed=%d duplicates=%d",
            target_account,
            report.saved_count,
            report.failed_count,
            report.duplicate_count,
        )
        return report

    async def commit_async(
        self,
        selected_ids: Iterable[str],
        target_account: str,
        owner: str,
    ) -> CommitReport:
        return await asyncio.to_thread(self.commit, list(selected_ids), target_account, owner)

    # ---- control -----------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation.

        While a stage runs, the request takes effect at the next stage
        boundary. While reviewing, the import fails immediately and the
        pending result is dropped.
        """

        with self.channel.atomic():
            status = self.channel.status
            if status.is_running:
                self._cancel.set()
                _logger.info("import:cancel_requested status=%s", status.value)
            elif status is ImportStatus.REVIEWING:
                self._result = None
                self.channel.fail(ImportCancelled())

    def reset(self) -> None:
        """Return to ``idle`` from review or a terminal state."""

        with self.channel.atomic():
            status = self.channel.status
            if status.is_running:
                raise ImportInProgress(status)
            self._cancel.clear()
            self._result = None
            self._report = None
            self.channel.reset()


__all__ = ["ImportOrchestrator", "ImportSource", "to_ledger_transaction"]
