"""CLI for the ``statement_import`` package.

Typer-based console interface. Environment variables (``DATABASE_URL``,
``OPENAI_API_KEY``, ``STATEMENT_IMPORT_*``) are loaded from a local ``.env``
using ``python-dotenv`` before any command runs. Business logic lives in
:mod:`statement_import.orchestrator` and related modules.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import ArgumentInfo

from .errors import StatementImportError
from .logging_setup import configure_logging
from .models import ImportResult
from .settings import ImportSettings

# ---- Small module-level helpers used by CLI commands -------------------------


def _echo_result(result: ImportResult) -> None:
    typer.echo(
        f"accepted={result.success_count} duplicates={result.duplicate_count} "
        f"errors={result.error_count} skipped={result.skipped_count}"
    )
    for c in result.accepted:
        category = c.suggested_category.value if c.suggested_category else "-"
        typer.echo(
            f"  {c.id}  {c.date.isoformat()}  {c.type.value:<8} {c.amount:>12}  "
            f"[{category}] {c.description}"
        )
    for err in result.errors:
        typer.echo(f"  error record={err.record_id}: {err.reason}", err=True)


def _fail(exc: StatementImportError) -> typer.Exit:
    typer.echo(f"Error [{exc.code}]: {exc.message}", err=True)
    return typer.Exit(1)


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank statements (legacy OFX-style exports or PDF) into the ledger "
        "with duplicate detection. Loads a local .env before running."
    ),
)
model_app = typer.Typer(no_args_is_help=True, help="Manage the cached inference model.")
app.add_typer(model_app, name="model")


# Module-level argument object to satisfy ruff B008 (no calls in parameter
# defaults). Typer will inspect this when used as a default value below.
SOURCE_ARGUMENT: ArgumentInfo = typer.Argument(
    ...,
    help="Statement file: legacy bank export (.ofx) or PDF",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the orchestrator reports unreadable files itself
)


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # Load environment from .env in CWD (override=False to keep existing env)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


@app.command("import")
def import_cmd(
    source: Annotated[Path, SOURCE_ARGUMENT],
    *,
    account: str = typer.Option(..., help="Target ledger account id."),
    owner: str = typer.Option(..., help="Owner id stamped on saved transactions."),
    select_all: bool = typer.Option(
        False, "--select-all", help="Commit every accepted transaction without asking."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Stop after review; write nothing to the ledger."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Parse, dedup and (optionally) commit one statement file."""

    # Deferred imports to keep CLI startup fast
    from .document_extractor import DocumentTextExtractor
    from .inference import ModelHandle
    from .ledger import SqlLedger
    from .ocr import TesseractRecognizer
    from .orchestrator import ImportOrchestrator
    from .recognition import StatementTextRecognizer

    settings = ImportSettings.from_env()
    ledger = SqlLedger(database_url)
    ledger.create_schema()
    orchestrator = ImportOrchestrator(
        ledger,
        extractor=DocumentTextExtractor(TesseractRecognizer(), settings=settings),
        recognizer=StatementTextRecognizer(ModelHandle(settings)),
        settings=settings,
    )

    try:
        result = orchestrator.begin_import(source, account)
    except StatementImportError as exc:
        raise _fail(exc) from exc

    _echo_result(result)
    if dry_run or not result.accepted:
        orchestrator.reset()
        return
    if not select_all and not typer.confirm(
        f"Import {result.success_count} transaction(s) into {account}?"
    ):
        orchestrator.reset()
        raise typer.Exit(0)

    report = orchestrator.commit(result.accepted_ids(), account, owner)
    typer.echo(
        f"saved={report.saved_count} failed={report.failed_count} "
        f"duplicates={report.duplicate_count}"
    )
    for failure in report.failed:
        typer.echo(f"  failed: {failure.description}", err=True)
    if report.failed:
        raise typer.Exit(1)


@app.command("backfill")
def backfill_cmd(
    account: str = typer.Option(..., help="Ledger account id to recategorize."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Recategorize the account's transactions that are still ``other``."""

    from .categorizer import backfill_categories
    from .ledger import SqlLedger

    ledger = SqlLedger(database_url)
    updated = backfill_categories(ledger.get_transactions_for_account(account))
    changed = ledger.update_categories(updated)
    typer.echo(f"updated={changed}")


@model_app.command("status")
def model_status_cmd() -> None:
    from .inference import ModelHandle

    handle = ModelHandle(ImportSettings.from_env())
    state = "available" if handle.is_available() else "missing"
    typer.echo(f"{handle.settings.model_name}: {state} ({handle.path})")


@model_app.command("download")
def model_download_cmd() -> None:
    from .inference import ModelHandle

    handle = ModelHandle(ImportSettings.from_env())
    try:
        path = handle.download(progress=lambda f: typer.echo(f"\r{f:6.1%}", nl=False))
        handle.load()
    except StatementImportError as exc:
        typer.echo("")
        raise _fail(exc) from exc
    typer.echo(f"\nsaved to {path}")


@model_app.command("clear")
def model_clear_cmd() -> None:
    from .inference import ModelHandle

    handle = ModelHandle(ImportSettings.from_env())
    handle.clear_cache()
    typer.echo(f"cleared {handle.path}")


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    # Running as a module: `python -m statement_import.cli`
    app()
