"""Pytest configuration for test isolation.

The model handle caches its manifest under ``STATEMENT_IMPORT_MODEL_DIR``
(default ``./.cache/models``) and the SQL ledger caches one engine per
database URL. Both outlive a single test unless reset, so a manifest written
by one test could make a later "model unavailable" test pass the
availability check.

To keep tests hermetic, every test gets its own model directory and the
engine cache is disposed afterwards.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from statement_import.ledger.client import dispose_engines


@pytest.fixture(autouse=True)
def _isolate_model_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Force a per-test model cache and drop cached SQL engines afterwards."""

    model_dir = tmp_path / "models"
    model_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("STATEMENT_IMPORT_MODEL_DIR", os.fspath(model_dir))
    monkeypatch.delenv("STATEMENT_IMPORT_MODEL_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    yield
    dispose_engines()
