"""Runtime settings for the import pipeline.

Values come from ``STATEMENT_IMPORT_*`` environment variables (the CLI loads a
local ``.env`` first). Library callers may also build :class:`ImportSettings`
directly; nothing here reads the environment at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_PREFIX = "STATEMENT_IMPORT_"

DEFAULT_MAX_DOCUMENT_BYTES: int = 50 * 1024 * 1024
DEFAULT_OCR_LANGUAGES: tuple[str, ...] = ("por", "eng")


def _env(name: str) -> str | None:
    raw = os.getenv(_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{_PREFIX}{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{_PREFIX}{name} must be positive, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{_PREFIX}{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class ImportSettings:
    """Tunables for extraction, recognition, dedup and the model cache.

    Attributes
    ----------
    max_document_bytes:
        Paginated documents larger than this are rejected with
        :class:`~statement_import.errors.FileTooLarge`.
    ocr_languages:
        Languages handed to the text-recognition collaborator.
    ocr_min_confidence:
        Mean page confidence (over non-empty pages) below which extraction
        fails with :class:`~statement_import.errors.LowConfidence`.
    page_concurrency:
        Maximum pages rendered/recognized at once.
    render_zoom:
        Raster scale relative to the page media box (1.0 = native size).
    dedup_window_days:
        Look-back window for the document-path duplicate check.
    model_dir / model_name / model_url / model_download_timeout:
        Location and source of the cached inference model.
    inference_model / inference_base_url:
        Model identifier and endpoint for the OpenAI-compatible engine, used
        when the cached manifest leaves them unset.
    """

    max_document_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES
    ocr_languages: tuple[str, ...] = DEFAULT_OCR_LANGUAGES
    ocr_min_confidence: float = 0.25
    page_concurrency: int = 4
    render_zoom: float = 1.0
    dedup_window_days: int = 90
    model_dir: Path = field(default_factory=lambda: Path.cwd() / ".cache" / "models")
    model_name: str = "statement-parser-v1"
    model_url: str | None = None
    model_download_timeout: float = 120.0
    inference_model: str = "gpt-5"
    inference_base_url: str | None = None

    @classmethod
    def from_env(cls) -> ImportSettings:
        languages = _env("OCR_LANGUAGES")
        model_dir = _env("MODEL_DIR")
        return cls(
            max_document_bytes=_env_int("MAX_DOCUMENT_BYTES", DEFAULT_MAX_DOCUMENT_BYTES),
            ocr_languages=(
                tuple(s.strip() for s in languages.split(",") if s.strip())
                if languages
                else DEFAULT_OCR_LANGUAGES
            ),
            ocr_min_confidence=_env_float("OCR_MIN_CONFIDENCE", 0.25),
            page_concurrency=_env_int("PAGE_CONCURRENCY", 4),
            render_zoom=_env_float("RENDER_ZOOM", 1.0),
            dedup_window_days=_env_int("DEDUP_WINDOW_DAYS", 90),
            model_dir=(
                Path(model_dir).expanduser().resolve()
                if model_dir
                else Path.cwd() / ".cache" / "models"
            ),
            model_name=_env("MODEL_NAME") or "statement-parser-v1",
            model_url=_env("MODEL_URL"),
            model_download_timeout=_env_float("MODEL_DOWNLOAD_TIMEOUT", 120.0),
            inference_model=_env("INFERENCE_MODEL") or "gpt-5",
            inference_base_url=_env("INFERENCE_BASE_URL"),
        )


__all__ = ["ImportSettings", "DEFAULT_MAX_DOCUMENT_BYTES", "DEFAULT_OCR_LANGUAGES"]
