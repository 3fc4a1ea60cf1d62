"""Inference collaborator: the engine protocol and the cached model handle.

The recognizer never reaches for a global model. It receives a
:class:`ModelHandle`, an explicit resource with four lifecycle operations:

- ``is_available()``: is the model manifest present in the local cache?
- ``download(progress=...)``: fetch the manifest over HTTP (bounded timeout,
  streamed to ``<name>.json.tmp`` then atomically renamed);
- ``load()``: validate the manifest and build the engine it describes;
- ``clear_cache()``: delete the cached file and drop the loaded engine.

``infer(prompt)`` runs the loaded engine. Failures in each step surface as
distinct errors (``ModelDownloadFailed``, ``ModelLoadFailed``,
``ModelInferenceFailed``) so callers can tell them apart.

The default engine talks to an OpenAI-compatible Responses endpoint via the
``openai`` SDK; ``base_url`` in the manifest (or settings) points it at a
local server.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol

import httpx
from openai import OpenAI
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import (
    ModelDownloadFailed,
    ModelInferenceFailed,
    ModelLoadFailed,
    ModelUnavailable,
    StatementImportError,
)
from .logging_setup import get_logger
from .prompting import build_response_format
from .settings import ImportSettings

_logger = get_logger("statement_import.inference")

type DownloadProgress = Callable[[float], None]


class InferenceEngine(Protocol):
    def run(self, prompt: str) -> str: ...


class ModelManifest(BaseModel):
    """Cached description of the model the engine should call.

    A manifest without ``model`` falls back to ``ImportSettings.inference_model``.
    """

    model_config = ConfigDict(strict=True, extra="forbid", str_strip_whitespace=True)

    name: str
    model: str | None = None
    base_url: str | None = None
    max_output_tokens: int | None = None

    @field_validator("name")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("must be non-empty")
        return v

    @field_validator("model")
    @classmethod
    def _blank_model_is_unset(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("max_output_tokens")
    @classmethod
    def _positive(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("max_output_tokens must be positive")
        return v


def extract_output_text(resp: Any) -> str:
    """Return the text output of a Responses SDK result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None)
        content = getattr(output[0], "content", None) if output else None
        if content:
            candidate = getattr(content[0], "text", None)
            if isinstance(candidate, str):
                text = candidate
            else:
                value = getattr(candidate, "value", None)
                text = value if isinstance(value, str) else None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


class OpenAIEngine:
    """Engine over the OpenAI Responses API (or any compatible server)."""

    def __init__(
        self,
        model: str,
        *,
        base_url: str | None = None,
        max_output_tokens: int | None = None,
        text_format: Mapping[str, Any] | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.max_output_tokens = max_output_tokens
        self.text_format = text_format
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(base_url=self.base_url) if self.base_url else OpenAI()
        return self._client

    def run(self, prompt: str) -> str:
        kwargs: dict[str, Any] = {"model": self.model, "input": prompt}
        if self.text_format is not None:
            kwargs["text"] = {"format": dict(self.text_format)}
        if self.max_output_tokens is not None:
            kwargs["max_output_tokens"] = self.max_output_tokens
        resp = self._get_client().responses.create(**kwargs)
        return extract_output_text(resp)


type EngineFactory = Callable[[ModelManifest], InferenceEngine]


class ModelHandle:
    """Process-wide cached inference model with explicit lifecycle operations.

    Parameters
    ----------
    settings:
        Supplies ``model_dir``, ``model_name``, ``model_url``,
        ``model_download_timeout`` and the default ``inference_base_url``.
    engine_factory:
        Builds the engine from a validated manifest. Defaults to
        :class:`OpenAIEngine`.
    transport:
        Optional ``httpx`` transport for downloads (tests pass a
        ``MockTransport``).
    """

    def __init__(
        self,
        settings: ImportSettings | None = None,
        *,
        engine_factory: EngineFactory | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or ImportSettings()
        self._engine_factory = engine_factory or self._default_engine
        self._transport = transport
        self._lock = threading.RLock()
        self._engine: InferenceEngine | None = None

    @property
    def path(self) -> Path:
        return Path(self.settings.model_dir) / f"{self.settings.model_name}.json"

    @property
    def is_loaded(self) -> bool:
        return self._engine is not None

    def is_available(self) -> bool:
        return self.path.is_file()

    def _default_engine(self, manifest: ModelManifest) -> InferenceEngine:
        return OpenAIEngine(
            manifest.model or self.settings.inference_model,
            base_url=manifest.base_url or self.settings.inference_base_url,
            max_output_tokens=manifest.max_output_tokens,
            text_format=build_response_format(),
        )

    # ---- download ----------------------------------------------------------

    def download(self, *, progress: DownloadProgress | None = None) -> Path:
        """Fetch the model manifest into the cache and return its path."""

        url = self.settings.model_url
        if not url:
            raise ModelDownloadFailed("URL do modelo não configurada")

        target = self.path
        tmp = target.with_name(target.name + ".tmp")
        t0 = time.perf_counter()
        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                with httpx.Client(
                    timeout=self.settings.model_download_timeout,
                    transport=self._transport,
                    follow_redirects=True,
                ) as client:
                    with client.stream("GET", url) as resp:
                        resp.raise_for_status()
                        total = int(resp.headers.get("content-length") or 0)
                        received = 0
                        with tmp.open("wb") as fh:
                            for chunk in resp.iter_bytes():
                                fh.write(chunk)
                                received += len(chunk)
                                if progress is not None and total:
                                    progress(min(1.0, received / total))
                os.replace(tmp, target)
            except httpx.HTTPError as exc:
                tmp.unlink(missing_ok=True)
                _logger.error("model:download_failed url=%s error=%s", url, exc.__class__.__name__)
                raise ModelDownloadFailed(str(exc)) from exc
            except OSError as exc:
                tmp.unlink(missing_ok=True)
                raise ModelDownloadFailed(str(exc)) from exc
            self._engine = None

        if progress is not None:
            progress(1.0)
        _logger.info(
            "model:downloaded name=%s bytes=%d latency_ms=%.2f",
            self.settings.model_name,
            received,
            (time.perf_counter() - t0) * 1000.0,
        )
        return target

    # ---- load / evict ------------------------------------------------------

    def load(self) -> InferenceEngine:
        """Validate the cached manifest and build (or return) the engine."""

        with self._lock:
            if self._engine is not None:
                return self._engine
            if not self.is_available():
                raise ModelUnavailable()
            try:
                manifest = ModelManifest.model_validate_json(self.path.read_bytes())
            except (OSError, ValidationError) as exc:
                _logger.error(
                    "model:load_failed path=%s error=%s", self.path, exc.__class__.__name__
                )
                raise ModelLoadFailed(str(exc)) from exc
            try:
                self._engine = self._engine_factory(manifest)
            except StatementImportError:
                raise
            except Exception as exc:
                raise ModelLoadFailed(str(exc)) from exc
            _logger.info("model:loaded name=%s model=%s", manifest.name, manifest.model)
            return self._engine

    def clear_cache(self) -> None:
        with self._lock:
            self._engine = None
            self.path.unlink(missing_ok=True)
            self.path.with_name(self.path.name + ".tmp").unlink(missing_ok=True)
        _logger.info("model:cache_cleared name=%s", self.settings.model_name)

    # ---- inference ---------------------------------------------------------

    def infer(self, prompt: str) -> str:
        engine = self.load()
        t0 = time.perf_counter()
        try:
            text = engine.run(prompt)
        except StatementImportError:
            raise
        except Exception as exc:
            _logger.error("model:inference_failed error=%s", exc.__class__.__name__)
            raise ModelInferenceFailed(str(exc)) from exc
        _logger.info(
            "model:inference_done prompt_chars=%d output_chars=%d latency_ms=%.2f",
            len(prompt),
            len(text),
            (time.perf_counter() - t0) * 1000.0,
        )
        return text


__all__ = [
    "InferenceEngine",
    "ModelHandle",
    "ModelManifest",
    "OpenAIEngine",
    "extract_output_text",
]
