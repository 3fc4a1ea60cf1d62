"""Rasterize paginated documents and collect per-page recognized text.

Pipeline per call:

1. Preconditions, before any page is touched: the source must be readable,
   no larger than ``max_document_bytes`` and not encrypted. Encrypted
   documents are rejected outright, never decrypted.
2. Every page is rendered with PyMuPDF at ``render_zoom`` x its native size
   and handed to the :class:`~statement_import.ocr.TextRecognizer` in
   high-accuracy mode with the configured languages. Pages run concurrently
   via :func:`~statement_import.pmap.p_map`; rendering itself is serialized
   because a PyMuPDF document must not be used from two threads at once.
3. Only after every page is back: all pages empty means the document is an
   unselectable scan (:class:`NoExtractableText`); some empty pages are fine.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from pathlib import Path

import fitz  # PyMuPDF
from PIL import Image

from .errors import EncryptedSource, FileNotReadable, FileTooLarge, LowConfidence, NoExtractableText
from .logging_setup import get_logger
from .models import ExtractedText, PageText
from .ocr import AccuracyLevel, RecognizedRegion, TextRecognizer
from .pmap import p_map
from .settings import ImportSettings

_logger = get_logger("statement_import.document_extractor")

type DocumentSource = bytes | str | os.PathLike[str]
type ProgressCallback = Callable[[float], None]

PDF_MAGIC = b"%PDF"


def page_confidence(regions: list[RecognizedRegion]) -> float:
    """Mean region confidence; 0.0 when nothing was recognized."""

    if not regions:
        return 0.0
    return sum(r.confidence for r in regions) / len(regions)


def read_document(source: DocumentSource, *, max_bytes: int) -> bytes:
    """Load the raw bytes of ``source`` after the readability and size checks."""

    if isinstance(source, bytes):
        if not source:
            raise FileNotReadable("Arquivo vazio")
        if len(source) > max_bytes:
            raise FileTooLarge(len(source), max_bytes)
        return source

    path = Path(source)
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise FileNotReadable(f"Não foi possível ler o arquivo: {path}") from exc
    if not path.is_file():
        raise FileNotReadable(f"Não é um arquivo: {path}")
    if size > max_bytes:
        raise FileTooLarge(size, max_bytes)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FileNotReadable(f"Não foi possível ler o arquivo: {path}") from exc
    if not data:
        raise FileNotReadable("Arquivo vazio")
    return data


def open_document(data: bytes) -> fitz.Document:
    """Open PDF bytes, rejecting unparseable and encrypted documents."""

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (fitz.FileDataError, RuntimeError, ValueError) as exc:
        raise FileNotReadable(f"PDF inválido: {exc}") from exc
    # An owner-only password opens without prompting; the metadata still names it.
    if doc.needs_pass or doc.is_encrypted or (doc.metadata or {}).get("encryption"):
        doc.close()
        raise EncryptedSource()
    if doc.page_count == 0:
        doc.close()
        raise FileNotReadable("PDF sem páginas")
    return doc


class DocumentTextExtractor:
    """Turn a PDF statement into :class:`~statement_import.models.ExtractedText`."""

    def __init__(
        self,
        recognizer: TextRecognizer,
        *,
        settings: ImportSettings | None = None,
        accuracy: AccuracyLevel = AccuracyLevel.ACCURATE,
    ) -> None:
        self.recognizer = recognizer
        self.settings = settings or ImportSettings()
        self.accuracy = accuracy

    def extract(
        self,
        source: DocumentSource,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractedText:
        """Extract text from every page of ``source``.

        Parameters
        ----------
        source:
            Raw PDF bytes or a filesystem path.
        on_progress:
            Called with the completed fraction of pages, from 0.0 to 1.0.

        Raises
        ------
        FileNotReadable, FileTooLarge, EncryptedSource
            Precondition failures, raised before any page is rendered.
        NoExtractableText
            Every page came back without text.
        LowConfidence
            Mean confidence over non-empty pages is below
            ``settings.ocr_min_confidence``.
        """

        data = read_document(source, max_bytes=self.settings.max_document_bytes)
        doc = open_document(data)
        try:
            pages = self._extract_pages(doc, on_progress)
        finally:
            doc.close()

        result = ExtractedText(pages=tuple(pages), total_pages=len(pages))
        _logger.info(
            "extract:done pages=%d non_empty=%d avg_confidence=%.3f",
            result.total_pages,
            len(result.non_empty_pages),
            result.average_confidence,
        )

        if not result.non_empty_pages:
            _logger.warning("extract:no_text pages=%d", result.total_pages)
            raise NoExtractableText()
        threshold = self.settings.ocr_min_confidence
        if threshold and result.average_confidence < threshold:
            _logger.warning(
                "extract:low_confidence confidence=%.3f threshold=%.3f",
                result.average_confidence,
                threshold,
            )
            raise LowConfidence(result.average_confidence, threshold)
        return result

    def _extract_pages(
        self, doc: fitz.Document, on_progress: ProgressCallback | None
    ) -> list[PageText]:
        render_lock = threading.Lock()
        zoom = self.settings.render_zoom
        languages = self.settings.ocr_languages
        total = doc.page_count

        def _one(index: int) -> PageText:
            with render_lock:
                image = render_page(doc[index], zoom=zoom)
            regions = self.recognizer.recognize(image, languages, self.accuracy)
            text = "\n".join(r.text for r in regions if r.text.strip())
            page = PageText(page_number=index + 1, text=text, confidence=page_confidence(regions))
            _logger.debug(
                "extract:page page=%d regions=%d confidence=%.3f",
                page.page_number,
                len(regions),
                page.confidence,
            )
            return page

        def _done(completed: int, _submitted: int) -> None:
            if on_progress is not None and total:
                on_progress(completed / total)

        return p_map(
            range(total),
            _one,
            concurrency=self.settings.page_concurrency,
            on_done=_done,
        )


def render_page(page: fitz.Page, *, zoom: float = 1.0) -> Image.Image:
    """Render one page to an RGB image; ``zoom=1.0`` keeps the native size."""

    pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
    return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


def looks_like_pdf(data: bytes) -> bool:
    return data.lstrip()[:4] == PDF_MAGIC


__all__ = [
    "DocumentSource",
    "DocumentTextExtractor",
    "PDF_MAGIC",
    "looks_like_pdf",
    "open_document",
    "page_confidence",
    "read_document",
    "render_page",
]
