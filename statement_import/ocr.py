"""Text-recognition collaborator.

The extractor only depends on :class:`TextRecognizer`: give it an image, the
languages to expect and an accuracy level, get back text regions with a
confidence in ``[0, 1]``. :class:`TesseractRecognizer` is the production
implementation on top of ``pytesseract``; tests substitute a fake.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

import pytesseract
from PIL import Image

from .logging_setup import get_logger

_logger = get_logger("statement_import.ocr")


class AccuracyLevel(StrEnum):
    ACCURATE = "accurate"
    FAST = "fast"


@dataclass(frozen=True, slots=True)
class RecognizedRegion:
    text: str
    confidence: float


class TextRecognizer(Protocol):
    def recognize(
        self,
        image: Image.Image,
        languages: Sequence[str],
        accuracy: AccuracyLevel,
    ) -> list[RecognizedRegion]: ...


# LSTM engine for both levels; FAST skips layout analysis of sparse regions.
_ACCURACY_CONFIG: dict[AccuracyLevel, str] = {
    AccuracyLevel.ACCURATE: "--oem 1 --psm 3",
    AccuracyLevel.FAST: "--oem 1 --psm 6",
}
_NO_DICTIONARY_CONFIG = "-c load_system_dawg=0 -c load_freq_dawg=0"


class TesseractRecognizer:
    """:class:`TextRecognizer` backed by the Tesseract binary.

    Parameters
    ----------
    language_correction:
        Keep Tesseract's dictionaries enabled so recognized words are biased
        toward real words of the configured languages. Turning it off helps
        with account numbers and codes at the cost of prose quality.
    tesseract_cmd:
        Optional path to the ``tesseract`` executable.
    """

    def __init__(
        self, *, language_correction: bool = True, tesseract_cmd: str | None = None
    ) -> None:
        self.language_correction = language_correction
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def build_config(self, accuracy: AccuracyLevel) -> str:
        config = _ACCURACY_CONFIG[accuracy]
        if not self.language_correction:
            config = f"{config} {_NO_DICTIONARY_CONFIG}"
        return config

    def recognize(
        self,
        image: Image.Image,
        languages: Sequence[str],
        accuracy: AccuracyLevel = AccuracyLevel.ACCURATE,
    ) -> list[RecognizedRegion]:
        data = pytesseract.image_to_data(
            image,
            lang="+".join(languages) or "eng",
            config=self.build_config(accuracy),
            output_type=pytesseract.Output.DICT,
        )
        regions = lines_from_tesseract_data(data)
        _logger.debug("ocr:recognized regions=%d languages=%s", len(regions), ",".join(languages))
        return regions


def lines_from_tesseract_data(data: dict[str, list[Any]]) -> list[RecognizedRegion]:
    """Group Tesseract word boxes into line regions.

    A line's confidence is the mean of its words' confidences. Entries with a
    confidence of ``-1`` are layout boxes, not words, and are ignored.
    """

    lines: dict[tuple[int, int, int], list[tuple[str, float]]] = {}
    for i, raw_text in enumerate(data.get("text", [])):
        word = str(raw_text).strip()
        conf = float(data["conf"][i])
        if not word or conf < 0:
            continue
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        lines.setdefault(key, []).append((word, conf / 100.0))

    regions: list[RecognizedRegion] = []
    for words in lines.values():
        text = " ".join(w for w, _ in words)
        confidence = sum(c for _, c in words) / len(words)
        regions.append(RecognizedRegion(text=text, confidence=min(1.0, max(0.0, confidence))))
    return regions


__all__ = [
    "AccuracyLevel",
    "RecognizedRegion",
    "TesseractRecognizer",
    "TextRecognizer",
    "lines_from_tesseract_data",
]
