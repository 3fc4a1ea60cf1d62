"""Model-assisted transaction recognition over extracted statement text.

Flow: availability check (fail fast) -> prompt -> ``ModelHandle.infer`` ->
strict JSON parsing -> :class:`~statement_import.models.CandidateTransaction`.

Parsing policy
--------------
- Output that is not JSON, or JSON that is neither ``{"transactions": [...]}``
  nor a bare array, is fatal (:class:`InvalidModelOutput`).
- A record whose ``date`` is not an ISO-8601 calendar date is dropped and
  counted in ``skipped``.
- A record with any other defect (not an object, missing/blank description,
  unparseable amount) becomes a :class:`RecordError`.
- ``type`` maps case-insensitively to income/expense/transfer, defaulting to
  expense. ``suggested_category`` maps by keyword to :class:`Category`,
  defaulting to other. Amounts are stored as absolute values.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import InvalidModelOutput, ModelUnavailable
from .inference import ModelHandle
from .logging_setup import get_logger
from .models import CandidateTransaction, Category, ExtractedText, RecordError, TransactionType
from .prompting import build_prompt

_logger = get_logger("statement_import.recognition")

_CATEGORY_ALIASES: dict[str, Category] = {"health": Category.HEALTHCARE}


class ModelTransaction(BaseModel):
    """One record of the model's ``transactions`` array, before normalization."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    date: str
    description: str
    amount: Decimal
    type: str | None = None
    suggested_category: str | None = None

    @field_validator("description")
    @classmethod
    def _description_non_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("description must be non-empty")
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_from_text(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("amount must be a number")
        if isinstance(v, float):
            # Go through ``str`` so 12.3 stays 12.3 rather than its binary expansion.
            return Decimal(str(v))
        if isinstance(v, str):
            s = v.strip().replace(" ", "")
            if "," in s and "." in s:
                s = s.replace(".", "").replace(",", ".")
            elif "," in s:
                s = s.replace(",", ".")
            try:
                return Decimal(s)
            except InvalidOperation as exc:
                raise ValueError(f"amount is not a number: {v!r}") from exc
        return v


def map_transaction_type(raw: str | None) -> TransactionType:
    if raw:
        try:
            return TransactionType(raw.strip().lower())
        except ValueError:
            pass
    return TransactionType.EXPENSE


def map_category(raw: str | None) -> Category:
    """Case-insensitive keyword match of a model-suggested category."""

    if not raw:
        return Category.OTHER
    s = raw.strip().lower()
    try:
        return Category(s)
    except ValueError:
        pass
    for alias, category in _CATEGORY_ALIASES.items():
        if alias in s:
            return category
    for category in Category:
        if category is not Category.OTHER and category.value in s:
            return category
    return Category.OTHER


def parse_iso_date(raw: str) -> date | None:
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return None


def candidate_id(index: int, record: ModelTransaction) -> str:
    digest = hashlib.sha256(
        f"{index}|{record.date}|{record.description}|{record.amount}".encode()
    ).hexdigest()
    return f"pdf-{digest[:16]}"


@dataclass(frozen=True, slots=True)
class RecognitionOutcome:
    candidates: tuple[CandidateTransaction, ...] = ()
    errors: tuple[RecordError, ...] = ()
    skipped: int = 0


def _top_level_records(text: str) -> list[Any]:
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidModelOutput(f"JSON inválido: {exc.msg}") from exc
    if isinstance(decoded, list):
        return decoded
    if isinstance(decoded, dict) and isinstance(decoded.get("transactions"), list):
        return decoded["transactions"]
    raise InvalidModelOutput('esperado {"transactions": [...]}')


def parse_model_output(text: str, *, confidence: float = 1.0) -> RecognitionOutcome:
    """Interpret raw model text as the declared JSON shape."""

    records = _top_level_records(text)
    confidence = min(1.0, max(0.0, confidence))
    candidates: list[CandidateTransaction] = []
    errors: list[RecordError] = []
    skipped = 0

    for index, item in enumerate(records):
        if not isinstance(item, dict):
            errors.append(RecordError(record_id=str(index), reason="registro não é um objeto"))
            continue
        try:
            record = ModelTransaction.model_validate(item)
        except ValidationError as exc:
            reasons = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            errors.append(RecordError(record_id=str(index), reason=reasons))
            continue

        posted = parse_iso_date(record.date)
        if posted is None:
            skipped += 1
            _logger.debug(
                "recognition:record_skipped index=%d reason=bad_date value=%r", index, record.date
            )
            continue

        candidates.append(
            CandidateTransaction(
                id=candidate_id(index, record),
                date=posted,
                description=record.description,
                amount=abs(record.amount),
                type=map_transaction_type(record.type),
                suggested_category=map_category(record.suggested_category),
                confidence=confidence,
            )
        )

    _logger.info(
        "recognition:parsed records=%d candidates=%d errors=%d skipped=%d",
        len(records),
        len(candidates),
        len(errors),
        skipped,
    )
    return RecognitionOutcome(candidates=tuple(candidates), errors=tuple(errors), skipped=skipped)


class StatementTextRecognizer:
    """Build the prompt, run the model and parse its output."""

    def __init__(self, model: ModelHandle) -> None:
        self.model = model

    def ensure_available(self) -> None:
        """Raise :class:`ModelUnavailable` unless the model is in the local cache."""

        if not self.model.is_available():
            _logger.warning("recognition:model_unavailable path=%s", self.model.path)
            raise ModelUnavailable()

    def recognize(self, extracted: ExtractedText) -> list[CandidateTransaction]:
        return list(self.recognize_detailed(extracted).candidates)

    def recognize_detailed(self, extracted: ExtractedText) -> RecognitionOutcome:
        self.ensure_available()
        prompt = build_prompt(extracted.all_text)
        raw = self.model.infer(prompt)
        return parse_model_output(raw, confidence=extracted.average_confidence)


__all__ = [
    "ModelTransaction",
    "RecognitionOutcome",
    "StatementTextRecognizer",
    "map_category",
    "map_transaction_type",
    "parse_iso_date",
    "parse_model_output",
]
