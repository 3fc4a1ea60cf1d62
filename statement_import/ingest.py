"""Source sniffing and the closed set of parsed-source variants.

A source is classified once from its content (``%PDF`` magic, else the legacy
export in tag-soup or XML syntax). Each parsed variant carries the
:class:`~statement_import.duplicates.DuplicatePolicy` that applies to it:
``LEGACY`` for both legacy syntaxes, ``DOCUMENT`` for PDF candidates.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import StrEnum

from .categorizer import categorize, categorize_raw
from .document_extractor import looks_like_pdf
from .duplicates import DuplicatePolicy
from .errors import InvalidFormat
from .legacy_parser import LegacyFormatParser, LegacySyntax
from .logging_setup import get_logger
from .models import (
    CandidateTransaction,
    Category,
    ExtractedText,
    LegacyTypeCode,
    RawTransaction,
    RecordError,
    Statement,
    TransactionType,
)
from .recognition import RecognitionOutcome

_logger = get_logger("statement_import.ingest")

DEFAULT_DESCRIPTION = "Imported Transaction"
_MULTI_SPACE_RE = re.compile(r" {2,}")


class SourceKind(StrEnum):
    TAG_SOUP = "tag_soup"
    XML = "xml"
    PDF = "pdf"


def sniff_source(data: bytes) -> SourceKind:
    """Classify raw source bytes; raises ``EncodingError`` for undecodable text."""

    if looks_like_pdf(data):
        return SourceKind.PDF
    content = LegacyFormatParser.preprocess(LegacyFormatParser.decode(data))
    if LegacyFormatParser.detect_syntax(content) is LegacySyntax.XML:
        return SourceKind.XML
    return SourceKind.TAG_SOUP


def clean_description(name: str, memo: str | None = None) -> str:
    description = name.strip()
    if memo and memo.strip():
        description = f"{description} - {memo.strip()}"
    description = _MULTI_SPACE_RE.sub(" ", description).strip()
    return description or DEFAULT_DESCRIPTION


def legacy_transaction_type(raw: RawTransaction) -> TransactionType:
    """Type code wins when recognized; otherwise the amount sign decides."""

    code = LegacyTypeCode.lookup(raw.type_code)
    if code is not None:
        return code.transaction_type
    return TransactionType.INCOME if raw.amount >= 0 else TransactionType.EXPENSE


def candidate_from_raw(
    raw: RawTransaction, *, candidate_id: str | None = None
) -> CandidateTransaction:
    return CandidateTransaction(
        id=candidate_id or raw.external_id,
        date=raw.posted,
        description=clean_description(raw.name, raw.memo),
        amount=abs(raw.amount),
        type=legacy_transaction_type(raw),
        suggested_category=categorize_raw(raw),
        confidence=1.0,
    )


def candidates_from_statement(statement: Statement) -> tuple[CandidateTransaction, ...]:
    """Convert every record, keeping candidate ids unique within the file."""

    issued: set[str] = set()
    suffix: dict[str, int] = {}
    out: list[CandidateTransaction] = []
    for raw in statement.transactions:
        base = cid = raw.external_id
        n = suffix.get(base, 1)
        while cid in issued:
            n += 1
            cid = f"{base}#{n}"
        suffix[base] = n
        issued.add(cid)
        out.append(candidate_from_raw(raw, candidate_id=cid))
    return tuple(out)


def annotate_categories(
    candidates: Iterable[CandidateTransaction],
) -> tuple[CandidateTransaction, ...]:
    """Fill in keyword categories where the model gave none (or only ``OTHER``)."""

    out: list[CandidateTransaction] = []
    for c in candidates:
        if c.suggested_category in (None, Category.OTHER):
            c = replace(c, suggested_category=categorize(c.description))
        out.append(c)
    return tuple(out)


@dataclass(frozen=True, slots=True)
class TagSoupStatement:
    statement: Statement

    kind = SourceKind.TAG_SOUP
    policy = DuplicatePolicy.LEGACY

    @property
    def candidates(self) -> tuple[CandidateTransaction, ...]:
        return candidates_from_statement(self.statement)

    @property
    def errors(self) -> tuple[RecordError, ...]:
        return ()

    @property
    def skipped(self) -> int:
        return self.statement.skipped


@dataclass(frozen=True, slots=True)
class XmlStatement:
    statement: Statement

    kind = SourceKind.XML
    policy = DuplicatePolicy.LEGACY

    @property
    def candidates(self) -> tuple[CandidateTransaction, ...]:
        return candidates_from_statement(self.statement)

    @property
    def errors(self) -> tuple[RecordError, ...]:
        return ()

    @property
    def skipped(self) -> int:
        return self.statement.skipped


@dataclass(frozen=True, slots=True)
class PdfCandidates:
    extracted: ExtractedText
    outcome: RecognitionOutcome

    kind = SourceKind.PDF
    policy = DuplicatePolicy.DOCUMENT

    @property
    def candidates(self) -> tuple[CandidateTransaction, ...]:
        return annotate_categories(self.outcome.candidates)

    @property
    def errors(self) -> tuple[RecordError, ...]:
        return self.outcome.errors

    @property
    def skipped(self) -> int:
        return self.outcome.skipped


type ParsedSource = TagSoupStatement | XmlStatement | PdfCandidates


def parse_legacy_source(
    data: bytes,
    kind: SourceKind,
    parser: LegacyFormatParser | None = None,
) -> TagSoupStatement | XmlStatement:
    """Parse legacy bytes with the syntax already chosen by :func:`sniff_source`."""

    parser = parser or LegacyFormatParser()
    content = parser.preprocess(parser.decode(data))
    if not content:
        raise InvalidFormat("Arquivo sem corpo estruturado (<OFX> não encontrado)")
    if kind is SourceKind.XML:
        parsed: TagSoupStatement | XmlStatement = XmlStatement(parser.parse_xml(content))
    elif kind is SourceKind.TAG_SOUP:
        parsed = TagSoupStatement(parser.parse_tag_soup(content))
    else:
        raise InvalidFormat(f"Não é um extrato no formato legado: {kind.value}")
    _logger.info(
        "ingest:parsed kind=%s transactions=%d skipped=%d",
        kind.value,
        len(parsed.statement.transactions),
        parsed.skipped,
    )
    return parsed


__all__ = [
    "DEFAULT_DESCRIPTION",
    "ParsedSource",
    "PdfCandidates",
    "SourceKind",
    "TagSoupStatement",
    "XmlStatement",
    "annotate_categories",
    "candidate_from_raw",
    "candidates_from_statement",
    "clean_description",
    "legacy_transaction_type",
    "parse_legacy_source",
    "sniff_source",
]
