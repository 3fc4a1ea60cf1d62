"""Parser for the legacy bank-export statement format (OFX-style).

The same schema shows up in two syntaxes:

- tag-soup (SGML-like): ``<TAG>value`` pairs, leaf tags usually unclosed;
- strict XML, announced by an ``<?xml`` prolog.

:meth:`LegacyFormatParser.parse` decodes the bytes, strips the free-text
header, sniffs the syntax once and returns a :class:`~statement_import.models.Statement`.
Incomplete or unparseable ``<STMTTRN>`` records are dropped and counted in
``Statement.skipped``; they never fail the whole file.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from xml.etree.ElementTree import Element, ParseError, XMLPullParser

from .errors import EncodingError, InvalidFormat
from .logging_setup import get_logger
from .models import RawTransaction, Statement, StatementAccount

_logger = get_logger("statement_import.legacy_parser")

# Order matters: strict UTF-8 first, then the Windows legacy code page, then ASCII.
_ENCODINGS: tuple[str, ...] = ("utf-8", "cp1252", "ascii")

_TAG_RE = re.compile(r"<([^>]+)>([^<]*)")
_STMTTRN_RE = re.compile(r"<STMTTRN>(.*?)</STMTTRN>", re.DOTALL | re.IGNORECASE)
_XML_DECL_RE = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")
_NON_DIGITS_RE = re.compile(r"\D")

REQUIRED_FIELDS: tuple[str, ...] = ("FITID", "TRNTYPE", "DTPOSTED", "TRNAMT", "NAME")
_TRANSACTION_FIELDS: frozenset[str] = frozenset(REQUIRED_FIELDS + ("MEMO", "CHECKNUM"))
_ACCOUNT_FIELDS: frozenset[str] = frozenset({"BANKID", "ACCTID", "ACCTTYPE"})

DEFAULT_ACCOUNT_TYPE = "CHECKING"


class LegacySyntax(StrEnum):
    TAG_SOUP = "tag_soup"
    XML = "xml"


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def parse_legacy_date(raw: str | None) -> date | None:
    """Parse ``yyyyMMddHHmmss`` / ``yyyyMMdd`` after stripping non-digits.

    Timezone suffixes such as ``[-3:BRT]`` are ignored because only the first
    14 (or 8) digits are used. Fewer than 8 digits, or an impossible calendar
    value, yields ``None``.
    """

    if raw is None:
        return None
    digits = _NON_DIGITS_RE.sub("", raw)
    try:
        if len(digits) >= 14:
            return datetime.strptime(digits[:14], "%Y%m%d%H%M%S").date()
        if len(digits) >= 8:
            return datetime.strptime(digits[:8], "%Y%m%d").date()
    except ValueError:
        return None
    return None


def parse_legacy_amount(raw: str | None) -> Decimal | None:
    """Parse a plain signed decimal; locale separators are not accepted."""

    if raw is None:
        return None
    s = raw.strip()
    if not _AMOUNT_RE.fullmatch(s):
        return None
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def _non_empty(fields: Mapping[str, str], key: str) -> str | None:
    value = fields.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def build_raw_transaction(fields: Mapping[str, str]) -> RawTransaction | None:
    """Convert one record's field map into a :class:`RawTransaction`.

    Returns ``None`` when a required field is missing/empty or when the date
    or amount cannot be parsed.
    """

    missing = [k for k in REQUIRED_FIELDS if _non_empty(fields, k) is None]
    if missing:
        _logger.debug("legacy_parse:record_skipped reason=missing_fields fields=%s", missing)
        return None

    posted = parse_legacy_date(fields["DTPOSTED"])
    if posted is None:
        _logger.debug("legacy_parse:record_skipped reason=bad_date value=%r", fields["DTPOSTED"])
        return None
    amount = parse_legacy_amount(fields["TRNAMT"])
    if amount is None:
        _logger.debug("legacy_parse:record_skipped reason=bad_amount value=%r", fields["TRNAMT"])
        return None

    return RawTransaction(
        external_id=fields["FITID"].strip(),
        type_code=fields["TRNTYPE"].strip(),
        posted=posted,
        amount=amount,
        name=fields["NAME"].strip(),
        memo=_non_empty(fields, "MEMO"),
        check_number=_non_empty(fields, "CHECKNUM"),
    )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class LegacyFormatParser:
    """Convert raw legacy-export bytes into a :class:`Statement`."""

    def parse(self, data: bytes) -> Statement:
        _, statement = self.parse_with_syntax(data)
        return statement

    def parse_with_syntax(self, data: bytes) -> tuple[LegacySyntax, Statement]:
        """Parse and also report which syntax the content was sniffed as."""

        content = self.preprocess(self.decode(data))
        if not content:
            raise InvalidFormat("Arquivo sem corpo estruturado (<OFX> não encontrado)")

        syntax = self.detect_syntax(content)
        if syntax is LegacySyntax.XML:
            statement = self.parse_xml(content)
        else:
            statement = self.parse_tag_soup(content)

        _logger.info(
            "legacy_parse:done syntax=%s transactions=%d skipped=%d",
            syntax.value,
            len(statement.transactions),
            statement.skipped,
        )
        return syntax, statement

    # ---- Decoding and preprocessing ----------------------------------------

    @staticmethod
    def decode(data: bytes) -> str:
        for encoding in _ENCODINGS:
            try:
                return data.decode(encoding)
            except UnicodeDecodeError:
                continue
        raise EncodingError()

    @staticmethod
    def preprocess(content: str) -> str:
        """Normalize newlines, drop the free-text header and blank lines."""

        normalized = content.replace("\r\n", "\n").replace("\r", "\n")
        kept: list[str] = []
        in_header = True
        for line in normalized.split("\n"):
            stripped = line.strip()
            if not stripped:
                continue
            if in_header:
                upper = stripped.upper()
                if upper.startswith("<OFX>") or upper.startswith("<?XML"):
                    in_header = False
                else:
                    continue
            kept.append(stripped)
        return "\n".join(kept)

    @staticmethod
    def detect_syntax(content: str) -> LegacySyntax:
        return LegacySyntax.XML if "<?xml" in content.lower() else LegacySyntax.TAG_SOUP

    # ---- Tag-soup path -----------------------------------------------------

    @staticmethod
    def _extract_tags(content: str) -> dict[str, str]:
        """Single pass over ``<TAG>value`` pairs; first occurrence wins."""

        tags: dict[str, str] = {}
        for match in _TAG_RE.finditer(content):
            tag = match.group(1).strip().upper()
            if tag.startswith("/"):
                continue
            tags.setdefault(tag, match.group(2).strip())
        return tags

    def parse_tag_soup(self, content: str) -> Statement:
        # Document-level fields come from the content outside transaction blocks
        # so a record's own tags never leak into the account or period.
        outside = _STMTTRN_RE.sub("", content)
        tags = self._extract_tags(outside)

        transactions: list[RawTransaction] = []
        skipped = 0
        for block in _STMTTRN_RE.finditer(content):
            tx = build_raw_transaction(self._extract_tags(block.group(1)))
            if tx is None:
                skipped += 1
                continue
            transactions.append(tx)

        return Statement(
            account=StatementAccount(
                account_id=tags.get("ACCTID", ""),
                account_type=tags.get("ACCTTYPE") or DEFAULT_ACCOUNT_TYPE,
                bank_id=tags.get("BANKID") or None,
            ),
            transactions=tuple(transactions),
            period_start=parse_legacy_date(tags.get("DTSTART")),
            period_end=parse_legacy_date(tags.get("DTEND")),
            skipped=skipped,
        )

    # ---- XML path ----------------------------------------------------------

    def parse_xml(self, content: str) -> Statement:
        """Feed the XML incrementally and build the statement from element events."""

        parser = XMLPullParser(events=("start", "end"))
        builder = _XmlStatementBuilder()
        body = _XML_DECL_RE.sub("", content, count=1)
        try:
            for line in body.split("\n"):
                parser.feed(line + "\n")
                for event, elem in parser.read_events():
                    builder.handle(event, elem)
            parser.close()
            for event, elem in parser.read_events():
                builder.handle(event, elem)
        except ParseError as exc:
            raise InvalidFormat(f"XML inválido: {exc}") from exc
        return builder.build()


class _XmlStatementBuilder:
    """Accumulates element content while the XML is being read.

    Account fields are kept from their first occurrence only; period dates
    are captured wherever they appear, independently of any transaction.
    """

    def __init__(self) -> None:
        self.account: dict[str, str] = {}
        self.period: dict[str, date | None] = {"DTSTART": None, "DTEND": None}
        self.transactions: list[RawTransaction] = []
        self.skipped = 0
        self._current_tx: dict[str, str] | None = None

    def handle(self, event: str, elem: Element) -> None:
        name = _local_name(elem.tag)
        if event == "start":
            if name == "STMTTRN":
                self._current_tx = {}
            return

        value = (elem.text or "").strip()
        if name == "STMTTRN":
            tx = build_raw_transaction(self._current_tx or {})
            if tx is None:
                self.skipped += 1
            else:
                self.transactions.append(tx)
            self._current_tx = None
            elem.clear()
        elif self._current_tx is not None and name in _TRANSACTION_FIELDS:
            self._current_tx[name] = value
        elif name in _ACCOUNT_FIELDS:
            self.account.setdefault(name, value)
        elif name in self.period:
            self.period[name] = parse_legacy_date(value)

    def build(self) -> Statement:
        return Statement(
            account=StatementAccount(
                account_id=self.account.get("ACCTID", ""),
                account_type=self.account.get("ACCTTYPE") or DEFAULT_ACCOUNT_TYPE,
                bank_id=self.account.get("BANKID") or None,
            ),
            transactions=tuple(self.transactions),
            period_start=self.period["DTSTART"],
            period_end=self.period["DTEND"],
            skipped=self.skipped,
        )


def _local_name(tag: str) -> str:
    # Drop any ``{namespace}`` prefix added by ElementTree.
    return tag.rsplit("}", 1)[-1].upper()


__all__ = [
    "LegacyFormatParser",
    "LegacySyntax",
    "REQUIRED_FIELDS",
    "build_raw_transaction",
    "parse_legacy_amount",
    "parse_legacy_date",
]
