"""Builders for legacy-export statements (both syntaxes) and small PDFs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import fitz  # PyMuPDF

TAG_SOUP_HEADER = (
    "OFXHEADER:100\n"
    "DATA:OFXSGML\n"
    "VERSION:102\n"
    "SECURITY:NONE\n"
    "ENCODING:USASCII\n"
    "CHARSET:1252\n"
    "COMPRESSION:NONE\n"
    "OLDFILEUID:NONE\n"
    "NEWFILEUID:NONE\n"
    "\n"
)


@dataclass(frozen=True)
class Tx:
    fitid: str
    trntype: str
    posted: str
    amount: str
    name: str
    memo: str | None = None


SAMPLE: tuple[Tx, ...] = (
    Tx("F1", "DEBIT", "20240105120000[-3:BRT]", "-45.90", "RESTAURANTE DO JOAO"),
    Tx("F2", "CREDIT", "20240106", "3500.00", "SALARIO ACME", "Pagamento mensal"),
    Tx("F3", "DEBIT", "20240107", "-120.00", "POSTO SHELL"),
)


def tag_soup(
    txs: Sequence[Tx] = SAMPLE,
    *,
    account_id: str = "12345-6",
    extra_blocks: Sequence[str] = (),
    header: str = TAG_SOUP_HEADER,
) -> str:
    """Render an SGML-style export: unclosed leaf tags, closed aggregates."""

    blocks = []
    for tx in txs:
        lines = [
            "<STMTTRN>",
            f"<TRNTYPE>{tx.trntype}",
            f"<DTPOSTED>{tx.posted}",
            f"<TRNAMT>{tx.amount}",
            f"<FITID>{tx.fitid}",
            f"<NAME>{tx.name}",
        ]
        if tx.memo is not None:
            lines.append(f"<MEMO>{tx.memo}")
        lines.append("</STMTTRN>")
        blocks.append("\n".join(lines))
    blocks.extend(extra_blocks)
    return (
        f"{header}"
        "<OFX>\n"
        "<BANKMSGSRSV1>\n<STMTTRNRS>\n<STMTRS>\n"
        "<CURDEF>BRL\n"
        "<BANKACCTFROM>\n<BANKID>0341\n"
        f"<ACCTID>{account_id}\n"
        "<ACCTTYPE>CHECKING\n</BANKACCTFROM>\n"
        "<BANKTRANLIST>\n<DTSTART>20240101\n<DTEND>20240131\n"
        + "\n".join(blocks)
        + "\n</BANKTRANLIST>\n</STMTRS>\n</STMTTRNRS>\n</BANKMSGSRSV1>\n</OFX>\n"
    )


def xml(
    txs: Sequence[Tx] = SAMPLE,
    *,
    account_id: str = "12345-6",
    extra_blocks: Sequence[str] = (),
) -> str:
    """Render the same content as strict XML with an ``<?xml`` prolog."""

    blocks = []
    for tx in txs:
        memo = f"<MEMO>{tx.memo}</MEMO>" if tx.memo is not None else ""
        blocks.append(
            "<STMTTRN>"
            f"<TRNTYPE>{tx.trntype}</TRNTYPE>"
            f"<DTPOSTED>{tx.posted}</DTPOSTED>"
            f"<TRNAMT>{tx.amount}</TRNAMT>"
            f"<FITID>{tx.fitid}</FITID>"
            f"<NAME>{tx.name}</NAME>"
            f"{memo}"
            "</STMTTRN>"
        )
    blocks.extend(extra_blocks)
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="no"?>\n'
        '<?OFX OFXHEADER="200" VERSION="220" SECURITY="NONE"?>\n'
        "<OFX>\n"
        "<BANKMSGSRSV1><STMTTRNRS><STMTRS>\n"
        "<CURDEF>BRL</CURDEF>\n"
        "<BANKACCTFROM><BANKID>0341</BANKID>"
        f"<ACCTID>{account_id}</ACCTID>"
        "<ACCTTYPE>CHECKING</ACCTTYPE></BANKACCTFROM>\n"
        "<BANKTRANLIST><DTSTART>20240101</DTSTART><DTEND>20240131</DTEND>\n"
        + "\n".join(blocks)
        + "\n</BANKTRANLIST>\n</STMTRS></STMTTRNRS></BANKMSGSRSV1>\n</OFX>\n"
    )


def make_pdf(
    page_texts: Sequence[str],
    *,
    password: str | None = None,
    user_password: str | None = None,
) -> bytes:
    """Build an in-memory PDF with one page per entry (empty string = blank page).

    ``password`` encrypts with that owner password; the user password matches
    it unless ``user_password`` is given (``""`` opens without prompting).
    """

    doc = fitz.open()
    try:
        for text in page_texts:
            page = doc.new_page(width=300, height=200)
            if text:
                page.insert_text((20, 40), text, fontsize=11)
        if password is None:
            return doc.tobytes()
        return doc.tobytes(
            encryption=fitz.PDF_ENCRYPT_AES_256,
            owner_pw=password,
            user_pw=password if user_password is None else user_password,
        )
    finally:
        doc.close()
