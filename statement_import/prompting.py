"""Prompt and response-schema construction for statement recognition.

This module builds:
- The fixed instruction block describing the output JSON, the source
  documents' regional conventions and the sign rule for amounts.
- The full prompt: instructions followed by the extracted statement text.
- The strict ``response_format`` (JSON Schema) object for the OpenAI
  Responses API, so compatible engines can enforce the shape server-side.
"""

from __future__ import annotations

from typing import Any

from .models import Category, TransactionType

TRANSACTION_TYPES: tuple[str, ...] = tuple(t.value for t in TransactionType)
SUGGESTED_CATEGORIES: tuple[str, ...] = tuple(c.value for c in Category)

TEXT_BEGIN = "BEGIN_STATEMENT_TEXT"
TEXT_END = "END_STATEMENT_TEXT"


def build_instructions() -> str:
    """Return the instruction block that precedes the statement text."""

    types = "|".join(TRANSACTION_TYPES)
    categories = "|".join(SUGGESTED_CATEGORIES)
    return (
        "You are a financial transaction parser for Brazilian bank statements.\n"
        "Extract every transaction from the statement text and return JSON only.\n"
        "\n"
        "Output format:\n"
        "{\n"
        '  "transactions": [\n'
        "    {\n"
        '      "date": "YYYY-MM-DD",\n'
        '      "description": "string",\n'
        '      "amount": number,\n'
        f'      "type": "{types}",\n'
        f'      "suggested_category": "{categories}"\n'
        "    }\n"
        "  ]\n"
        "}\n"
        "\n"
        "Rules:\n"
        "- Dates in the statement are day/month/year (DD/MM/YYYY); output them as "
        "ISO-8601 calendar dates (YYYY-MM-DD).\n"
        "- Amounts may use a comma as the decimal separator and a dot for thousands "
        "(1.234,56 means 1234.56).\n"
        "- Output every amount as an unsigned number. Negative or debit amounts are "
        'expenses: emit the absolute value and set "type" to "expense".\n'
        '- Use "income" for credits and "transfer" for moves between own accounts.\n'
        "- Suggest a category from the merchant/description keywords; use \"other\" "
        "when unsure.\n"
        "- Skip balances, totals and headers; they are not transactions."
    )


def build_prompt(statement_text: str) -> str:
    """Concatenate the instruction block with the full extracted text."""

    return (
        f"{build_instructions()}\n\n"
        "Extract transactions from this statement:\n"
        f"{TEXT_BEGIN}\n{statement_text}\n{TEXT_END}"
    )


def build_response_format() -> dict[str, Any]:
    """Return the strict JSON Schema ``response_format`` object.

    Schema shape::

        {"transactions": [{"date", "description", "amount", "type",
                           "suggested_category"}]}
    """

    return {
        "type": "json_schema",
        "name": "statement_transactions",
        "schema": {
            "type": "object",
            "properties": {
                "transactions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "date": {"type": "string"},
                            "description": {"type": "string"},
                            "amount": {"type": "number"},
                            "type": {"type": "string", "enum": list(TRANSACTION_TYPES)},
                            "suggested_category": {
                                "type": "string",
                                "enum": list(SUGGESTED_CATEGORIES),
                            },
                        },
                        "required": [
                            "date",
                            "description",
                            "amount",
                            "type",
                            "suggested_category",
                        ],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["transactions"],
            "additionalProperties": False,
        },
        "strict": True,
    }


__all__ = [
    "SUGGESTED_CATEGORIES",
    "TEXT_BEGIN",
    "TEXT_END",
    "TRANSACTION_TYPES",
    "build_instructions",
    "build_prompt",
    "build_response_format",
]
