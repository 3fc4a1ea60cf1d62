"""Ledger collaborator: protocol, in-memory and SQL implementations."""

from .base import InMemoryLedger, Ledger
from .sql import SqlLedger

__all__ = ["InMemoryLedger", "Ledger", "SqlLedger"]
