"""Statement import and reconciliation pipeline.

Public API re-exports. Heavy collaborators (PyMuPDF, Tesseract, the OpenAI
SDK) are imported by the modules that need them; importing the package root
does not start any of them.
"""

from .categorizer import backfill_categories, categorize, categorize_raw
from .duplicates import DuplicateDetector, DuplicatePolicy, partition
from .errors import (
    EncodingError,
    EncryptedSource,
    FileNotReadable,
    FileTooLarge,
    ImportCancelled,
    ImportInProgress,
    InvalidFormat,
    InvalidModelOutput,
    InvalidTransition,
    LowConfidence,
    ModelDownloadFailed,
    ModelInferenceFailed,
    ModelLoadFailed,
    ModelUnavailable,
    NoExtractableText,
    NoTransactionsFound,
    SaveFailed,
    StatementImportError,
)
from .legacy_parser import LegacyFormatParser
from .models import (
    CandidateTransaction,
    Category,
    CommitReport,
    ExtractedText,
    ImportResult,
    ImportStatus,
    LedgerTransaction,
    PageText,
    RawTransaction,
    RecordError,
    Statement,
    StatementAccount,
    TransactionType,
)
from .settings import ImportSettings

__all__ = [
    "CandidateTransaction",
    "Category",
    "CommitReport",
    "DuplicateDetector",
    "DuplicatePolicy",
    "EncodingError",
    "EncryptedSource",
    "ExtractedText",
    "FileNotReadable",
    "FileTooLarge",
    "ImportCancelled",
    "ImportInProgress",
    "ImportResult",
    "ImportSettings",
    "ImportStatus",
    "InvalidFormat",
    "InvalidModelOutput",
    "InvalidTransition",
    "LedgerTransaction",
    "LegacyFormatParser",
    "LowConfidence",
    "ModelDownloadFailed",
    "ModelInferenceFailed",
    "ModelLoadFailed",
    "ModelUnavailable",
    "NoExtractableText",
    "NoTransactionsFound",
    "PageText",
    "RawTransaction",
    "RecordError",
    "SaveFailed",
    "Statement",
    "StatementAccount",
    "StatementImportError",
    "TransactionType",
    "backfill_categories",
    "categorize",
    "categorize_raw",
    "partition",
]
