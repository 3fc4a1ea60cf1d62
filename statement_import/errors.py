"""Error taxonomy for statement import.

Every fatal condition surfaced to callers derives from
:class:`StatementImportError`. Each class carries a stable ``code`` (the
localization key a presentation layer looks up) and a default human-readable
``message``. Record-level defects (one bad date, one incomplete block) are not
errors: parsers drop the record and count it.
"""

from __future__ import annotations

from typing import ClassVar


class StatementImportError(Exception):
    """Base class for all import failures."""

    code: ClassVar[str] = "import.error"
    default_message: ClassVar[str] = "Erro ao importar extrato"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Source / decoding
# ---------------------------------------------------------------------------


class EncodingError(StatementImportError):
    code = "ofx.error.encoding"
    default_message = "Erro de codificação do arquivo"


class InvalidFormat(StatementImportError):
    code = "import.error.invalid.format"
    default_message = "Formato de arquivo inválido"


class FileNotReadable(StatementImportError):
    code = "pdf.error.not.readable"
    default_message = "Não foi possível ler o arquivo"


class EncryptedSource(StatementImportError):
    code = "pdf.error.encrypted"
    default_message = "PDF criptografado. Use um PDF sem senha"


class FileTooLarge(StatementImportError):
    code = "pdf.error.too.large"

    def __init__(self, size: int, max_size: int) -> None:
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"Arquivo muito grande: {_mib(size)}MB (máximo: {_mib(max_size)}MB) "
            f"[{size} bytes > {max_size} bytes]"
        )


class NoExtractableText(StatementImportError):
    code = "pdf.error.no.text"
    default_message = (
        "PDF parece ser uma imagem digitalizada. Use o extrato digital do banco"
    )


class LowConfidence(StatementImportError):
    code = "pdf.error.low.confidence"

    def __init__(self, confidence: float, threshold: float | None = None) -> None:
        self.confidence = confidence
        self.threshold = threshold
        detail = f"Baixa confiança na extração ({int(confidence * 100)}%)"
        if threshold is not None:
            detail += f" (mínimo: {int(threshold * 100)}%)"
        super().__init__(detail)


class NoTransactionsFound(StatementImportError):
    code = "pdf.error.no.transactions"
    default_message = "Nenhuma transação encontrada no arquivo"


# ---------------------------------------------------------------------------
# Inference model
# ---------------------------------------------------------------------------


class ModelUnavailable(StatementImportError):
    code = "pdf.error.model.not.downloaded"
    default_message = "Modelo ML não está baixado"


class _ReasonError(StatementImportError):
    prefix: ClassVar[str] = ""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"{self.prefix}: {reason}" if self.prefix else reason)


class ModelDownloadFailed(_ReasonError):
    code = "pdf.error.model.download"
    prefix = "Falha ao baixar o modelo"


class ModelLoadFailed(_ReasonError):
    code = "pdf.error.model.load"
    prefix = "Falha ao carregar o modelo"


class ModelInferenceFailed(_ReasonError):
    code = "pdf.error.model.inference"
    prefix = "Falha na inferência do modelo"


class InvalidModelOutput(_ReasonError):
    code = "pdf.error.model.output"
    prefix = "Resposta do modelo inválida"


class SaveFailed(_ReasonError):
    code = "import.error.save"
    prefix = "Falha ao salvar transação"


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class InvalidTransition(StatementImportError):
    code = "import.error.invalid.transition"

    def __init__(self, current: object, target: object) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Transição inválida: {_label(current)} -> {_label(target)}")


class ImportInProgress(StatementImportError):
    code = "import.error.in.progress"

    def __init__(self, status: object) -> None:
        self.status = status
        super().__init__(f"Importação já em andamento (estado: {_label(status)})")


class ImportCancelled(StatementImportError):
    code = "import.error.cancelled"
    default_message = "Importação cancelada"


def _mib(n: int) -> int:
    return n // (1024 * 1024)


def _label(value: object) -> str:
    return str(getattr(value, "value", value))


__all__ = [
    "StatementImportError",
    "EncodingError",
    "InvalidFormat",
    "FileNotReadable",
    "EncryptedSource",
    "FileTooLarge",
    "NoExtractableText",
    "LowConfidence",
    "NoTransactionsFound",
    "ModelUnavailable",
    "ModelDownloadFailed",
    "ModelLoadFailed",
    "ModelInferenceFailed",
    "InvalidModelOutput",
    "SaveFailed",
    "InvalidTransition",
    "ImportInProgress",
    "ImportCancelled",
]
