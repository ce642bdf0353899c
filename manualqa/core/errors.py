"""
Pipeline Error Taxonomy

Every failure that crosses the ingestion or answering boundary is one of
the exceptions below. Each carries a stable ``code`` (used by the API layer
to pick an HTTP status) and a user-displayable ``message``.

    ManualQAError
    +-- UnsupportedType      file is neither plain text nor PDF
    +-- PasswordProtected    PDF requires a password
    +-- Corrupted            PDF cannot be parsed
    +-- EmptyFile            zero-byte upload
    +-- NetworkError         fetching OCR language data failed
    +-- NoReadableText       no extraction tier produced text
    +-- DimensionMismatch    vectors of different lengths compared or stored
    +-- GenerationFailed     completion service call failed
    +-- Unauthorized         caller does not own the document
    +-- DocumentNotFound     unknown document id
    +-- Cancelled            caller cancelled the run

None of these are retried inside the pipeline.
"""

from __future__ import annotations


class ManualQAError(Exception):
    """Base exception for all pipeline errors."""

    code: str = "error"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None) -> None:
        self._message = message or self.default_message
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message


class UnsupportedType(ManualQAError):
    code = "unsupported_type"
    default_message = "Unsupported file type. Please upload PDF or TXT files."


class PasswordProtected(ManualQAError):
    code = "password_protected"
    default_message = (
        "This PDF is password protected and cannot be processed. "
        "Unlock it with the password and try again."
    )


class Corrupted(ManualQAError):
    code = "corrupted"
    default_message = "The PDF file appears to be corrupted or invalid."


class EmptyFile(ManualQAError):
    code = "empty_file"
    default_message = "The uploaded file is empty."


class NetworkError(ManualQAError):
    code = "network_error"
    default_message = (
        "A network error occurred while loading document processing assets. "
        "Check your connection and try again."
    )


class NoReadableText(ManualQAError):
    code = "no_readable_text"
    default_message = (
        "No readable text found in this document. "
        "It may be a scanned image that could not be recognized."
    )


class DimensionMismatch(ManualQAError):
    code = "dimension_mismatch"
    default_message = "Embedding dimensions do not match."


class GenerationFailed(ManualQAError):
    code = "generation_failed"
    default_message = "The answer generation service failed to respond."


class Unauthorized(ManualQAError):
    code = "unauthorized"
    default_message = "Unauthorized: cannot access this document."


class DocumentNotFound(ManualQAError):
    code = "document_not_found"
    default_message = "Document not found."


class Cancelled(ManualQAError):
    code = "cancelled"
    default_message = "Processing was cancelled."
