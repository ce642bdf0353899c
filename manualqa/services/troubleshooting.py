"""
Troubleshooting Helpers

Turns pipeline errors into a compact user-facing message plus remediation
tips, and flags uploads that look like they will need OCR.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

ERROR_MESSAGE_LIMIT: Final[int] = 160
LARGE_FILE_BYTES: Final[int] = 10 * 1024 * 1024

SCANNED_INDICATORS: Final[tuple[str, ...]] = (
    "scan",
    "scanned",
    "copy",
    "image",
    "photo",
    "jpeg",
    "jpg",
    "png",
    "tiff",
    "ocr",
)

_SIZE_UNITS: Final[tuple[str, ...]] = ("Bytes", "KB", "MB", "GB")


@dataclass(frozen=True)
class Suggestion:
    title: str
    description: str
    solutions: tuple[str, ...]


SCANNED_DOCUMENT = Suggestion(
    title="Scanned Document Detected",
    description="This PDF appears to contain scanned images rather than selectable text.",
    solutions=(
        "Retry the upload with OCR forced on",
        "Use OCR software (Adobe Acrobat, Google Docs) to convert to text",
        "Manually copy any visible text into a .txt file",
        "Check if the original document has a text-based version",
    ),
)

PASSWORD_PROTECTED = Suggestion(
    title="Password Protected",
    description="This PDF is password protected and cannot be processed.",
    solutions=(
        "Enter the password to unlock the PDF",
        "Ask the document owner for an unlocked version",
        "Use PDF password removal tools if you have permission",
        "Copy text manually if you can view the content",
    ),
)

FILE_CORRUPTION = Suggestion(
    title="File Corruption",
    description="The PDF file appears to be corrupted or invalid.",
    solutions=(
        "Download the file again from the original source",
        "Try opening the PDF in different viewers (Adobe Reader, browser)",
        "Check if the file was completely downloaded",
        "Request a new copy of the document",
    ),
)

NO_TEXT_CONTENT = Suggestion(
    title="No Text Content",
    description="No readable text was found in this PDF.",
    solutions=(
        "This might be an image-only PDF requiring OCR",
        "Try selecting text in a PDF viewer to confirm",
        "Convert to text using online OCR services",
        "Check if this is actually a collection of images",
    ),
)

GENERAL = Suggestion(
    title="General Troubleshooting",
    description="Try these common solutions for PDF processing issues.",
    solutions=(
        "Ensure the PDF is not password protected",
        "Try a smaller file size (under 10MB)",
        "Use a text-based PDF rather than scanned images",
        "Convert to .txt format if possible",
        "Check file integrity by opening in a PDF viewer",
    ),
)


@dataclass(frozen=True)
class ErrorDescription:
    message: str
    suggestions: list[Suggestion] = field(default_factory=list)

    @property
    def tips(self) -> list[str]:
        """All remediation steps, flattened in suggestion order."""
        return [tip for s in self.suggestions for tip in s.solutions]


@dataclass(frozen=True)
class UploadAnalysis:
    filename: str
    size: int
    size_formatted: str
    likely_scanned: bool
    recommendations: list[str] = field(default_factory=list)


def truncate_message(message: str, limit: int = ERROR_MESSAGE_LIMIT) -> str:
    message = message.strip()
    if len(message) <= limit:
        return message
    return message[: limit - 3].rstrip() + "..."


def describe_error(error: BaseException | str) -> ErrorDescription:
    """
    Compact message and matching remediation tips for ``error``.

    Tips are chosen by keywords in the full message; the message itself
    is truncated to ``ERROR_MESSAGE_LIMIT`` characters.
    """
    message = str(getattr(error, "message", None) or error)
    lowered = message.lower()

    suggestions: list[Suggestion] = []
    if "scanned" in lowered or "image" in lowered:
        suggestions.append(SCANNED_DOCUMENT)
    if "password" in lowered:
        suggestions.append(PASSWORD_PROTECTED)
    if "corrupted" in lowered or "invalid" in lowered:
        suggestions.append(FILE_CORRUPTION)
    if "no readable text" in lowered:
        suggestions.append(NO_TEXT_CONTENT)
    if not suggestions:
        suggestions.append(GENERAL)

    return ErrorDescription(message=truncate_message(message), suggestions=suggestions)


def has_scanned_indicators(filename: str) -> bool:
    lowered = filename.lower()
    return any(indicator in lowered for indicator in SCANNED_INDICATORS)


def format_file_size(size: int) -> str:
    """Human-readable size, e.g. ``1.5 KB`` or ``0 Bytes``."""
    if size <= 0:
        return "0 Bytes"
    exponent = 0
    while exponent < len(_SIZE_UNITS) - 1 and size >= 1024 ** (exponent + 1):
        exponent += 1
    value = round(size / 1024**exponent, 2)
    return f"{value:g} {_SIZE_UNITS[exponent]}"


def analyze_upload(filename: str, size: int) -> UploadAnalysis:
    """Pre-flight hints for an upload, based on its name and size only."""
    recommendations: list[str] = []
    likely_scanned = has_scanned_indicators(filename)
    if likely_scanned:
        recommendations.append("File name suggests this might be a scanned document")
    if size > LARGE_FILE_BYTES:
        recommendations.append("Large file size may indicate scanned images")

    return UploadAnalysis(
        filename=filename,
        size=size,
        size_formatted=format_file_size(size),
        likely_scanned=likely_scanned,
        recommendations=recommendations,
    )
