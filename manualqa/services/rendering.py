"""
Page Rendering

Thin wrapper over PyMuPDF (fitz) exposing what extraction needs: page
count, positioned text fragments, and page rasters for OCR.

All calls are synchronous and CPU-bound; always call them via
``asyncio.to_thread`` from async code.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType

import fitz  # PyMuPDF
from PIL import Image

from manualqa.core.errors import Corrupted, EmptyFile, PasswordProtected

_BASE_FLAGS = fitz.TEXT_PRESERVE_LIGATURES | fitz.TEXT_MEDIABOX_CLIP


@dataclass(frozen=True)
class TextFragment:
    """A text span with the vertical position of its first character's baseline."""

    text: str
    baseline: float


class PdfPage:
    """One page of an open PDF."""

    def __init__(self, page: fitz.Page) -> None:
        self._page = page

    def text_fragments(self, preserve_whitespace: bool = False) -> list[TextFragment]:
        """
        Text layer spans in content-stream order.

        Args:
            preserve_whitespace: Keep tabs and repeated spaces as stored
                instead of letting PyMuPDF normalize them.
        """
        flags = _BASE_FLAGS
        if preserve_whitespace:
            flags |= fitz.TEXT_PRESERVE_WHITESPACE

        data = self._page.get_text("dict", flags=flags, sort=False)
        fragments: list[TextFragment] = []
        for block in data.get("blocks", []):
            if block.get("type", 0) != 0:  # image block
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    fragments.append(TextFragment(span["text"], float(span["origin"][1])))
        return fragments

    def rasterize(self, scale: float) -> Image.Image:
        """Render the page to an RGB image at ``scale`` times 72 dpi."""
        pixmap = self._page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        return Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)


class PdfDocument:
    """
    An open PDF. Use as a context manager so the handle is always closed.

    Usage::

        with open_pdf(raw) as pdf:
            for number in range(pdf.page_count):
                fragments = pdf.page(number).text_fragments()
    """

    def __init__(self, document: fitz.Document) -> None:
        self._document = document

    @property
    def page_count(self) -> int:
        return self._document.page_count

    def page(self, index: int) -> PdfPage:
        """Zero-based page access."""
        return PdfPage(self._document.load_page(index))

    def close(self) -> None:
        self._document.close()

    def __enter__(self) -> PdfDocument:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def open_pdf(data: bytes) -> PdfDocument:
    """
    Open PDF bytes.

    Raises:
        EmptyFile: If ``data`` is empty.
        Corrupted: If PyMuPDF cannot parse the data or it has no pages.
        PasswordProtected: If the document needs a password.
    """
    if not data:
        raise EmptyFile()

    try:
        document = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise Corrupted(f"The PDF file appears to be corrupted or invalid: {e}") from e

    if document.needs_pass:
        document.close()
        raise PasswordProtected()
    if document.page_count == 0:
        document.close()
        raise Corrupted("The PDF file appears to be corrupted or invalid: no pages")

    return PdfDocument(document)
