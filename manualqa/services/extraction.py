"""
Text Extraction Engine

Turns an uploaded manual (plain text or PDF) into normalized text.

PDF extraction walks an ordered list of strategies until one produces
sufficient text:

    1. direct       text layer spans in content order
    2. positional   spans re-laid into lines by baseline; only runs when
                    the direct tier failed outright
    3. recognition  rasterize each page and OCR it

``force_recognition`` skips straight to recognition. PyMuPDF and OCR
exceptions are mapped to the pipeline error taxonomy; they never escape.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar, Final

from PIL import Image

from manualqa.core.config import settings
from manualqa.core.errors import (
    Cancelled,
    EmptyFile,
    NetworkError,
    NoReadableText,
    UnsupportedType,
)
from manualqa.models.schemas import UploadedFile
from manualqa.services.recognition import (
    RecognitionEngine,
    RecognitionOptions,
    RecognitionSession,
    RecognitionUnavailable,
)
from manualqa.services.rendering import PdfDocument, TextFragment, open_pdf

logger = logging.getLogger(__name__)

PageCallback = Callable[[str, int, int], None]
"""``(strategy, page_no, page_count)`` called after each page."""

SUPPORTED_EXTENSIONS: Final[dict[str, str]] = {".txt": "plain", ".pdf": "pdf"}
SUPPORTED_CONTENT_TYPES: Final[dict[str, str]] = {
    "text/plain": "plain",
    "application/pdf": "pdf",
}

_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def normalize_text(text: str) -> str:
    """
    Clean extracted text.

    Every whitespace run, line breaks and form feeds included, becomes a
    single space and the result is trimmed.
    """
    return _WHITESPACE.sub(" ", text).strip()


def is_sufficient(
    text: str,
    page_count: int,
    min_chars_per_page: int = 100,
    min_total_chars: int = 200,
) -> bool:
    """True when ``text`` is dense enough to skip further tiers."""
    total = len(text.strip())
    average = total / max(page_count, 1)
    return average >= min_chars_per_page and total >= min_total_chars


def reconstruct_lines(fragments: list[TextFragment], tolerance: float) -> str:
    """Join spans, breaking the line whenever the baseline moves by more than ``tolerance``."""
    parts: list[str] = []
    previous: float | None = None
    for fragment in fragments:
        if not fragment.text.strip():
            continue
        if previous is not None:
            parts.append("\n" if abs(fragment.baseline - previous) > tolerance else " ")
        parts.append(fragment.text)
        previous = fragment.baseline
    return "".join(parts)


def detect_kind(upload: UploadedFile) -> str:
    """
    Classify an upload as ``"plain"`` or ``"pdf"``.

    The reported content type wins; the file extension is the fallback.

    Raises:
        UnsupportedType: For anything else.
    """
    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    kind = SUPPORTED_CONTENT_TYPES.get(content_type) or SUPPORTED_EXTENSIONS.get(upload.suffix)
    if kind is None:
        raise UnsupportedType(
            f"Unsupported file type: {content_type or upload.suffix or 'unknown'}. "
            "Please upload PDF or TXT files."
        )
    return kind


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyResult:
    text: str
    sufficient: bool


@dataclass(frozen=True)
class ExtractionResult:
    """
    Outcome of one extraction.

    Attributes:
        text: Normalized text (never empty).
        strategy: ``plain``, ``direct``, ``positional`` or ``recognition``.
        page_count: Pages in the PDF (1 for plain text).
        sufficient: Whether the text passed the density check.
    """

    text: str
    strategy: str
    page_count: int
    sufficient: bool


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


@dataclass
class _PdfRun:
    """State shared by the strategies of one PDF extraction."""

    pdf: PdfDocument
    page_count: int
    min_chars_per_page: int
    min_total_chars: int
    baseline_tolerance: float
    render_scale: float
    recognizer: RecognitionSession | None = None
    on_page: PageCallback | None = None
    cancel_event: asyncio.Event | None = None

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Cancelled()

    def page_done(self, strategy: str, page_no: int) -> None:
        if self.on_page is not None:
            self.on_page(strategy, page_no, self.page_count)

    def assess(self, text: str) -> StrategyResult:
        text = normalize_text(text)
        return StrategyResult(
            text=text,
            sufficient=is_sufficient(
                text, self.page_count, self.min_chars_per_page, self.min_total_chars
            ),
        )


class ExtractionStrategy:
    """One extraction tier."""

    name: ClassVar[str]
    fallback_only: ClassVar[bool] = False  # run only after the previous tier raised
    recognizes: ClassVar[bool] = False

    async def run(self, run: _PdfRun) -> StrategyResult:
        raise NotImplementedError


class DirectTextStrategy(ExtractionStrategy):
    name = "direct"

    @staticmethod
    def _read_page(pdf: PdfDocument, index: int) -> str:
        fragments = pdf.page(index).text_fragments()
        return " ".join(f.text for f in fragments if f.text.strip())

    async def run(self, run: _PdfRun) -> StrategyResult:
        pages: list[str] = []
        for index in range(run.page_count):
            run.check_cancelled()
            pages.append(await asyncio.to_thread(self._read_page, run.pdf, index))
            run.page_done(self.name, index + 1)
        return run.assess("\n\n".join(pages))


class PositionalTextStrategy(ExtractionStrategy):
    name = "positional"
    fallback_only = True

    @staticmethod
    def _read_page(pdf: PdfDocument, index: int, tolerance: float) -> str:
        fragments = pdf.page(index).text_fragments(preserve_whitespace=True)
        return reconstruct_lines(fragments, tolerance)

    async def run(self, run: _PdfRun) -> StrategyResult:
        pages: list[str] = []
        for index in range(run.page_count):
            run.check_cancelled()
            pages.append(
                await asyncio.to_thread(
                    self._read_page, run.pdf, index, run.baseline_tolerance
                )
            )
            run.page_done(self.name, index + 1)
        return run.assess("\n\n".join(pages))


class RecognitionStrategy(ExtractionStrategy):
    name = "recognition"
    recognizes = True

    @staticmethod
    def _render_page(pdf: PdfDocument, index: int, scale: float) -> Image.Image:
        return pdf.page(index).rasterize(scale)

    async def run(self, run: _PdfRun) -> StrategyResult:
        if run.recognizer is None:
            raise RecognitionUnavailable("No recognition engine configured")

        pages: list[str] = []
        confidences: list[float] = []
        for index in range(run.page_count):
            run.check_cancelled()
            image = await asyncio.to_thread(self._render_page, run.pdf, index, run.render_scale)
            result = await run.recognizer.recognize(image)
            pages.append(result.text.strip())
            confidences.append(result.confidence)
            run.page_done(self.name, index + 1)

        logger.info(
            "Recognized %d pages (mean confidence %.1f)",
            len(pages),
            sum(confidences) / len(confidences) if confidences else 0.0,
        )
        return run.assess("\n\n".join(p for p in pages if p))


DEFAULT_STRATEGIES: Final[tuple[ExtractionStrategy, ...]] = (
    DirectTextStrategy(),
    PositionalTextStrategy(),
    RecognitionStrategy(),
)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class TextExtractor:
    """
    Multi-tier text extractor.

    When no ``recognizer`` session is passed to ``extract``, a session over
    ``engine`` (if any) is opened for that call and closed before it
    returns.

    Usage::

        extractor = TextExtractor(engine=TesseractEngine())
        result = await extractor.extract(upload)
        print(result.strategy, len(result.text))
    """

    def __init__(
        self,
        engine: RecognitionEngine | None = None,
        *,
        strategies: tuple[ExtractionStrategy, ...] = DEFAULT_STRATEGIES,
        min_chars_per_page: int | None = None,
        min_total_chars: int | None = None,
        baseline_tolerance: float | None = None,
        render_scale: float | None = None,
    ) -> None:
        self._engine = engine
        self._strategies = strategies
        self._min_chars_per_page = min_chars_per_page or settings.MIN_CHARS_PER_PAGE
        self._min_total_chars = min_total_chars or settings.MIN_TOTAL_CHARS
        self._baseline_tolerance = baseline_tolerance or settings.BASELINE_TOLERANCE
        self._render_scale = render_scale or settings.OCR_RENDER_SCALE

    def recognition_session(self, lock: asyncio.Lock | None = None) -> RecognitionSession | None:
        """A session over the configured engine, or None without one."""
        if self._engine is None:
            return None
        return RecognitionSession(
            self._engine,
            settings.OCR_LANGUAGE,
            RecognitionOptions(
                page_seg_mode=settings.OCR_PAGE_SEG_MODE,
                char_whitelist=settings.OCR_CHAR_WHITELIST,
                tessdata_dir=settings.TESSDATA_DIR,
            ),
            lock=lock,
        )

    async def extract(
        self,
        upload: UploadedFile,
        force_recognition: bool = False,
        *,
        recognizer: RecognitionSession | None = None,
        on_page: PageCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExtractionResult:
        """
        Extract normalized text from ``upload``.

        Raises:
            UnsupportedType: Neither plain text nor PDF.
            EmptyFile: Zero-byte upload.
            PasswordProtected: Encrypted PDF.
            Corrupted: Unparseable PDF.
            NoReadableText: No tier produced any text.
            NetworkError: OCR assets could not be fetched and no partial
                text exists.
            Cancelled: ``cancel_event`` was set.
        """
        kind = detect_kind(upload)
        if upload.size == 0:
            raise EmptyFile()
        if cancel_event is not None and cancel_event.is_set():
            raise Cancelled()

        if kind == "plain":
            result = self._extract_plain(upload)
        elif recognizer is not None:
            result = await self._extract_pdf(
                upload, force_recognition, recognizer, on_page, cancel_event
            )
        else:
            session = self.recognition_session()
            try:
                result = await self._extract_pdf(
                    upload, force_recognition, session, on_page, cancel_event
                )
            finally:
                if session is not None:
                    await session.close()

        logger.info(
            "Extracted %d chars from %s via %s (%d pages, sufficient=%s)",
            len(result.text),
            upload.filename,
            result.strategy,
            result.page_count,
            result.sufficient,
        )
        return result

    @staticmethod
    def _extract_plain(upload: UploadedFile) -> ExtractionResult:
        text = normalize_text(upload.data.decode("utf-8", errors="replace"))
        if not text:
            raise NoReadableText("No readable text found in this text file.")
        return ExtractionResult(text=text, strategy="plain", page_count=1, sufficient=True)

    async def _extract_pdf(
        self,
        upload: UploadedFile,
        force_recognition: bool,
        recognizer: RecognitionSession | None,
        on_page: PageCallback | None,
        cancel_event: asyncio.Event | None,
    ) -> ExtractionResult:
        pdf = await asyncio.to_thread(open_pdf, upload.data)
        try:
            run = _PdfRun(
                pdf=pdf,
                page_count=pdf.page_count,
                min_chars_per_page=self._min_chars_per_page,
                min_total_chars=self._min_total_chars,
                baseline_tolerance=self._baseline_tolerance,
                render_scale=self._render_scale,
                recognizer=recognizer,
                on_page=on_page,
                cancel_event=cancel_event,
            )
            return await self._run_strategies(run, force_recognition, upload.filename)
        finally:
            pdf.close()

    async def _run_strategies(
        self,
        run: _PdfRun,
        force_recognition: bool,
        filename: str,
    ) -> ExtractionResult:
        partial: ExtractionResult | None = None
        previous_failed = False

        for strategy in self._strategies:
            if force_recognition and not strategy.recognizes:
                continue
            if strategy.fallback_only and not previous_failed:
                continue

            run.check_cancelled()
            try:
                outcome = await strategy.run(run)
            except NetworkError:
                if partial is not None:
                    logger.warning(
                        "OCR assets unavailable for %s, keeping %s text",
                        filename,
                        partial.strategy,
                    )
                    return partial
                raise
            except (RuntimeError, ValueError, OSError) as e:
                # PyMuPDF, Pillow and Tesseract failures, RecognitionUnavailable included
                logger.warning("%s extraction failed for %s: %s", strategy.name, filename, e)
                previous_failed = True
                continue

            previous_failed = False
            result = ExtractionResult(
                text=outcome.text,
                strategy=strategy.name,
                page_count=run.page_count,
                sufficient=outcome.sufficient,
            )
            if outcome.sufficient:
                return result
            if strategy.recognizes:
                # OCR ran to completion: its text wins, and no text is final
                if outcome.text:
                    return result
                raise NoReadableText()
            if outcome.text and partial is None:
                partial = result
            logger.info(
                "%s extraction of %s insufficient (%d chars over %d pages)",
                strategy.name,
                filename,
                len(outcome.text),
                run.page_count,
            )

        if partial is not None:
            return partial
        raise NoReadableText()
