"""
Recognition (OCR) Engine

Optical character recognition for rasterized pages that carry no usable
text layer.

Components:
    - RecognitionEngine: protocol (create / recognize / release).
    - TesseractEngine: implementation over pytesseract. Missing language
      data can be fetched from TESSDATA_URL on first use.
    - RecognitionSession: the per-run scoped resource. The engine handle
      is created lazily on the first page that needs recognition and is
      released when the session closes, whatever the outcome of the run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any, Protocol

import httpx
import pytesseract
from PIL import Image

from manualqa.core.errors import NetworkError

logger = logging.getLogger(__name__)


class RecognitionUnavailable(RuntimeError):
    """OCR could not run (binary or language data missing, engine error)."""


@dataclass(frozen=True)
class RecognitionOptions:
    """
    Engine configuration applied once at creation.

    Attributes:
        page_seg_mode: Tesseract page segmentation mode (--psm).
        char_whitelist: Restrict recognized characters, if set.
        tessdata_dir: Directory holding ``*.traineddata`` files.
    """

    page_seg_mode: int = 3
    char_whitelist: str | None = None
    tessdata_dir: str | None = None

    def to_config(self) -> str:
        parts = [f"--psm {self.page_seg_mode}"]
        if self.tessdata_dir:
            parts.append(f'--tessdata-dir "{self.tessdata_dir}"')
        if self.char_whitelist:
            parts.append(f"-c tessedit_char_whitelist={self.char_whitelist}")
        return " ".join(parts)


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    confidence: float


class RecognitionEngine(Protocol):
    """OCR engine lifecycle: one handle per run, released explicitly."""

    async def create(self, language: str, options: RecognitionOptions) -> Any: ...

    async def recognize(self, handle: Any, image: Image.Image) -> RecognitionResult: ...

    async def release(self, handle: Any) -> None: ...


# ---------------------------------------------------------------------------
# Tesseract
# ---------------------------------------------------------------------------


@dataclass
class TesseractHandle:
    language: str
    config: str
    released: bool = False


def _assemble_text(data: dict[str, list[Any]]) -> RecognitionResult:
    """Rebuild line-broken text and mean word confidence from image_to_data output."""
    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []

    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        if not word:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
        conf = float(data["conf"][i])
        if conf >= 0:
            confidences.append(conf)

    text = "\n".join(" ".join(words) for words in lines.values())
    confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return RecognitionResult(text=text, confidence=confidence)


class TesseractEngine:
    """
    OCR engine backed by Google Tesseract via pytesseract.

    Usage::

        engine = TesseractEngine(tessdata_url=settings.TESSDATA_URL)
        async with RecognitionSession(engine, "eng", RecognitionOptions()) as ocr:
            result = await ocr.recognize(page_image)
    """

    def __init__(
        self,
        tessdata_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._tessdata_url = tessdata_url.rstrip("/") if tessdata_url else None
        self._transport = transport

    async def create(self, language: str, options: RecognitionOptions) -> TesseractHandle:
        """
        Verify the binary and language data, then build the run's handle.

        Raises:
            RecognitionUnavailable: Tesseract missing or language data
                absent with no download source.
            NetworkError: Downloading language data failed.
        """
        lookup_config = f'--tessdata-dir "{options.tessdata_dir}"' if options.tessdata_dir else ""
        try:
            installed = await asyncio.to_thread(pytesseract.get_languages, config=lookup_config)
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as e:
            raise RecognitionUnavailable(f"Tesseract is not available: {e}") from e

        # Language files fetched by an earlier run count as installed
        missing = [
            lang
            for lang in language.split("+")
            if lang not in installed
            and not (
                options.tessdata_dir
                and (Path(options.tessdata_dir) / f"{lang}.traineddata").exists()
            )
        ]
        if missing:
            if not (self._tessdata_url and options.tessdata_dir):
                raise RecognitionUnavailable(
                    f"Tesseract language data missing: {', '.join(missing)}"
                )
            for lang in missing:
                await self._download_language(lang, Path(options.tessdata_dir))

        return TesseractHandle(language=language, config=options.to_config())

    async def recognize(self, handle: TesseractHandle, image: Image.Image) -> RecognitionResult:
        if handle.released:
            raise RecognitionUnavailable("Recognition handle already released")
        try:
            data = await asyncio.to_thread(
                pytesseract.image_to_data,
                image,
                lang=handle.language,
                config=handle.config,
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as e:
            raise RecognitionUnavailable(f"Tesseract OCR failed: {e}") from e
        return _assemble_text(data)

    async def release(self, handle: TesseractHandle) -> None:
        handle.released = True

    async def _download_language(self, language: str, directory: Path) -> None:
        url = f"{self._tessdata_url}/{language}.traineddata"
        logger.info("Downloading OCR language data: %s", url)
        try:
            async with httpx.AsyncClient(
                timeout=60.0,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NetworkError(
                f"Network error while downloading OCR language data '{language}': {e}"
            ) from e

        target = directory / f"{language}.traineddata"
        try:
            await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, response.content)
        except OSError as e:
            raise RecognitionUnavailable(
                f"Cannot store OCR language data in {directory}: {e}"
            ) from e


# ---------------------------------------------------------------------------
# Scoped session
# ---------------------------------------------------------------------------


class RecognitionSession:
    """
    Lazily-acquired engine handle scoped to one extraction run.

    The optional ``lock`` is held from the first recognition until the
    session closes, so runs sharing a lock never recognize concurrently.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        language: str,
        options: RecognitionOptions,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._engine = engine
        self._language = language
        self._options = options
        self._lock = lock
        self._locked = False
        self._handle: Any = None

    @property
    def active(self) -> bool:
        """True while an engine handle is held."""
        return self._handle is not None

    async def recognize(self, image: Image.Image) -> RecognitionResult:
        if self._handle is None:
            await self._acquire()
        return await self._engine.recognize(self._handle, image)

    async def _acquire(self) -> None:
        if self._lock is not None and not self._locked:
            await self._lock.acquire()
            self._locked = True
        try:
            self._handle = await self._engine.create(self._language, self._options)
        except BaseException:
            self._release_lock()
            raise
        logger.info("Recognition engine initialized (language=%s)", self._language)

    async def close(self) -> None:
        """Release the handle (if any) and the lock. Safe to call twice."""
        handle, self._handle = self._handle, None
        try:
            if handle is not None:
                await self._engine.release(handle)
                logger.info("Recognition engine released")
        except Exception:
            logger.warning("Error releasing recognition engine", exc_info=True)
        finally:
            self._release_lock()

    def _release_lock(self) -> None:
        if self._locked and self._lock is not None:
            self._lock.release()
        self._locked = False

    async def __aenter__(self) -> RecognitionSession:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
