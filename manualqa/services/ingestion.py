"""
Ingestion Controller

Runs one upload through extraction, chunking, embedding and storage,
reporting progress to an optional sink.

Stages and the percent range each one reports:

    STARTED        0
    EXTRACTING     10-40   per page of the direct / positional tiers
    RECOGNIZING    40-80   per page, only when OCR runs
    STRUCTURING    85      document record created
                   87      text chunked
    EMBEDDING      90-98   by completed embeddings
    PERSISTING     98
    COMPLETE       100

Single attempt, strictly sequential. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import NamedTuple

from manualqa.core.config import settings
from manualqa.core.errors import Cancelled, ManualQAError
from manualqa.models.schemas import (
    Document,
    IngestionStage,
    NewChunk,
    ProgressEvent,
    UploadedFile,
)
from manualqa.repositories.base import DocumentStore
from manualqa.services.chunking import WordChunker
from manualqa.services.embeddings import EmbeddingService
from manualqa.services.extraction import TextExtractor

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]


def _scale(done: int, total: int, low: int, high: int) -> int:
    """Map ``done/total`` onto the ``[low, high]`` percent range."""
    if total <= 0:
        return high
    return low + (high - low) * min(done, total) // total


class ProgressReporter:
    """
    Forwards progress events to a sink.

    Percent values never decrease within a run and a failing sink never
    interrupts ingestion.
    """

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self._sink = sink
        self._percent = 0

    @property
    def percent(self) -> int:
        return self._percent

    def emit(self, stage: IngestionStage, percent: int, message: str) -> None:
        self._percent = max(self._percent, min(100, percent))
        if self._sink is None:
            return
        event = ProgressEvent(stage=stage, percent=self._percent, message=message)
        try:
            self._sink(event)
        except Exception:
            logger.warning("Progress sink raised; continuing ingestion", exc_info=True)


class IngestionReport(NamedTuple):
    """Outcome of a successful ingestion run."""

    document: Document
    chunks_count: int
    strategy: str


class IngestionController:
    """
    Drives uploads through the pipeline.

    The controller owns the recognition engine lock: at most one OCR run
    is active per controller, and every run releases its engine handle
    whatever the outcome.

    Usage::

        controller = IngestionController(store, extractor, WordChunker(), embeddings)
        document = await controller.ingest(upload, "user-1", progress_sink=print)
    """

    def __init__(
        self,
        store: DocumentStore,
        extractor: TextExtractor,
        chunker: WordChunker,
        embeddings: EmbeddingService,
        *,
        rollback_on_failure: bool | None = None,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._chunker = chunker
        self._embeddings = embeddings
        self._rollback_on_failure = (
            settings.ROLLBACK_ON_FAILURE if rollback_on_failure is None else rollback_on_failure
        )
        self._recognition_lock = asyncio.Lock()

    async def ingest(
        self,
        upload: UploadedFile,
        user_id: str,
        progress_sink: ProgressSink | None = None,
        force_recognition: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> Document:
        """Ingest ``upload`` for ``user_id`` and return the stored document."""
        report = await self.run(upload, user_id, progress_sink, force_recognition, cancel_event)
        return report.document

    async def run(
        self,
        upload: UploadedFile,
        user_id: str,
        progress_sink: ProgressSink | None = None,
        force_recognition: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> IngestionReport:
        """
        Ingest ``upload`` and report chunk count and extraction strategy.

        Raises:
            ManualQAError: Any taxonomy error from extraction, storage or
                cancellation. Failures before the document record exists
                leave nothing behind.
        """
        started = time.perf_counter()
        progress = ProgressReporter(progress_sink)
        logger.info(
            "Ingesting %s (%d bytes) for user %s",
            upload.filename,
            upload.size,
            user_id,
        )

        try:
            report = await self._run(upload, user_id, progress, force_recognition, cancel_event)
        except ManualQAError as e:
            logger.warning("Ingestion of %s failed [%s]: %s", upload.filename, e.code, e.message)
            raise

        logger.info(
            "Ingested %s: document=%s strategy=%s chunks=%d (%.2fs)",
            upload.filename,
            report.document.id,
            report.strategy,
            report.chunks_count,
            time.perf_counter() - started,
        )
        return report

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(
        self,
        upload: UploadedFile,
        user_id: str,
        progress: ProgressReporter,
        force_recognition: bool,
        cancel_event: asyncio.Event | None,
    ) -> IngestionReport:
        progress.emit(IngestionStage.STARTED, 0, f"Starting upload of {upload.filename}...")

        def on_page(strategy: str, page_no: int, page_count: int) -> None:
            if strategy == "recognition":
                progress.emit(
                    IngestionStage.RECOGNIZING,
                    _scale(page_no, page_count, 40, 80),
                    f"Recognizing text on page {page_no} of {page_count}...",
                )
            else:
                progress.emit(
                    IngestionStage.EXTRACTING,
                    _scale(page_no, page_count, 10, 40),
                    f"Extracting text from page {page_no} of {page_count}...",
                )

        _check_cancelled(cancel_event)
        progress.emit(IngestionStage.EXTRACTING, 10, "Extracting text...")
        session = self._extractor.recognition_session(self._recognition_lock)
        try:
            extraction = await self._extractor.extract(
                upload,
                force_recognition,
                recognizer=session,
                on_page=on_page,
                cancel_event=cancel_event,
            )
        finally:
            if session is not None:
                await session.close()

        _check_cancelled(cancel_event)
        document = await self._store.create_document(user_id, upload.filename)
        progress.emit(IngestionStage.STRUCTURING, 85, "Document record created")

        try:
            chunks_count = await self._store_chunks(
                document, extraction.text, progress, cancel_event
            )
        except Exception:
            await self._handle_failure(document)
            raise

        progress.emit(IngestionStage.COMPLETE, 100, "Document processed successfully")
        return IngestionReport(document, chunks_count, extraction.strategy)

    async def _store_chunks(
        self,
        document: Document,
        text: str,
        progress: ProgressReporter,
        cancel_event: asyncio.Event | None,
    ) -> int:
        _check_cancelled(cancel_event)
        chunks = self._chunker.chunk(text)
        progress.emit(
            IngestionStage.STRUCTURING, 87, f"Split document into {len(chunks)} chunks"
        )

        def on_embedded(done: int, total: int) -> None:
            progress.emit(
                IngestionStage.EMBEDDING,
                _scale(done, total, 90, 98),
                f"Generated {done} of {total} embeddings",
            )

        _check_cancelled(cancel_event)
        progress.emit(IngestionStage.EMBEDDING, 90, "Generating embeddings...")
        vectors = await self._embeddings.embed_many(chunks, on_embedded, cancel_event)

        _check_cancelled(cancel_event)
        progress.emit(IngestionStage.PERSISTING, 98, "Saving chunks...")
        await self._store.insert_chunks(
            [
                NewChunk(
                    document_id=document.id,
                    chunk_index=index,
                    content=content,
                    embedding=vector,
                )
                for index, (content, vector) in enumerate(zip(chunks, vectors, strict=True))
            ]
        )
        return len(chunks)

    async def _handle_failure(self, document: Document) -> None:
        if not self._rollback_on_failure:
            logger.warning(
                "Leaving document %s (%s) in place after failed ingestion",
                document.id,
                document.filename,
            )
            return
        try:
            await self._store.delete_document(document.id)
            logger.info("Rolled back document %s after failed ingestion", document.id)
        except Exception:
            logger.exception("Rollback of document %s failed", document.id)


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise Cancelled()
