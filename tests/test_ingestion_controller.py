"""
Ingestion Controller Unit Tests

Drives full ingestion runs against the in-memory store with hash
embeddings and a scripted OCR engine.
"""

from __future__ import annotations

import asyncio

import pytest

from manualqa.core.errors import (
    Cancelled,
    DimensionMismatch,
    NoReadableText,
    UnsupportedType,
)
from manualqa.models.schemas import IngestionStage, ProgressEvent, UploadedFile
from manualqa.repositories.memory import InMemoryDocumentStore
from manualqa.services.chunking import WordChunker
from manualqa.services.extraction import TextExtractor
from manualqa.services.ingestion import IngestionController, ProgressReporter, _scale

USER = "user-a"

COMPRESSOR_MANUAL = (
    "Compressor maintenance. Inspect the compressor every six months. "
    "Maximum discharge pressure is 350 psi. Replace the air filter every "
    "three months and clean the condenser coil annually with a soft brush."
)


def _controller(store, embeddings, engine=None, **kwargs) -> IngestionController:
    extractor = TextExtractor(
        engine=engine,
        min_chars_per_page=100,
        min_total_chars=200,
    )
    return IngestionController(
        store,
        extractor,
        WordChunker(chunk_size=20, chunk_overlap=5),
        embeddings,
        **kwargs,
    )


def _text_upload(text: str = COMPRESSOR_MANUAL) -> UploadedFile:
    return UploadedFile("compressor.txt", text.encode(), "text/plain")


class _Collector:
    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def stages(self) -> list[IngestionStage]:
        return [e.stage for e in self.events]

    @property
    def percents(self) -> list[int]:
        return [e.percent for e in self.events]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestProgressHelpers:
    """Tests for _scale and ProgressReporter."""

    def test_scale(self) -> None:
        assert _scale(0, 4, 10, 40) == 10
        assert _scale(2, 4, 10, 40) == 25
        assert _scale(4, 4, 10, 40) == 40
        assert _scale(9, 4, 10, 40) == 40
        assert _scale(0, 0, 90, 98) == 98

    def test_reporter_never_decreases(self) -> None:
        sink = _Collector()
        reporter = ProgressReporter(sink)

        reporter.emit(IngestionStage.EXTRACTING, 40, "a")
        reporter.emit(IngestionStage.STRUCTURING, 20, "b")
        reporter.emit(IngestionStage.COMPLETE, 150, "c")

        assert sink.percents == [40, 40, 100]

    def test_reporter_without_sink(self) -> None:
        reporter = ProgressReporter()
        reporter.emit(IngestionStage.STARTED, 5, "x")
        assert reporter.percent == 5


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestSuccessfulRun:
    """Tests for complete ingestion runs."""

    @pytest.mark.asyncio
    async def test_plain_text_run(self, store, local_embeddings) -> None:
        sink = _Collector()
        controller = _controller(store, local_embeddings)

        report = await controller.run(_text_upload(), USER, progress_sink=sink)

        assert report.strategy == "plain"
        assert report.chunks_count == len(WordChunker(20, 5).chunk(COMPRESSOR_MANUAL))
        chunks = await store.get_chunks(report.document.id)
        assert [c.chunk_index for c in chunks] == list(range(report.chunks_count))
        assert (await store.list_documents(USER))[0].id == report.document.id

    @pytest.mark.asyncio
    async def test_stage_order_and_percents(self, store, local_embeddings) -> None:
        sink = _Collector()

        await _controller(store, local_embeddings).run(_text_upload(), USER, progress_sink=sink)

        assert sink.events[0].stage == IngestionStage.STARTED
        assert sink.events[0].percent == 0
        assert sink.events[-1].stage == IngestionStage.COMPLETE
        assert sink.events[-1].percent == 100
        assert sink.stages == sorted(sink.stages)
        assert sink.percents == sorted(sink.percents)
        assert IngestionStage.RECOGNIZING not in sink.stages
        assert IngestionStage.PERSISTING in sink.stages

    @pytest.mark.asyncio
    async def test_ingest_returns_document(self, store, local_embeddings) -> None:
        document = await _controller(store, local_embeddings).ingest(_text_upload(), USER)

        assert document.user_id == USER
        assert document.filename == "compressor.txt"

    @pytest.mark.asyncio
    async def test_raising_sink_does_not_abort(self, store, local_embeddings) -> None:
        def sink(event: ProgressEvent) -> None:
            raise RuntimeError("display gone")

        report = await _controller(store, local_embeddings).run(
            _text_upload(), USER, progress_sink=sink
        )

        assert report.chunks_count > 0

    @pytest.mark.asyncio
    async def test_scanned_pdf_reports_recognition(
        self, store, local_embeddings, ocr_engine_factory, pdf_factory, dense_text
    ) -> None:
        engine = ocr_engine_factory(texts=[dense_text(300, 1), dense_text(300, 2)])
        sink = _Collector()
        upload = UploadedFile("scan.pdf", pdf_factory(["", ""]), "application/pdf")

        report = await _controller(store, local_embeddings, engine).run(
            upload, USER, progress_sink=sink
        )

        assert report.strategy == "recognition"
        assert engine.created == 1
        assert engine.released == 1
        recognizing = [e for e in sink.events if e.stage == IngestionStage.RECOGNIZING]
        assert [e.percent for e in recognizing] == [60, 80]
        assert sink.percents == sorted(sink.percents)

    @pytest.mark.asyncio
    async def test_dense_pdf_never_starts_ocr(
        self, store, local_embeddings, ocr_engine_factory, pdf_factory, dense_text
    ) -> None:
        engine = ocr_engine_factory(texts=["unused"])
        pages = [dense_text(600, i) for i in range(1, 4)]
        upload = UploadedFile("manual.pdf", pdf_factory(pages), "application/pdf")

        report = await _controller(store, local_embeddings, engine).run(upload, USER)

        assert report.strategy == "direct"
        assert engine.created == 0
        assert engine.released == 0


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    """Tests for failure handling and rollback."""

    @pytest.mark.asyncio
    async def test_failure_before_record_leaves_nothing(self, store, local_embeddings) -> None:
        upload = UploadedFile("drawing.dwg", b"binary", "application/acad")

        with pytest.raises(UnsupportedType):
            await _controller(store, local_embeddings).run(upload, USER)

        assert await store.list_documents(USER) == []

    @pytest.mark.asyncio
    async def test_failure_after_record_keeps_document_by_default(self, local_embeddings) -> None:
        narrow_store = InMemoryDocumentStore(dimension=3)
        controller = _controller(narrow_store, local_embeddings, rollback_on_failure=False)

        with pytest.raises(DimensionMismatch):
            await controller.run(_text_upload(), USER)

        documents = await narrow_store.list_documents(USER)
        assert len(documents) == 1
        assert await narrow_store.get_chunks(documents[0].id) == []

    @pytest.mark.asyncio
    async def test_rollback_removes_document(self, local_embeddings) -> None:
        narrow_store = InMemoryDocumentStore(dimension=3)
        controller = _controller(narrow_store, local_embeddings, rollback_on_failure=True)

        with pytest.raises(DimensionMismatch):
            await controller.run(_text_upload(), USER)

        assert await narrow_store.list_documents(USER) == []

    @pytest.mark.asyncio
    async def test_ocr_released_when_recognition_fails(
        self, store, local_embeddings, ocr_engine_factory, pdf_factory
    ) -> None:
        engine = ocr_engine_factory(error=RuntimeError("tesseract crashed"))
        upload = UploadedFile("scan.pdf", pdf_factory(["", ""]), "application/pdf")
        controller = _controller(store, local_embeddings, engine)

        with pytest.raises(NoReadableText):
            await controller.run(upload, USER)

        assert engine.created == 1
        assert engine.released == 1
        assert await store.list_documents(USER) == []


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, store, local_embeddings) -> None:
        event = asyncio.Event()
        event.set()

        with pytest.raises(Cancelled):
            await _controller(store, local_embeddings).run(
                _text_upload(), USER, cancel_event=event
            )

        assert await store.list_documents(USER) == []

    @pytest.mark.asyncio
    async def test_cancelled_during_embedding_rolls_back(self, store, local_embeddings) -> None:
        event = asyncio.Event()

        def sink(progress: ProgressEvent) -> None:
            if progress.stage == IngestionStage.EMBEDDING:
                event.set()

        controller = _controller(store, local_embeddings, rollback_on_failure=True)

        with pytest.raises(Cancelled):
            await controller.run(_text_upload(), USER, progress_sink=sink, cancel_event=event)

        assert await store.list_documents(USER) == []

    @pytest.mark.asyncio
    async def test_cancelled_during_ocr_releases_engine(
        self, store, local_embeddings, ocr_engine_factory, pdf_factory
    ) -> None:
        engine = ocr_engine_factory(texts=["first page text"])
        event = asyncio.Event()

        def sink(progress: ProgressEvent) -> None:
            if progress.stage == IngestionStage.RECOGNIZING:
                event.set()

        upload = UploadedFile("scan.pdf", pdf_factory(["", "", ""]), "application/pdf")

        with pytest.raises(Cancelled):
            await _controller(store, local_embeddings, engine).run(
                upload, USER, progress_sink=sink, cancel_event=event
            )

        assert engine.recognized == 1
        assert engine.released == 1
        assert await store.list_documents(USER) == []
