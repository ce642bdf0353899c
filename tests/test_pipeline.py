"""
RAG Pipeline Tests

End-to-end flows through the facade: upload, list, search, ask and
delete, with ownership checks. Runs fully offline.
"""

from __future__ import annotations

import uuid

import pytest

from manualqa.core.errors import DocumentNotFound, NoReadableText, Unauthorized
from manualqa.models.schemas import UploadedFile
from manualqa.services.chunking import WordChunker
from manualqa.services.extraction import TextExtractor
from manualqa.services.rag_pipeline import RAGPipeline

OWNER = "user-a"
INTRUDER = "user-b"
COMPRESSOR = "The compressor operates at 45 PSI. Replace filter every 3 months."


@pytest.fixture
def pipeline_factory(store, local_embeddings, completion_factory):
    def _make(engine=None, content: str | None = "The compressor operates at 45 PSI."):
        completion, recorder = completion_factory(content)
        pipeline = RAGPipeline(
            store,
            completion=completion,
            embeddings=local_embeddings,
            extractor=TextExtractor(engine=engine, min_chars_per_page=100, min_total_chars=200),
            chunker=WordChunker(300, 50),
        )
        return pipeline, recorder

    return _make


async def _upload_compressor(pipeline: RAGPipeline):
    upload = UploadedFile("compressor.txt", COMPRESSOR.encode(), "text/plain")
    return await pipeline.ingest(upload, OWNER)


class TestCompressorScenario:
    """Single-chunk manual answered from its only chunk."""

    @pytest.mark.asyncio
    async def test_ingest_creates_one_chunk(self, pipeline_factory, store) -> None:
        pipeline, _ = pipeline_factory()

        report = await _upload_compressor(pipeline)

        assert report.chunks_count == 1
        chunks = await store.get_chunks(report.document.id)
        assert chunks[0].content == COMPRESSOR

    @pytest.mark.asyncio
    async def test_search_returns_the_chunk(self, pipeline_factory) -> None:
        pipeline, _ = pipeline_factory()
        report = await _upload_compressor(pipeline)

        hits = await pipeline.search(
            report.document.id, OWNER, "What is the compressor pressure?", k=5
        )

        assert [h.content for h in hits] == [COMPRESSOR]

    @pytest.mark.asyncio
    async def test_ask_grounds_answer_in_chunk(self, pipeline_factory) -> None:
        pipeline, recorder = pipeline_factory()
        report = await _upload_compressor(pipeline)

        answer = await pipeline.ask(report.document.id, OWNER, "What is the compressor pressure?")

        assert answer.text == "The compressor operates at 45 PSI."
        assert COMPRESSOR in recorder.payloads[-1]["messages"][0]["content"]
        assert answer.sources[0].chunk_index == 0

    @pytest.mark.asyncio
    async def test_empty_completion_gives_apology(self, pipeline_factory) -> None:
        pipeline, _ = pipeline_factory(content=None)
        report = await _upload_compressor(pipeline)

        answer = await pipeline.ask(report.document.id, OWNER, "Pressure?")

        assert answer.text == "Sorry, I couldn't generate a response."


class TestPdfScenarios:
    """Tier selection seen from the facade."""

    @pytest.mark.asyncio
    async def test_text_pdf_skips_ocr(
        self, pipeline_factory, ocr_engine_factory, pdf_factory, dense_text
    ) -> None:
        engine = ocr_engine_factory(texts=["never used"])
        pipeline, _ = pipeline_factory(engine)
        pages = [dense_text(600, i) for i in range(1, 6)]

        report = await pipeline.ingest(
            UploadedFile("manual.pdf", pdf_factory(pages), "application/pdf"), OWNER
        )

        assert report.strategy == "direct"
        assert engine.created == 0

    @pytest.mark.asyncio
    async def test_sparse_pdf_with_blank_ocr_is_rejected(
        self, pipeline_factory, ocr_engine_factory, pdf_factory, store
    ) -> None:
        engine = ocr_engine_factory(texts=[""])
        pipeline, _ = pipeline_factory(engine)
        pages = ["Cover page", "Rev B", "", "", "Index"]

        with pytest.raises(NoReadableText):
            await pipeline.ingest(
                UploadedFile("scan.pdf", pdf_factory(pages), "application/pdf"), OWNER
            )

        assert engine.released == 1
        assert await store.list_documents(OWNER) == []


class TestOwnership:
    """Per-document operations check the caller."""

    @pytest.mark.asyncio
    async def test_list_only_own_documents(self, pipeline_factory) -> None:
        pipeline, _ = pipeline_factory()
        report = await _upload_compressor(pipeline)

        assert [d.id for d in await pipeline.list_documents(OWNER)] == [report.document.id]
        assert await pipeline.list_documents(INTRUDER) == []

    @pytest.mark.asyncio
    async def test_unauthorized_delete_keeps_data(self, pipeline_factory, store) -> None:
        pipeline, _ = pipeline_factory()
        report = await _upload_compressor(pipeline)

        with pytest.raises(Unauthorized):
            await pipeline.delete_document(report.document.id, INTRUDER)

        assert await store.get_document(report.document.id) is not None
        assert len(await store.get_chunks(report.document.id)) == 1

    @pytest.mark.asyncio
    async def test_owner_delete_removes_chunks(self, pipeline_factory, store) -> None:
        pipeline, _ = pipeline_factory()
        report = await _upload_compressor(pipeline)

        await pipeline.delete_document(report.document.id, OWNER)

        assert await store.get_document(report.document.id) is None
        assert await store.get_chunks(report.document.id) == []

    @pytest.mark.asyncio
    async def test_unknown_document(self, pipeline_factory) -> None:
        pipeline, _ = pipeline_factory()

        with pytest.raises(DocumentNotFound):
            await pipeline.delete_document(uuid.uuid4(), OWNER)

    @pytest.mark.asyncio
    async def test_foreign_ask_is_rejected_before_generation(self, pipeline_factory) -> None:
        pipeline, recorder = pipeline_factory()
        report = await _upload_compressor(pipeline)

        with pytest.raises(Unauthorized):
            await pipeline.ask(report.document.id, INTRUDER, "Pressure?")

        assert recorder.payloads == []
