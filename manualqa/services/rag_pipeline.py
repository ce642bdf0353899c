"""
RAG Pipeline Facade

Single entry point for the API layer. Composes the individual services
into the document lifecycle:

    Ingestion:  UploadedFile -> TextExtractor -> WordChunker ->
                EmbeddingService -> DocumentStore
    Query:      query -> EmbeddingService -> RetrievalIndex ->
                AnswerService -> CompletionService

Every per-document operation checks that the caller owns the document.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from manualqa.core.config import settings
from manualqa.core.errors import DocumentNotFound, Unauthorized
from manualqa.models.schemas import Document, ScoredChunk, UploadedFile
from manualqa.repositories.base import DocumentStore
from manualqa.services.answering import Answer, AnswerService
from manualqa.services.chunking import WordChunker
from manualqa.services.completion import CompletionService
from manualqa.services.embeddings import EmbeddingService
from manualqa.services.extraction import TextExtractor
from manualqa.services.ingestion import IngestionController, IngestionReport, ProgressSink
from manualqa.services.recognition import TesseractEngine
from manualqa.services.retrieval import RetrievalIndex

logger = logging.getLogger(__name__)


class RAGPipeline:
    """
    Orchestrates ingestion, retrieval and answering for one store.

    Collaborators default to configuration-driven instances; tests pass
    fakes (in-memory store, scripted completion service, fake OCR engine).

    Usage::

        pipeline = RAGPipeline(InMemoryDocumentStore())
        report = await pipeline.ingest(upload, "user-1")
        answer = await pipeline.ask(report.document.id, "user-1", "Max pressure?")
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        completion: CompletionService | None = None,
        embeddings: EmbeddingService | None = None,
        extractor: TextExtractor | None = None,
        chunker: WordChunker | None = None,
        rollback_on_failure: bool | None = None,
    ) -> None:
        self._store = store
        self._completion = completion or CompletionService()
        self._embeddings = embeddings or EmbeddingService(self._completion)
        self._extractor = extractor or TextExtractor(
            engine=TesseractEngine(tessdata_url=settings.TESSDATA_URL)
        )
        self._chunker = chunker or WordChunker(settings.CHUNK_SIZE, settings.CHUNK_OVERLAP)
        self._index = RetrievalIndex(store)
        self._answers = AnswerService(self._embeddings, self._index, self._completion)
        self._controller = IngestionController(
            store,
            self._extractor,
            self._chunker,
            self._embeddings,
            rollback_on_failure=rollback_on_failure,
        )

    @property
    def completion(self) -> CompletionService:
        return self._completion

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        upload: UploadedFile,
        user_id: str,
        progress_sink: ProgressSink | None = None,
        force_recognition: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> IngestionReport:
        """Run ``upload`` through the ingestion controller."""
        return await self._controller.run(
            upload,
            user_id,
            progress_sink=progress_sink,
            force_recognition=force_recognition,
            cancel_event=cancel_event,
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def list_documents(self, user_id: str) -> list[Document]:
        """The caller's documents, newest first."""
        return await self._store.list_documents(user_id)

    async def delete_document(self, document_id: UUID, user_id: str) -> None:
        """
        Delete a document and its chunks.

        Raises:
            DocumentNotFound: Unknown id.
            Unauthorized: ``user_id`` does not own the document; nothing
                is deleted.
        """
        await self._authorize(document_id, user_id)
        await self._store.delete_document(document_id)
        logger.info("Deleted document %s for user %s", document_id, user_id)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def search(
        self,
        document_id: UUID,
        user_id: str,
        query: str,
        k: int = 5,
    ) -> list[ScoredChunk]:
        """Scored top-``k`` chunks of one document for ``query``."""
        await self._authorize(document_id, user_id)
        query_embedding = await self._embeddings.embed(query)
        return await self._index.search_scored(query_embedding, document_id, k)

    async def ask(
        self,
        document_id: UUID,
        user_id: str,
        query: str,
        k: int = 5,
    ) -> Answer:
        """Grounded answer for ``query`` plus the chunks it used."""
        await self._authorize(document_id, user_id)
        return await self._answers.ask(query, document_id, k)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _authorize(self, document_id: UUID, user_id: str) -> None:
        owner = await self._store.get_document_owner(document_id)
        if owner is None:
            raise DocumentNotFound(f"Document {document_id} not found.")
        if owner != user_id:
            logger.warning("User %s denied access to document %s", user_id, document_id)
            raise Unauthorized()
