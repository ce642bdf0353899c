"""
Retrieval Index

Ranks a document's chunks against a query embedding by cosine similarity.
Scoring happens in-process over the chunks returned by the store, so the
ranking is identical for every store implementation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from uuid import UUID

from manualqa.models.schemas import ScoredChunk
from manualqa.repositories.base import DocumentStore
from manualqa.services.vectors import cosine_similarity

logger = logging.getLogger(__name__)


class RetrievalIndex:
    """
    Top-k nearest-neighbour search over one document's chunks.

    Ties keep chunk order (stable sort), so results are deterministic.

    Usage::

        index = RetrievalIndex(store)
        contents = await index.search(query_vector, document_id, k=5)
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def search_scored(
        self,
        query_embedding: Sequence[float],
        document_id: UUID,
        k: int = 5,
    ) -> list[ScoredChunk]:
        """
        Score every chunk of the document and keep the best ``k``.

        Raises:
            DimensionMismatch: If a stored embedding and the query differ
                in length.
        """
        if k < 1:
            return []

        chunks = await self._store.get_chunks(document_id)
        scored = [
            ScoredChunk(
                content=chunk.content,
                score=cosine_similarity(query_embedding, chunk.embedding),
                chunk_index=chunk.chunk_index,
            )
            for chunk in chunks
        ]
        # sorted(reverse=True) is stable: equal scores keep chunk order
        ranked = sorted(scored, key=lambda s: s.score, reverse=True)[:k]

        logger.debug(
            "Retrieved %d/%d chunks for document %s (top score=%.4f)",
            len(ranked),
            len(chunks),
            document_id,
            ranked[0].score if ranked else 0.0,
        )
        return ranked

    async def search(
        self,
        query_embedding: Sequence[float],
        document_id: UUID,
        k: int = 5,
    ) -> list[str]:
        """Contents of the ``k`` most similar chunks, best first."""
        return [hit.content for hit in await self.search_scored(query_embedding, document_id, k)]
