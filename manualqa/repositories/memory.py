"""
In-Memory Document Store

Process-local implementation of the document store. Used by the test
suite and for running the pipeline without PostgreSQL.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from manualqa.models.schemas import Document, NewChunk, StoredChunk
from manualqa.repositories.base import validate_embeddings


class InMemoryDocumentStore:
    """Dict-backed store with the same semantics as the SQL store."""

    def __init__(self, dimension: int = 1536) -> None:
        self._dimension = dimension
        self._documents: dict[uuid.UUID, Document] = {}
        self._chunks: dict[uuid.UUID, list[NewChunk]] = {}

    async def create_document(self, user_id: str, filename: str) -> Document:
        document = Document(user_id=user_id, filename=filename)
        self._documents[document.id] = document
        self._chunks[document.id] = []
        return document

    async def insert_chunks(self, chunks: Sequence[NewChunk]) -> None:
        validate_embeddings(chunks, self._dimension)
        for chunk in chunks:
            if chunk.document_id not in self._documents:
                raise KeyError(f"Unknown document {chunk.document_id}")
        for chunk in chunks:
            self._chunks[chunk.document_id].append(chunk)

    async def list_documents(self, user_id: str) -> list[Document]:
        owned = [d for d in self._documents.values() if d.user_id == user_id]
        return sorted(owned, key=lambda d: d.created_at, reverse=True)

    async def get_document(self, document_id: uuid.UUID) -> Document | None:
        return self._documents.get(document_id)

    async def get_document_owner(self, document_id: uuid.UUID) -> str | None:
        document = self._documents.get(document_id)
        return document.user_id if document is not None else None

    async def get_chunks(self, document_id: uuid.UUID) -> list[StoredChunk]:
        chunks = sorted(self._chunks.get(document_id, []), key=lambda c: c.chunk_index)
        return [
            StoredChunk(
                chunk_index=c.chunk_index,
                content=c.content,
                embedding=list(c.embedding),
            )
            for c in chunks
        ]

    async def delete_document(self, document_id: uuid.UUID) -> bool:
        if document_id not in self._documents:
            return False
        del self._documents[document_id]
        self._chunks.pop(document_id, None)
        return True
