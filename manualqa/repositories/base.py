"""
Document Store Contract

The pipeline treats persistence as an opaque store with the operations
below. All methods are awaited before the pipeline proceeds.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable
from uuid import UUID

from manualqa.core.errors import DimensionMismatch
from manualqa.models.schemas import Document, NewChunk, StoredChunk


@runtime_checkable
class DocumentStore(Protocol):
    """Minimal read/write contract used by ingestion, retrieval and deletion."""

    async def create_document(self, user_id: str, filename: str) -> Document: ...

    async def insert_chunks(self, chunks: Sequence[NewChunk]) -> None: ...

    async def list_documents(self, user_id: str) -> list[Document]: ...

    async def get_document(self, document_id: UUID) -> Document | None: ...

    async def get_document_owner(self, document_id: UUID) -> str | None: ...

    async def get_chunks(self, document_id: UUID) -> list[StoredChunk]: ...

    async def delete_document(self, document_id: UUID) -> bool: ...


def validate_embeddings(chunks: Sequence[NewChunk], dimension: int) -> None:
    """Reject any chunk whose embedding is not exactly ``dimension`` long."""
    for chunk in chunks:
        if len(chunk.embedding) != dimension:
            raise DimensionMismatch(
                f"Chunk {chunk.chunk_index} has {len(chunk.embedding)} "
                f"dimensions, expected {dimension}"
            )
