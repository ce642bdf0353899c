"""
SQL Document Store

PostgreSQL-backed implementation of the document store using async
SQLAlchemy and pgvector. Each operation runs in its own session taken
from the shared session factory.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from manualqa.models.orm import EMBEDDING_DIMENSION, ChunkRecord, DocumentRecord
from manualqa.models.schemas import Document, NewChunk, StoredChunk
from manualqa.repositories.base import validate_embeddings

logger = logging.getLogger(__name__)


class SQLDocumentStore:
    """
    Document store over the ``documents`` and ``chunks`` tables.

    Key guarantees:
        - ``insert_chunks``: all chunks of a batch are committed in one
          transaction, or none are.
        - ``delete_document``: chunks go with the document (FK cascade).
        - ``get_chunks``: ordered by ``chunk_index``.

    Usage::

        store = SQLDocumentStore(get_session_factory())
        doc = await store.create_document("user-1", "manual.pdf")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dimension: int = EMBEDDING_DIMENSION,
    ) -> None:
        self._session_factory = session_factory
        self._dimension = dimension

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def create_document(self, user_id: str, filename: str) -> Document:
        record = DocumentRecord(user_id=user_id, filename=filename)
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)

        logger.info("Registered document '%s' (id=%s)", filename, record.id)
        return Document.model_validate(record)

    async def insert_chunks(self, chunks: Sequence[NewChunk]) -> None:
        """Persist a batch of chunks atomically."""
        if not chunks:
            return
        validate_embeddings(chunks, self._dimension)

        records = [
            ChunkRecord(
                document_id=chunk.document_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                embedding=chunk.embedding,
            )
            for chunk in chunks
        ]
        async with self._session_factory() as session:
            session.add_all(records)
            await session.commit()

        logger.info(
            "Inserted %d chunks for document %s",
            len(records),
            chunks[0].document_id,
        )

    async def delete_document(self, document_id: uuid.UUID) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(DocumentRecord).where(DocumentRecord.id == document_id)
            )
            await session.commit()

        deleted = bool(result.rowcount)
        if deleted:
            logger.info("Deleted document %s", document_id)
        return deleted

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def list_documents(self, user_id: str) -> list[Document]:
        """List a user's documents, newest first."""
        stmt = (
            select(DocumentRecord)
            .where(DocumentRecord.user_id == user_id)
            .order_by(DocumentRecord.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()
        return [Document.model_validate(r) for r in records]

    async def get_document(self, document_id: uuid.UUID) -> Document | None:
        async with self._session_factory() as session:
            record = await session.get(DocumentRecord, document_id)
        return Document.model_validate(record) if record is not None else None

    async def get_document_owner(self, document_id: uuid.UUID) -> str | None:
        stmt = select(DocumentRecord.user_id).where(DocumentRecord.id == document_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_chunks(self, document_id: uuid.UUID) -> list[StoredChunk]:
        """Get all chunks for a document, ordered by index."""
        stmt = (
            select(ChunkRecord.chunk_index, ChunkRecord.content, ChunkRecord.embedding)
            .where(ChunkRecord.document_id == document_id)
            .order_by(ChunkRecord.chunk_index)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        # pgvector returns numpy arrays → native floats
        return [
            StoredChunk(
                chunk_index=row.chunk_index,
                content=row.content,
                embedding=[float(x) for x in row.embedding],
            )
            for row in rows
        ]
