"""
Document Store Database Models

SQLAlchemy 2.0 ORM models for the document and chunk storage layer.
Chunk embeddings are stored in a pgvector column of fixed dimension.

Tables:
    documents: Uploaded manuals, owned by a single user.
    chunks:    Ordered word windows of a document with their embeddings.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from manualqa.core.config import settings
from manualqa.models.base import Base

EMBEDDING_DIMENSION: int = settings.EMBEDDING_DIMENSION


class DocumentRecord(Base):
    """
    Persistent storage for uploaded documents.

    Attributes:
        id: UUID primary key (generated Python-side).
        user_id: Identity of the uploading user (owner).
        filename: Display filename as uploaded.
        created_at: Registration timestamp (UTC).
        chunks: Related ChunkRecord instances (cascade delete).
    """

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # chunks are deleted with the document
    chunks: Mapped[list[ChunkRecord]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChunkRecord.chunk_index",
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord(id={self.id!s:.8}, filename='{self.filename}')>"


class ChunkRecord(Base):
    """
    Persistent storage for document chunks with vector embeddings.

    Attributes:
        id: UUID primary key.
        document_id: Foreign key to parent document (CASCADE delete).
        chunk_index: Zero-based position within the parent document.
        content: Chunk text (words joined by single spaces).
        embedding: Fixed-dimension vector.
        document: Back-reference to parent DocumentRecord.
    """

    __tablename__ = "chunks"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSION),
        nullable=False,
    )

    document: Mapped[DocumentRecord] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<ChunkRecord(id={self.id!s:.8}, "
            f"doc={self.document_id!s:.8}, idx={self.chunk_index})>"
        )
