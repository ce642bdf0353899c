"""
Pipeline Schemas

Pydantic models for the data flowing through the ingestion and
retrieval pipeline: documents, chunks, uploads and progress events.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import IntEnum
from pathlib import Path
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class Document(BaseModel):
    """
    A registered upload.

    Created once extraction succeeded and the record is durably stored.
    Immutable afterwards; only deletion by its owner is allowed.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(min_length=1, description="Owning user identity")
    filename: str = Field(description="Display filename as uploaded")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(from_attributes=True, frozen=True)


class NewChunk(BaseModel):
    """Chunk payload handed to the store for insertion."""

    document_id: UUID
    chunk_index: int = Field(ge=0, description="Position in document (0-based)")
    content: str = Field(min_length=1)
    embedding: list[float]


class StoredChunk(BaseModel):
    """Chunk as read back from the store for similarity scoring."""

    chunk_index: int = Field(ge=0)
    content: str
    embedding: list[float]


class ScoredChunk(BaseModel):
    """A retrieved chunk with its cosine similarity to the query."""

    content: str
    score: float
    chunk_index: int


class IngestionStage(IntEnum):
    """Ordinal stages reported to progress sinks."""

    STARTED = 0
    EXTRACTING = 1
    RECOGNIZING = 2
    STRUCTURING = 3
    EMBEDDING = 4
    PERSISTING = 5
    COMPLETE = 6


class ProgressEvent(BaseModel):
    """Transient progress notification emitted during one ingestion run."""

    stage: IngestionStage
    percent: int = Field(ge=0, le=100)
    message: str

    model_config = ConfigDict(frozen=True)


@dataclass(frozen=True)
class UploadedFile:
    """
    Raw upload handed to the pipeline.

    Attributes:
        filename: Original filename with extension.
        data: File bytes.
        content_type: MIME type reported by the client, if any.
    """

    filename: str
    data: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def suffix(self) -> str:
        return Path(self.filename).suffix.lower()
