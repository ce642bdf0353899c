"""Models package: Pydantic schemas and SQLAlchemy ORM for the ManualQA pipeline."""

from manualqa.models.orm import EMBEDDING_DIMENSION, ChunkRecord, DocumentRecord
from manualqa.models.schemas import (
    Document,
    IngestionStage,
    NewChunk,
    ProgressEvent,
    ScoredChunk,
    StoredChunk,
    UploadedFile,
)

__all__ = [
    # Pydantic schemas (pipeline)
    "Document",
    "IngestionStage",
    "NewChunk",
    "ProgressEvent",
    "ScoredChunk",
    "StoredChunk",
    "UploadedFile",
    # SQLAlchemy ORM (persistence layer)
    "ChunkRecord",
    "DocumentRecord",
    "EMBEDDING_DIMENSION",
]
