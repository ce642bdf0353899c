"""
Document API Schemas

Pydantic models for the /api/v1/documents request/response cycle.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class DocumentResponse(BaseModel):
    """A stored document as returned to its owner."""

    id: UUID = Field(description="Document identifier")
    filename: str = Field(description="Original filename")
    created_at: datetime = Field(description="Upload time (UTC)")
    chunks_count: int | None = Field(
        default=None,
        description="Number of chunks created (only set right after upload)",
    )
    strategy: str | None = Field(
        default=None,
        description="Extraction tier that produced the text: plain, direct, positional, recognition",
    )


class QueryRequest(BaseModel):
    """Request body for search and ask."""

    query: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Natural language question about the manual",
    )
    k: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Number of chunks to retrieve",
    )


class SearchHit(BaseModel):
    """Single retrieved chunk."""

    content: str = Field(description="Chunk text content")
    score: float = Field(description="Cosine similarity score (higher = more relevant)")
    chunk_index: int = Field(description="Position within the document (0-based)")


class SourceReference(BaseModel):
    """Reference to a chunk used to ground an answer."""

    chunk_index: int = Field(description="Chunk position within document")
    score: float = Field(description="Relevance score (higher = more relevant)")
    preview: str = Field(description="First 100 chars of chunk content")


class AskResponse(BaseModel):
    """Answer generated from the manual."""

    answer: str = Field(description="Generated answer text")
    sources: list[SourceReference] = Field(
        default_factory=list,
        description="Chunks used to generate the answer, best first",
    )
    query: str = Field(description="Original query for reference")


class ErrorResponse(BaseModel):
    """Body of every pipeline error response."""

    error: str = Field(description="Stable error code, e.g. 'no_readable_text'")
    message: str = Field(description="Compact user-facing message")
    tips: list[str] = Field(default_factory=list, description="Remediation steps")


class UploadHints(BaseModel):
    """Pre-flight hints derived from the upload's name and size."""

    size_formatted: str = Field(description="Human-readable file size")
    likely_scanned: bool = Field(description="File name suggests a scanned document")
    recommendations: list[str] = Field(default_factory=list)


class ProgressLine(BaseModel):
    """One NDJSON line of the streaming upload endpoint."""

    type: Literal["analysis", "progress", "complete", "error"]
    stage: int | None = None
    percent: int | None = None
    message: str | None = None
    document: DocumentResponse | None = None
    error: ErrorResponse | None = None
    analysis: UploadHints | None = None
