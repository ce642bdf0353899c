"""
Documents API Router

HTTP endpoints for uploading technical manuals and asking questions
about them. The caller's identity is the opaque ``X-User-Id`` header.

Endpoints:
    POST   /                 Upload and ingest a manual (201).
    POST   /stream           Upload with NDJSON progress events.
    GET    /                 List the caller's manuals.
    DELETE /{id}             Delete a manual and its chunks (204).
    POST   /{id}/search      Scored chunk retrieval.
    POST   /{id}/ask         Grounded answer generation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import Final
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    Form,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
)
from fastapi.responses import JSONResponse, StreamingResponse

from manualqa.core.config import settings
from manualqa.core.errors import ManualQAError
from manualqa.models.schemas import Document, ProgressEvent, UploadedFile
from manualqa.schemas.documents import (
    AskResponse,
    DocumentResponse,
    ErrorResponse,
    ProgressLine,
    QueryRequest,
    SearchHit,
    SourceReference,
    UploadHints,
)
from manualqa.services.ingestion import IngestionReport
from manualqa.services.rag_pipeline import RAGPipeline
from manualqa.services.troubleshooting import analyze_upload, describe_error

logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_BY_CODE: Final[dict[str, int]] = {
    "unsupported_type": 415,
    "empty_file": 422,
    "no_readable_text": 422,
    "password_protected": 422,
    "corrupted": 422,
    "dimension_mismatch": 500,
    "network_error": 502,
    "generation_failed": 502,
    "unauthorized": 403,
    "document_not_found": 404,
    "cancelled": 499,
}


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def error_body(error: ManualQAError) -> ErrorResponse:
    description = describe_error(error)
    return ErrorResponse(error=error.code, message=description.message, tips=description.tips)


async def handle_pipeline_error(request: Request, exc: Exception) -> JSONResponse:
    """Render a ManualQAError as ``{error, message, tips}`` with its mapped status."""
    assert isinstance(exc, ManualQAError)
    status_code = STATUS_BY_CODE.get(exc.code, 500)
    logger.info(
        "%s %s -> %d (%s)", request.method, request.url.path, status_code, exc.code
    )
    return JSONResponse(status_code=status_code, content=error_body(exc).model_dump())


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_pipeline(request: Request) -> RAGPipeline:
    """FastAPI dependency: the pipeline built by the application lifespan."""
    return request.app.state.pipeline


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """FastAPI dependency: caller identity from the ``X-User-Id`` header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


async def _read_upload(file: UploadFile) -> UploadedFile:
    raw = await file.read()
    if len(raw) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File too large: {len(raw)} bytes (limit {settings.MAX_UPLOAD_BYTES})",
        )
    return UploadedFile(
        filename=file.filename or "unknown",
        data=raw,
        content_type=file.content_type,
    )


def _upload_hints(upload: UploadedFile) -> UploadHints:
    analysis = analyze_upload(upload.filename, upload.size)
    return UploadHints(
        size_formatted=analysis.size_formatted,
        likely_scanned=analysis.likely_scanned,
        recommendations=analysis.recommendations,
    )


def _document_response(document: Document, report: IngestionReport | None = None) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        filename=document.filename,
        created_at=document.created_at,
        chunks_count=report.chunks_count if report else None,
        strategy=report.strategy if report else None,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/",
    response_model=DocumentResponse,
    status_code=201,
    summary="Upload a technical manual",
    responses={
        413: {"description": "File exceeds MAX_UPLOAD_BYTES"},
        415: {"model": ErrorResponse, "description": "Not a PDF or TXT file"},
        422: {"model": ErrorResponse, "description": "No readable text, encrypted or corrupted"},
    },
)
async def upload_document(
    file: UploadFile,
    force_recognition: bool = Form(default=False),
    user_id: str = Depends(get_user_id),
    pipeline: RAGPipeline = Depends(get_pipeline),
) -> DocumentResponse:
    """
    Upload a PDF or TXT manual and ingest it synchronously.

    Scanned PDFs fall back to OCR automatically; ``force_recognition``
    skips the text layer entirely.
    """
    upload = await _read_upload(file)
    report = await pipeline.ingest(upload, user_id, force_recognition=force_recognition)
    return _document_response(report.document, report)


@router.post(
    "/stream",
    summary="Upload a technical manual with progress events",
    response_class=StreamingResponse,
)
async def upload_document_stream(
    file: UploadFile,
    force_recognition: bool = Form(default=False),
    user_id: str = Depends(get_user_id),
    pipeline: RAGPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """
    Upload and ingest, streaming newline-delimited JSON.

    Format (one object per line)::

        {"type": "analysis", "analysis": {"size_formatted": "...", ...}}
        {"type": "progress", "stage": 1, "percent": 10, "message": "..."}
        {"type": "complete", "document": {...}}
        {"type": "error", "error": {"error": "...", "message": "...", "tips": [...]}}

    A client disconnect cancels the ingestion run.
    """
    upload = await _read_upload(file)
    queue: asyncio.Queue[ProgressLine | None] = asyncio.Queue()
    cancel_event = asyncio.Event()
    queue.put_nowait(ProgressLine(type="analysis", analysis=_upload_hints(upload)))

    def sink(event: ProgressEvent) -> None:
        queue.put_nowait(
            ProgressLine(
                type="progress",
                stage=int(event.stage),
                percent=event.percent,
                message=event.message,
            )
        )

    async def run_ingestion() -> None:
        try:
            report = await pipeline.ingest(
                upload,
                user_id,
                progress_sink=sink,
                force_recognition=force_recognition,
                cancel_event=cancel_event,
            )
            queue.put_nowait(
                ProgressLine(type="complete", document=_document_response(report.document, report))
            )
        except ManualQAError as e:
            queue.put_nowait(ProgressLine(type="error", error=error_body(e)))
        except Exception:
            logger.exception("Streaming ingestion of %s failed unexpectedly", upload.filename)
            description = describe_error(ManualQAError())
            queue.put_nowait(
                ProgressLine(
                    type="error",
                    error=ErrorResponse(
                        error="internal_error",
                        message=description.message,
                        tips=description.tips,
                    ),
                )
            )
        finally:
            queue.put_nowait(None)

    async def line_generator() -> AsyncGenerator[str, None]:
        task = asyncio.create_task(run_ingestion())
        try:
            while (line := await queue.get()) is not None:
                yield line.model_dump_json(exclude_none=True) + "\n"
        finally:
            if not task.done():
                logger.info("Client disconnected, cancelling ingestion of %s", upload.filename)
                cancel_event.set()
            await task

    return StreamingResponse(
        line_generator(),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get(
    "/",
    response_model=list[DocumentResponse],
    summary="List the caller's manuals",
)
async def list_documents(
    user_id: str = Depends(get_user_id),
    pipeline: RAGPipeline = Depends(get_pipeline),
) -> list[DocumentResponse]:
    documents = await pipeline.list_documents(user_id)
    return [_document_response(d) for d in documents]


@router.delete(
    "/{document_id}",
    status_code=204,
    summary="Delete a manual",
    responses={
        403: {"model": ErrorResponse, "description": "Caller does not own the document"},
        404: {"model": ErrorResponse, "description": "Document not found"},
    },
)
async def delete_document(
    document_id: UUID,
    user_id: str = Depends(get_user_id),
    pipeline: RAGPipeline = Depends(get_pipeline),
) -> Response:
    await pipeline.delete_document(document_id, user_id)
    return Response(status_code=204)


@router.post(
    "/{document_id}/search",
    response_model=list[SearchHit],
    summary="Retrieve the most relevant chunks of a manual",
)
async def search_document(
    document_id: UUID,
    request: QueryRequest,
    user_id: str = Depends(get_user_id),
    pipeline: RAGPipeline = Depends(get_pipeline),
) -> list[SearchHit]:
    hits = await pipeline.search(document_id, user_id, request.query, request.k)
    return [SearchHit(content=h.content, score=h.score, chunk_index=h.chunk_index) for h in hits]


@router.post(
    "/{document_id}/ask",
    response_model=AskResponse,
    summary="Ask a question about a manual",
    responses={
        502: {"model": ErrorResponse, "description": "Completion service failed"},
    },
)
async def ask_document(
    document_id: UUID,
    request: QueryRequest,
    user_id: str = Depends(get_user_id),
    pipeline: RAGPipeline = Depends(get_pipeline),
) -> AskResponse:
    """
    Answer a question from the manual's content.

    Process:
        1. Embed the question.
        2. Retrieve the k most similar chunks of this manual.
        3. Generate an answer grounded in those chunks.
    """
    logger.info("Ask request: document=%s query='%s' k=%d", document_id, request.query[:50], request.k)
    answer = await pipeline.ask(document_id, user_id, request.query, request.k)
    return AskResponse(
        answer=answer.text,
        sources=[
            SourceReference(
                chunk_index=s.chunk_index,
                score=round(s.score, 4),
                preview=s.content[:100],
            )
            for s in answer.sources
        ],
        query=request.query,
    )
