"""
ManualQA - Application Entry Point

FastAPI application for uploading technical manuals and answering
questions from their content.

Start locally:
    uvicorn manualqa.main:app --host 0.0.0.0 --port 8001 --reload
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from manualqa.api.v1.documents import handle_pipeline_error
from manualqa.api.v1.documents import router as documents_router
from manualqa.core.config import settings
from manualqa.core.database import dispose_engine, get_engine, get_session_factory
from manualqa.core.errors import ManualQAError
from manualqa.core.logging import setup_logging
from manualqa.repositories.documents import SQLDocumentStore
from manualqa.services.rag_pipeline import RAGPipeline

logger = logging.getLogger(__name__)


def create_app(pipeline: RAGPipeline | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        pipeline: Pre-built pipeline (tests). When omitted, the lifespan
            handler connects to PostgreSQL and builds one over the SQL store.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
            1. Configure logging.
            2. Verify database connectivity and build the pipeline
               (skipped when a pipeline was injected).

        Shutdown:
            Dispose the database engine.
        """
        setup_logging()
        logger.info("Starting ManualQA...")

        if pipeline is not None:
            app.state.pipeline = pipeline
            yield
            return

        engine = get_engine()
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
        except Exception:
            logger.exception("Database connection failed")
            raise

        app.state.pipeline = RAGPipeline(SQLDocumentStore(get_session_factory()))
        logger.info(
            "Pipeline ready (embedding provider=%s, completion configured=%s)",
            settings.EMBEDDING_PROVIDER,
            settings.completion_configured,
        )

        yield

        await dispose_engine()
        logger.info("ManualQA shutdown complete")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Technical manual ingestion, retrieval and grounded question answering.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(ManualQAError, handle_pipeline_error)
    app.include_router(documents_router, prefix="/api/v1/documents", tags=["Documents"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check for load balancers and orchestrators."""
        return {
            "status": "ok",
            "service": "manualqa",
            "environment": os.getenv("ENVIRONMENT", "local"),
        }

    return app


app = create_app()
