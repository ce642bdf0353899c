"""
Pytest Configuration and Fixtures

Shared fixtures for the offline suite: PyMuPDF-built PDFs, a scripted OCR
engine, completion clients over ``httpx.MockTransport`` and an in-memory
store. Tests marked ``live`` need PostgreSQL and are deselected by default.
"""

import os

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Test environment defaults: MUST be before any manualqa imports.
#
# 1. Load .env first so that local database credentials are available.
# 2. setdefault fills in anything still missing (CI runners, fresh clones
#    without a .env file).
# ---------------------------------------------------------------------------
load_dotenv()  # .env → os.environ (no-op if file is missing)

_test_env = {
    "POSTGRES_USER": "manualqa",
    "POSTGRES_PASSWORD": "manualqa_password",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "manualqa_db",
    "COMPLETION_API_KEY": "mock",
    "EMBEDDING_PROVIDER": "local",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
import json  # noqa: E402
from collections.abc import Callable  # noqa: E402
from typing import Any  # noqa: E402

import fitz  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402

from manualqa.repositories.memory import InMemoryDocumentStore  # noqa: E402
from manualqa.services.completion import CompletionService  # noqa: E402
from manualqa.services.embeddings import EmbeddingService  # noqa: E402
from manualqa.services.recognition import RecognitionResult  # noqa: E402

DIMENSION = 1536

COMPRESSOR_MANUAL = (
    "Compressor maintenance. The compressor must be inspected every six months. "
    "Maximum discharge pressure is 350 psi. Check refrigerant levels and inspect "
    "the electrical connections. Replace the air filter every three months. "
    "The condenser coil should be cleaned annually with a soft brush. "
    "If the unit trips the high pressure switch, verify condenser airflow "
    "before resetting the breaker."
)


# ---------------------------------------------------------------------------
# PDFs
# ---------------------------------------------------------------------------


def build_pdf(pages: list[str], password: str | None = None) -> bytes:
    """One page per entry; empty strings give blank (image-like) pages."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_textbox(fitz.Rect(50, 50, 550, 800), text, fontsize=9)
    if password:
        data = doc.tobytes(
            encryption=fitz.PDF_ENCRYPT_AES_256,
            owner_pw=password + "-owner",
            user_pw=password,
        )
    else:
        data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def pdf_factory() -> Callable[..., bytes]:
    return build_pdf


@pytest.fixture
def dense_text() -> Callable[[int, int], str]:
    """Factory for ``n`` characters of readable filler for page ``i``."""

    def _make(length: int, page: int = 1) -> str:
        base = f"Page {page} service procedure: isolate power, check wiring, torque bolts. "
        return (base * (length // len(base) + 1))[:length]

    return _make


# ---------------------------------------------------------------------------
# OCR
# ---------------------------------------------------------------------------


class FakeRecognitionEngine:
    """Scripted engine recording its lifecycle calls."""

    def __init__(
        self,
        texts: list[str] | None = None,
        error: Exception | None = None,
        create_error: Exception | None = None,
    ) -> None:
        self.texts = texts or [""]
        self.error = error
        self.create_error = create_error
        self.created = 0
        self.released = 0
        self.recognized = 0

    async def create(self, language: str, options: Any) -> object:
        if self.create_error is not None:
            raise self.create_error
        self.created += 1
        return object()

    async def recognize(self, handle: object, image: Any) -> RecognitionResult:
        if self.error is not None:
            raise self.error
        text = self.texts[self.recognized % len(self.texts)]
        self.recognized += 1
        return RecognitionResult(text=text, confidence=91.0)

    async def release(self, handle: object) -> None:
        self.released += 1


@pytest.fixture
def ocr_engine_factory() -> type[FakeRecognitionEngine]:
    return FakeRecognitionEngine


# ---------------------------------------------------------------------------
# Completion service
# ---------------------------------------------------------------------------


def completion_reply(content: str | None) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class CompletionRecorder:
    """MockTransport handler that records request payloads."""

    def __init__(self, content: str | None = "ok", status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code
        self.payloads: list[dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "boom"})
        return httpx.Response(200, json=completion_reply(self.content))


@pytest.fixture
def completion_factory() -> Callable[..., tuple[CompletionService, CompletionRecorder]]:
    def _make(
        content: str | None = "ok",
        status_code: int = 200,
    ) -> tuple[CompletionService, CompletionRecorder]:
        recorder = CompletionRecorder(content, status_code)
        service = CompletionService(
            base_url="https://llm.test/v1",
            api_key="test-key",
            timeout=5.0,
            transport=httpx.MockTransport(recorder),
        )
        return service, recorder

    return _make


# ---------------------------------------------------------------------------
# Store and embeddings
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(dimension=DIMENSION)


@pytest.fixture
def local_embeddings() -> EmbeddingService:
    """Hash-embedding service, no completion calls."""
    return EmbeddingService(None, dimension=DIMENSION, provider="local", concurrency=4)
