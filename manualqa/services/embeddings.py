"""
Embedding Service

Produces fixed-dimension vectors for chunks and queries.

Two paths:
    - Completion path: asks the completion service for a JSON array of
      exactly D floats. Used only when EMBEDDING_PROVIDER=completion and
      an API key is configured.
    - Hash path: a deterministic, offline feature-hashing embedding.
      Always available, pure function of its input, and the fallback
      for every failure of the completion path.

Both paths return L2-comparable vectors of the same dimension, so
chunks and queries stay comparable whichever path produced them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from collections import Counter
from collections.abc import Callable, Sequence

from manualqa.core.config import settings
from manualqa.core.errors import Cancelled, GenerationFailed
from manualqa.services.completion import ChatMessage, CompletionRequest, CompletionService
from manualqa.services.vectors import l2_normalize

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION: int = 1536
HASH_BLOCK_SIZE: int = 64
HASH_GROUPS: int = 4
MIN_WORD_LENGTH: int = 3

EMBEDDING_SYSTEM_PROMPT = (
    "You are an embedding generator. Represent the meaning of the user's "
    "text as a JSON array of exactly {dimension} floating point numbers, "
    "each between -1 and 1. Respond with the JSON array only, no prose."
)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

ProgressCallback = Callable[[int, int], None]


# ---------------------------------------------------------------------------
# Deterministic hash embedding
# ---------------------------------------------------------------------------


def _preprocess(text: str) -> str:
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def _ngrams(tokens: list[str], n: int) -> list[str]:
    return [" ".join(tokens[i : i + n]) for i in range(len(tokens) - n + 1)]


def rolling_hash(text: str) -> int:
    """32-bit multiply-and-add rolling hash (base 31)."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def _expand_hash(h: int) -> list[float]:
    return [((h * (i + 1)) % 256) - 127.5 for i in range(HASH_BLOCK_SIZE)]


def hash_embedding(text: str, dimension: int = DEFAULT_DIMENSION) -> list[float]:
    """
    Deterministic embedding of ``text``.

    Layout:
        [0, 256)   four 64-value blocks expanded from rolling hashes of the
                   words, bigrams, trigrams and character stream.
        [256, D)   tanh(frequency / word count) per distinct word, in order
                   of first appearance; unused slots stay zero.

    The vector is L2-normalized. No randomness, no external state.
    """
    if dimension < HASH_BLOCK_SIZE * HASH_GROUPS:
        raise ValueError(
            f"dimension must be at least {HASH_BLOCK_SIZE * HASH_GROUPS}, got {dimension}"
        )

    processed = _preprocess(text)
    tokens = processed.split(" ")
    words = [w for w in tokens if len(w) >= MIN_WORD_LENGTH]

    groups = (
        " ".join(words),
        " ".join(_ngrams(tokens, 2)),
        " ".join(_ngrams(tokens, 3)),
        _WHITESPACE.sub("", processed),
    )

    vector = [0.0] * dimension
    position = 0
    for group in groups:
        for value in _expand_hash(rolling_hash(group)):
            vector[position] = value
            position += 1

    # Counter keeps first-appearance order
    frequencies = Counter(words)
    total = len(words)
    for offset, count in enumerate(frequencies.values()):
        slot = position + offset
        if slot >= dimension:
            break
        vector[slot] = math.tanh(count / total)

    return l2_normalize(vector)


def parse_embedding_reply(reply: object, dimension: int) -> list[float] | None:
    """
    Extract a vector from a completion reply.

    Accepts the array wrapped in prose or code fences by taking the
    outermost ``[...]`` span. Returns None on any defect.
    """
    if not isinstance(reply, str) or not reply:
        return None

    start = reply.find("[")
    end = reply.rfind("]")
    if start == -1 or end <= start:
        return None

    try:
        values = json.loads(reply[start : end + 1])
    except json.JSONDecodeError:
        return None

    if not isinstance(values, list) or len(values) != dimension:
        return None
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if not math.isfinite(value):
            return None
    return [float(v) for v in values]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class EmbeddingService:
    """
    Embedding generator with a guaranteed fallback.

    ``embed`` never raises for service problems: a failed or malformed
    completion reply is logged and replaced by ``hash_embedding``.

    Usage::

        service = EmbeddingService()
        vector = await service.embed("Replace filter every 3 months.")
        assert len(vector) == service.dimension
    """

    def __init__(
        self,
        completion: CompletionService | None = None,
        *,
        dimension: int | None = None,
        provider: str | None = None,
        model: str | None = None,
        concurrency: int | None = None,
    ) -> None:
        self._completion = completion
        self._dimension = dimension or settings.EMBEDDING_DIMENSION
        self._provider = provider or settings.EMBEDDING_PROVIDER
        self._model = model or settings.EMBEDDING_MODEL
        self._concurrency = max(1, concurrency or settings.EMBEDDING_CONCURRENCY)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def uses_completion(self) -> bool:
        return (
            self._provider == "completion"
            and self._completion is not None
            and self._completion.is_configured
        )

    async def embed(self, text: str) -> list[float]:
        """Embed one text. Always returns exactly ``dimension`` values."""
        if self.uses_completion:
            vector = await self._embed_with_completion(text)
            if vector is not None:
                return vector
        return hash_embedding(text, self._dimension)

    async def embed_many(
        self,
        texts: Sequence[str],
        on_done: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[list[float]]:
        """
        Embed many texts concurrently, preserving input order.

        At most ``concurrency`` embeddings run at once. ``on_done`` receives
        ``(completed, total)`` after each completion, so counts only grow
        regardless of which task finished.

        Raises:
            Cancelled: If ``cancel_event`` is set before all texts are done.
        """
        total = len(texts)
        if total == 0:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)
        results: list[list[float] | None] = [None] * total

        async def _worker(index: int, text: str) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    raise Cancelled()
                results[index] = await self.embed(text)

        tasks = [asyncio.create_task(_worker(i, t)) for i, t in enumerate(texts)]
        completed = 0
        try:
            for finished in asyncio.as_completed(tasks):
                await finished
                completed += 1
                if cancel_event is not None and cancel_event.is_set() and completed < total:
                    raise Cancelled()
                if on_done is not None:
                    on_done(completed, total)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return [r for r in results if r is not None]

    async def _embed_with_completion(self, text: str) -> list[float] | None:
        assert self._completion is not None
        request = CompletionRequest(
            messages=(
                ChatMessage(
                    "system",
                    EMBEDDING_SYSTEM_PROMPT.format(dimension=self._dimension),
                ),
                ChatMessage("user", text),
            ),
            model=self._model,
            temperature=0.0,
            max_tokens=self._dimension * 8,
        )

        try:
            reply = await self._completion.complete(request)
        except GenerationFailed as e:
            logger.warning("Completion embedding failed, using hash embedding: %s", e)
            return None

        vector = parse_embedding_reply(reply, self._dimension)
        if vector is None:
            logger.warning(
                "Completion embedding reply unusable (expected %d values), "
                "using hash embedding",
                self._dimension,
            )
        return vector
