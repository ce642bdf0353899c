"""
Answer Service

Grounded answer generation: embed the question, retrieve the most
similar chunks of one manual, and ask the completion service to answer
from that context only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Final
from uuid import UUID

from manualqa.core.config import settings
from manualqa.models.schemas import ScoredChunk
from manualqa.services.completion import ChatMessage, CompletionRequest, CompletionService
from manualqa.services.embeddings import EmbeddingService
from manualqa.services.retrieval import RetrievalIndex

logger = logging.getLogger(__name__)

# System prompt enforcing context-grounded responses
SYSTEM_PROMPT: Final[str] = """You are an expert technical assistant. Answer the user's question using ONLY the context from their technical manual below.

Rules:
1. Base your answer strictly on the provided context.
2. If the context does not contain enough information to answer, say so clearly.
3. Never invent specifications, part numbers or procedures.
4. Be concise and precise.

Context from the manual:
{context}
"""

NO_CONTEXT: Final[str] = "No relevant content was found in the manual."
NO_RESPONSE: Final[str] = "Sorry, I couldn't generate a response."


@dataclass
class Answer:
    """
    Generated answer with the chunks it was grounded on.

    Attributes:
        text: Answer text (or the canned apology).
        sources: Retrieved chunks, best first.
    """

    text: str
    sources: list[ScoredChunk] = field(default_factory=list)


class AnswerService:
    """
    Retrieval-augmented answering over a single document.

    Completion failures propagate as GenerationFailed; they are not
    retried and no fallback answer is fabricated.

    Usage::

        service = AnswerService(embeddings, RetrievalIndex(store), completion)
        text = await service.answer("What is the compressor pressure?", doc_id)
    """

    def __init__(
        self,
        embeddings: EmbeddingService,
        index: RetrievalIndex,
        completion: CompletionService,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        top_p: float | None = None,
    ) -> None:
        self._embeddings = embeddings
        self._index = index
        self._completion = completion
        self._model = model or settings.ANSWER_MODEL
        self._temperature = settings.ANSWER_TEMPERATURE if temperature is None else temperature
        self._max_tokens = max_tokens or settings.ANSWER_MAX_TOKENS
        self._top_p = settings.ANSWER_TOP_P if top_p is None else top_p

    async def answer(self, query: str, document_id: UUID, k: int = 5) -> str:
        """Answer ``query`` from the ``k`` most relevant chunks of the document."""
        return (await self.ask(query, document_id, k)).text

    async def ask(self, query: str, document_id: UUID, k: int = 5) -> Answer:
        """
        Answer ``query`` and report the sources used.

        Raises:
            GenerationFailed: If the completion call fails.
            DimensionMismatch: If stored embeddings do not match the query.
        """
        query_embedding = await self._embeddings.embed(query)
        sources = await self._index.search_scored(query_embedding, document_id, k)

        request = self.build_request(query, [s.content for s in sources])
        content = await self._completion.complete(request)

        logger.info(
            "Answered query '%s' for document %s (%d sources)",
            query[:50],
            document_id,
            len(sources),
        )
        return Answer(text=content or NO_RESPONSE, sources=sources)

    def build_request(self, query: str, context_chunks: list[str]) -> CompletionRequest:
        """Build the grounded completion request for ``query``."""
        context = "\n\n".join(context_chunks) if context_chunks else NO_CONTEXT
        return CompletionRequest(
            messages=(
                ChatMessage("system", SYSTEM_PROMPT.format(context=context)),
                ChatMessage("user", query),
            ),
            model=self._model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            top_p=self._top_p,
        )
