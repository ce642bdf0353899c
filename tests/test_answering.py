"""
Answer Service Unit Tests

Verifies prompt construction, the canned apology and error propagation
with a MockTransport-backed completion service.
"""

from __future__ import annotations

import pytest

from manualqa.core.errors import GenerationFailed
from manualqa.models.schemas import NewChunk
from manualqa.services.answering import NO_CONTEXT, NO_RESPONSE, AnswerService
from manualqa.services.retrieval import RetrievalIndex

COMPRESSOR = "The compressor operates at 45 PSI. Replace filter every 3 months."


async def _seed_single_chunk(store, embeddings, content: str = COMPRESSOR):
    document = await store.create_document("user-a", "manual.txt")
    await store.insert_chunks(
        [
            NewChunk(
                document_id=document.id,
                chunk_index=0,
                content=content,
                embedding=await embeddings.embed(content),
            )
        ]
    )
    return document


def _service(store, embeddings, completion) -> AnswerService:
    return AnswerService(
        embeddings,
        RetrievalIndex(store),
        completion,
        model="llama-3.1-8b-instant",
        temperature=0.3,
        max_tokens=1000,
        top_p=0.9,
    )


class TestAnswer:
    """Tests for AnswerService.answer / ask."""

    @pytest.mark.asyncio
    async def test_returns_completion_text(
        self, store, local_embeddings, completion_factory
    ) -> None:
        completion, _ = completion_factory("It operates at 45 PSI.")
        document = await _seed_single_chunk(store, local_embeddings)

        answer = await _service(store, local_embeddings, completion).answer(
            "What is the compressor pressure?", document.id
        )

        assert answer == "It operates at 45 PSI."

    @pytest.mark.asyncio
    async def test_prompt_contains_context_and_parameters(
        self, store, local_embeddings, completion_factory
    ) -> None:
        completion, recorder = completion_factory("ok")
        document = await _seed_single_chunk(store, local_embeddings)

        await _service(store, local_embeddings, completion).answer(
            "What is the compressor pressure?", document.id
        )

        payload = recorder.payloads[0]
        system, user = payload["messages"]
        assert system["role"] == "system"
        assert COMPRESSOR in system["content"]
        assert "ONLY" in system["content"]
        assert user == {"role": "user", "content": "What is the compressor pressure?"}
        assert payload["model"] == "llama-3.1-8b-instant"
        assert payload["temperature"] == 0.3
        assert payload["max_tokens"] == 1000
        assert payload["top_p"] == 0.9

    @pytest.mark.asyncio
    async def test_empty_reply_returns_apology(
        self, store, local_embeddings, completion_factory
    ) -> None:
        completion, _ = completion_factory(None)
        document = await _seed_single_chunk(store, local_embeddings)

        answer = await _service(store, local_embeddings, completion).answer("Q?", document.id)

        assert answer == NO_RESPONSE == "Sorry, I couldn't generate a response."

    @pytest.mark.asyncio
    async def test_completion_failure_propagates(
        self, store, local_embeddings, completion_factory
    ) -> None:
        completion, recorder = completion_factory(status_code=500)
        document = await _seed_single_chunk(store, local_embeddings)

        with pytest.raises(GenerationFailed):
            await _service(store, local_embeddings, completion).answer("Q?", document.id)

        assert len(recorder.payloads) == 1  # not retried

    @pytest.mark.asyncio
    async def test_ask_reports_sources(
        self, store, local_embeddings, completion_factory
    ) -> None:
        completion, _ = completion_factory("45 PSI")
        document = await _seed_single_chunk(store, local_embeddings)

        result = await _service(store, local_embeddings, completion).ask("Pressure?", document.id)

        assert result.text == "45 PSI"
        assert [s.content for s in result.sources] == [COMPRESSOR]


class TestBuildRequest:
    """Tests for prompt assembly."""

    def test_joins_chunks_with_blank_lines(self, store, local_embeddings, completion_factory) -> None:
        completion, _ = completion_factory()
        service = _service(store, local_embeddings, completion)

        request = service.build_request("q", ["first", "second"])

        assert "first\n\nsecond" in request.messages[0].content

    def test_no_context_placeholder(self, store, local_embeddings, completion_factory) -> None:
        completion, _ = completion_factory()
        service = _service(store, local_embeddings, completion)

        request = service.build_request("q", [])

        assert NO_CONTEXT in request.messages[0].content
