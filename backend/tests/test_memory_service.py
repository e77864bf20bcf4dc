from __future__ import annotations

import asyncio

import pytest

from assistant_memory.memory.embedder import EmbeddingProviderError, FallbackEmbeddingProvider
from assistant_memory.memory.ranking import RetrievalRanker, cosine_similarity
from assistant_memory.memory.types import ChunkProvenance
from assistant_memory.services.memory_service import MemoryService

DENTIST_FRIDAY = "I have a dentist appointment Friday"
FAVORITE_COLOR = "My favorite color is blue"
DENTIST_MONDAY = "Dentist appointment moved to Monday"
DENTIST_QUERY = "When is my dentist appointment?"


class FailingEmbedder(FallbackEmbeddingProvider):
    """Embedder that fails after a configurable number of successful calls."""

    def __init__(self, succeed_first: int = 0) -> None:
        super().__init__()
        self._remaining = succeed_first

    async def embed(self, text: str) -> list[float]:
        if self._remaining <= 0:
            raise EmbeddingProviderError("forced failure for test")
        self._remaining -= 1
        return await super().embed(text)


class BlockingEmbedder(FallbackEmbeddingProvider):
    """Embedder whose calls hang until released, to exercise cancellation."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def embed(self, text: str) -> list[float]:
        self.started.set()
        await self.release.wait()
        return await super().embed(text)


def _service(store, clock, embedder=None, **kwargs) -> MemoryService:
    return MemoryService(
        store=store,
        embedder=embedder or FallbackEmbeddingProvider(),
        ranker=RetrievalRanker(store, clock=clock),
        **kwargs,
    )


@pytest.mark.anyio
async def test_dentist_chunks_outrank_unrelated_memory(chunk_store, clock) -> None:
    service = _service(chunk_store, clock)
    for idx, text in enumerate([DENTIST_FRIDAY, FAVORITE_COLOR, DENTIST_MONDAY]):
        await service.persist_memory(
            user_id="U", session_id="s1", message_id=f"m{idx}", content=text
        )

    results = await service.retrieve_context(user_id="U", query=DENTIST_QUERY)

    assert len(results) == 3
    assert {item.chunk.text_chunk for item in results[:2]} == {DENTIST_FRIDAY, DENTIST_MONDAY}
    assert results[2].chunk.text_chunk == FAVORITE_COLOR

    embedder = FallbackEmbeddingProvider()
    query_vector = embedder.embed_sync(DENTIST_QUERY)
    for item in results:
        expected = cosine_similarity(embedder.embed_sync(item.chunk.text_chunk), query_vector)
        assert item.similarity_score == pytest.approx(expected)
        assert item.recency_score == pytest.approx(1.0)
        assert item.final_score == pytest.approx(expected * 0.8 + 0.2)


@pytest.mark.anyio
async def test_persist_memory_splits_long_messages(chunk_store, clock) -> None:
    service = _service(chunk_store, clock, chunk_size=10)
    provenance = ChunkProvenance(role="user", source="chat")

    stored = await service.persist_memory(
        user_id="u1",
        session_id="s1",
        message_id="m1",
        content="abcdefghij   klmnopqrst uvw",
        provenance=provenance,
    )

    assert [chunk.text_chunk for chunk in stored] == ["abcdefghij", " klmnopqrs", "t uvw"]
    assert all(chunk.message_ids == ("m1",) for chunk in stored)
    assert all(len(chunk.embedding) == 32 for chunk in stored)
    assert all(chunk.provenance == provenance for chunk in stored)
    assert len(await chunk_store.list_by_user("u1")) == 3


@pytest.mark.anyio
async def test_persist_memory_blank_content_stores_nothing(chunk_store, clock) -> None:
    service = _service(chunk_store, clock)
    assert await service.persist_memory(
        user_id="u1", session_id="s1", message_id="m1", content=" \n\t "
    ) == []
    assert await chunk_store.list_by_user("u1") == []


@pytest.mark.anyio
async def test_embedding_failure_propagates_and_stores_no_partial_chunks(
    chunk_store, clock
) -> None:
    service = _service(chunk_store, clock, embedder=FailingEmbedder(succeed_first=1), chunk_size=5)

    with pytest.raises(EmbeddingProviderError):
        await service.persist_memory(
            user_id="u1", session_id="s1", message_id="m1", content="aaaaabbbbbccccc"
        )
    assert await chunk_store.list_by_user("u1") == []


@pytest.mark.anyio
async def test_query_embedding_failure_propagates(chunk_store, clock) -> None:
    service = _service(chunk_store, clock, embedder=FailingEmbedder())
    with pytest.raises(EmbeddingProviderError):
        await service.retrieve_context(user_id="u1", query="anything")


@pytest.mark.anyio
async def test_cancelled_persist_leaves_store_untouched(chunk_store, clock) -> None:
    embedder = BlockingEmbedder()
    service = _service(chunk_store, clock, embedder=embedder, chunk_size=4)

    task = asyncio.create_task(
        service.persist_memory(user_id="u1", session_id="s1", message_id="m1", content="abcdefgh")
    )
    await embedder.started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await chunk_store.list_by_user("u1") == []


@pytest.mark.anyio
async def test_retrieve_context_limits(chunk_store, clock) -> None:
    service = _service(chunk_store, clock, default_limit=6, max_limit=20)
    for idx in range(25):
        await service.persist_memory(
            user_id="u1", session_id="s1", message_id=f"m{idx}", content=f"memory number {idx}"
        )

    assert len(await service.retrieve_context(user_id="u1", query="memory")) == 6
    assert len(await service.retrieve_context(user_id="u1", query="memory", limit=3)) == 3
    assert len(await service.retrieve_context(user_id="u1", query="memory", limit=100)) == 20


@pytest.mark.anyio
@pytest.mark.parametrize("limit", [0, -1])
async def test_retrieve_context_non_positive_limit_returns_one(chunk_store, clock, limit) -> None:
    service = _service(chunk_store, clock, default_limit=6)
    for idx in range(3):
        await service.persist_memory(
            user_id="u1", session_id="s1", message_id=f"m{idx}", content=f"memory number {idx}"
        )

    assert len(await service.retrieve_context(user_id="u1", query="memory", limit=limit)) == 1


@pytest.mark.anyio
async def test_retrieve_context_embeds_query_as_given(chunk_store, clock) -> None:
    embedder = FallbackEmbeddingProvider()
    service = _service(chunk_store, clock, embedder=embedder)
    (stored,) = await service.persist_memory(
        user_id="u1", session_id="s1", message_id="m1", content=DENTIST_FRIDAY
    )
    padded_query = f"  {DENTIST_QUERY}  "

    (result,) = await service.retrieve_context(user_id="u1", query=padded_query)

    expected = cosine_similarity(stored.embedding, embedder.embed_sync(padded_query))
    assert result.similarity_score == pytest.approx(expected)
    assert expected != pytest.approx(
        cosine_similarity(stored.embedding, embedder.embed_sync(DENTIST_QUERY))
    )


@pytest.mark.anyio
async def test_retrieve_context_blank_query_returns_nothing(chunk_store, clock) -> None:
    service = _service(chunk_store, clock, embedder=FailingEmbedder())
    assert await service.retrieve_context(user_id="u1", query="   ") == []


@pytest.mark.anyio
async def test_retrieve_context_is_tenant_isolated(chunk_store, clock) -> None:
    service = _service(chunk_store, clock)
    await service.persist_memory(
        user_id="A", session_id="s1", message_id="m1", content=DENTIST_FRIDAY
    )
    for idx in range(10):
        await service.persist_memory(
            user_id="B", session_id="s2", message_id=f"b{idx}", content=DENTIST_MONDAY
        )

    results = await service.retrieve_context(user_id="A", query=DENTIST_QUERY, limit=20)
    assert [item.chunk.user_id for item in results] == ["A"]


@pytest.mark.anyio
async def test_older_memories_lose_recency_weight(chunk_store, clock) -> None:
    service = _service(chunk_store, clock)
    await service.persist_memory(user_id="u1", session_id="s1", message_id="m1", content="same")
    clock.advance(days=45)
    await service.persist_memory(user_id="u1", session_id="s1", message_id="m2", content="same")

    newest, oldest = await service.retrieve_context(user_id="u1", query="same")

    assert newest.chunk.message_ids == ("m2",)
    assert newest.recency_score == pytest.approx(1.0)
    assert oldest.recency_score == 0.0
    assert newest.final_score - oldest.final_score == pytest.approx(0.2)


@pytest.mark.anyio
async def test_forget_session_removes_chunks_from_retrieval(chunk_store, clock) -> None:
    service = _service(chunk_store, clock)
    await service.persist_memory(
        user_id="u1", session_id="gone", message_id="m1", content=DENTIST_FRIDAY
    )
    await service.persist_memory(
        user_id="u1", session_id="kept", message_id="m2", content=FAVORITE_COLOR
    )

    assert await service.forget_session(session_id="gone") == 1
    results = await service.retrieve_context(user_id="u1", query=DENTIST_QUERY)
    assert [item.chunk.session_id for item in results] == ["kept"]


@pytest.mark.anyio
async def test_forget_session_scoped_to_user_keeps_other_owners(chunk_store, clock) -> None:
    service = _service(chunk_store, clock)
    await service.persist_memory(
        user_id="u1", session_id="shared", message_id="m1", content=DENTIST_FRIDAY
    )
    await service.persist_memory(
        user_id="u2", session_id="shared", message_id="m2", content=DENTIST_MONDAY
    )

    assert await service.forget_session(session_id="shared", user_id="u2") == 1
    assert [chunk.user_id for chunk in await chunk_store.list_by_user("u1")] == ["u1"]
    assert await chunk_store.list_by_user("u2") == []
