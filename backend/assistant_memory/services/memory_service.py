from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant_memory.core.config import Settings
from assistant_memory.memory.chunk_store import ChunkStore, InMemoryChunkStore, SQLChunkStore
from assistant_memory.memory.chunker import DEFAULT_CHUNK_SIZE, chunk_text
from assistant_memory.memory.embedder import EmbeddingProvider, create_embedding_provider
from assistant_memory.memory.ranking import DEFAULT_RETRIEVE_LIMIT, RankingWeights, RetrievalRanker
from assistant_memory.memory.types import ChunkProvenance, MemoryChunk, RetrievedContext

logger = logging.getLogger(__name__)


class MemoryService:
    """Semantic memory: chunk, embed and persist messages; rank chunks for a query.

    Embedding and store failures propagate to the caller. Whether memory
    writes are best-effort is decided by the orchestration layer.
    """

    def __init__(
        self,
        *,
        store: ChunkStore,
        embedder: EmbeddingProvider,
        ranker: Optional[RetrievalRanker] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        default_limit: int = DEFAULT_RETRIEVE_LIMIT,
        max_limit: int = 20,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._ranker = ranker or RetrievalRanker(store)
        self._chunk_size = chunk_size
        self._max_limit = max(1, max_limit)
        self._default_limit = min(max(1, default_limit), self._max_limit)

    @property
    def store(self) -> ChunkStore:
        return self._store

    async def persist_memory(
        self,
        *,
        user_id: str,
        session_id: str,
        message_id: str,
        content: str,
        provenance: Optional[ChunkProvenance] = None,
    ) -> list[MemoryChunk]:
        """Chunk one message, embed every chunk, then append them all."""

        chunks = chunk_text(content, self._chunk_size)
        if not chunks:
            return []

        # Embed everything first so a failure or cancellation stores nothing.
        embeddings = await self._embedder.embed_texts(chunks)
        if len(embeddings) != len(chunks):
            raise RuntimeError("Embedding count does not match chunk count")

        stored: list[MemoryChunk] = []
        for text, embedding in zip(chunks, embeddings):
            stored.append(
                await self._store.append(
                    user_id=user_id,
                    session_id=session_id,
                    text_chunk=text,
                    message_ids=[message_id],
                    embedding=embedding,
                    provenance=provenance,
                    embed_provider=self._embedder.provider,
                    embed_model=self._embedder.model_name,
                )
            )
        logger.debug(
            "Persisted %s memory chunks for message %s in session %s",
            len(stored),
            message_id,
            session_id,
        )
        return stored

    async def retrieve_context(
        self,
        *,
        user_id: str,
        query: str,
        limit: Optional[int] = None,
    ) -> list[RetrievedContext]:
        """Embed the query and return the user's best-ranked chunks."""

        if not query.strip():
            return []

        top_k = self._default_limit if limit is None else min(max(1, limit), self._max_limit)
        # Embedded as given, so queries and stored chunks share one vector space.
        query_embedding = await self._embedder.embed(query)
        return await self._ranker.retrieve(user_id, query_embedding, top_k)

    async def forget_session(self, *, session_id: str, user_id: Optional[str] = None) -> int:
        """Cascade hook for session deletion.

        The session collaborator calls it without ``user_id``. HTTP callers are
        always scoped to their own chunks.
        """

        return await self._store.delete_by_session(session_id, user_id=user_id)


def create_memory_service(
    *,
    settings: Settings,
    sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None,
    embedder: Optional[EmbeddingProvider] = None,
) -> MemoryService:
    """Wire store, embedding strategy and ranker from settings."""

    store: ChunkStore
    if sessionmaker is not None:
        store = SQLChunkStore(sessionmaker)
    else:
        logger.warning("DB_URL is not set; memory chunks are kept in process memory only")
        store = InMemoryChunkStore()

    return MemoryService(
        store=store,
        embedder=embedder or create_embedding_provider(settings),
        ranker=RetrievalRanker(store, weights=RankingWeights.from_settings(settings)),
        chunk_size=settings.memory_chunk_size,
        default_limit=settings.memory_default_limit,
        max_limit=settings.memory_max_limit,
    )
