from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from assistant_memory.memory.types import MemoryChunk, RetrievedContext
from assistant_memory.utils.time_utils import ensure_utc, utc_now

if TYPE_CHECKING:
    from assistant_memory.core.config import Settings
    from assistant_memory.memory.chunk_store import ChunkStore

DEFAULT_RETRIEVE_LIMIT = 6


@dataclass(frozen=True)
class RankingWeights:
    """Blend of semantic closeness and recency used to order chunks."""

    similarity_weight: float = 0.8
    recency_weight: float = 0.2
    recency_window: timedelta = timedelta(days=30)
    min_similarity: Optional[float] = None

    def __post_init__(self) -> None:
        if self.recency_window <= timedelta(0):
            raise ValueError("Recency window must be positive")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RankingWeights":
        return cls(
            similarity_weight=settings.memory_similarity_weight,
            recency_weight=settings.memory_recency_weight,
            recency_window=timedelta(days=settings.memory_recency_window_days),
            min_similarity=settings.memory_min_similarity,
        )


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for mismatched lengths or zero-magnitude vectors."""

    if len(left) != len(right) or not left:
        return 0.0
    dot = 0.0
    left_sq = 0.0
    right_sq = 0.0
    for l_value, r_value in zip(left, right):
        dot += l_value * r_value
        left_sq += l_value * l_value
        right_sq += r_value * r_value
    if left_sq <= 0 or right_sq <= 0:
        return 0.0
    score = dot / math.sqrt(left_sq * right_sq)
    if math.isnan(score):
        return 0.0
    return score


def recency_score(created_at: datetime, now: datetime, window: timedelta) -> float:
    """Linear decay from 1.0 at ``now`` to 0.0 at ``window`` age, clamped to [0, 1]."""

    age = ensure_utc(now) - ensure_utc(created_at)
    return max(0.0, min(1.0, 1.0 - age / window))


def rank_chunks(
    chunks: Iterable[MemoryChunk],
    query_embedding: Sequence[float],
    *,
    limit: int,
    now: datetime,
    weights: RankingWeights = RankingWeights(),
) -> list[RetrievedContext]:
    """Score every chunk, sort by final score descending and keep ``limit``."""

    if limit <= 0:
        return []

    scored: list[RetrievedContext] = []
    for chunk in chunks:
        similarity = cosine_similarity(chunk.embedding, query_embedding)
        if weights.min_similarity is not None and similarity < weights.min_similarity:
            continue
        recency = recency_score(chunk.created_at, now, weights.recency_window)
        scored.append(
            RetrievedContext(
                chunk=chunk,
                similarity_score=similarity,
                recency_score=recency,
                final_score=similarity * weights.similarity_weight
                + recency * weights.recency_weight,
            )
        )

    # list.sort is stable, so equal scores keep store order.
    scored.sort(key=lambda row: row.final_score, reverse=True)
    return scored[:limit]


class RetrievalRanker:
    """Full-scan similarity + recency ranking over one user's chunks."""

    def __init__(
        self,
        store: "ChunkStore",
        *,
        weights: Optional[RankingWeights] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._weights = weights or RankingWeights()
        self._clock = clock

    async def retrieve(
        self,
        user_id: str,
        query_embedding: Sequence[float],
        limit: int = DEFAULT_RETRIEVE_LIMIT,
    ) -> list[RetrievedContext]:
        if limit <= 0:
            return []
        chunks = [
            chunk for chunk in await self._store.list_by_user(user_id) if chunk.user_id == user_id
        ]
        if not chunks:
            return []
        return rank_chunks(
            chunks,
            query_embedding,
            limit=limit,
            now=self._clock(),
            weights=self._weights,
        )
