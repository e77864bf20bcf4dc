from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from assistant_memory.memory.types import ChunkProvenance, MemoryChunk, RetrievedContext

MAX_PERSIST_CONTENT_LEN = 20000
MAX_QUERY_LEN = 4000


class APIModel(BaseModel):
    """Base for memory API payloads."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class ErrorResponse(APIModel):
    """Body returned when a memory backend fails."""

    code: str
    message: str


class ProvenanceIn(APIModel):
    """Optional message metadata recorded on each chunk."""

    role: Optional[str] = None
    source: Optional[str] = None
    language: Optional[str] = None
    persona_id: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_provenance(self) -> ChunkProvenance:
        return ChunkProvenance(
            role=self.role,
            source=self.source,
            language=self.language,
            persona_id=self.persona_id,
            extra=dict(self.extra),
        )


class MemoryChunkOut(APIModel):
    """Chunk as returned over HTTP; the embedding is omitted."""

    id: str
    session_id: str
    user_id: str
    message_ids: list[str]
    text_chunk: str
    created_at: datetime
    provenance: Optional[dict[str, Any]] = None

    @classmethod
    def from_chunk(cls, chunk: MemoryChunk) -> "MemoryChunkOut":
        return cls(
            id=chunk.id,
            session_id=chunk.session_id,
            user_id=chunk.user_id,
            message_ids=list(chunk.message_ids),
            text_chunk=chunk.text_chunk,
            created_at=chunk.created_at,
            provenance=chunk.provenance.to_dict() if chunk.provenance else None,
        )


class RetrievedContextOut(APIModel):
    """One ranked retrieval result."""

    chunk: MemoryChunkOut
    similarity_score: float
    recency_score: float
    final_score: float

    @classmethod
    def from_context(cls, context: RetrievedContext) -> "RetrievedContextOut":
        return cls(
            chunk=MemoryChunkOut.from_chunk(context.chunk),
            similarity_score=context.similarity_score,
            recency_score=context.recency_score,
            final_score=context.final_score,
        )


class RetrieveRequest(APIModel):
    """Payload for ranking stored memory against a query."""

    query: str = Field(min_length=1, max_length=MAX_QUERY_LEN)
    count: Optional[int] = Field(default=None, ge=1, le=20)


class RetrieveResponse(APIModel):
    """Ranked memory chunks for a query."""

    chunks: list[RetrievedContextOut]


class PersistRequest(APIModel):
    """Payload for indexing one stored chat message."""

    session_id: str = Field(min_length=1)
    message_id: str = Field(min_length=1)
    content: str = Field(max_length=MAX_PERSIST_CONTENT_LEN)
    provenance: Optional[ProvenanceIn] = None


class PersistResponse(APIModel):
    """Chunks created from the persisted message."""

    chunks: list[MemoryChunkOut]


class ForgetSessionResponse(APIModel):
    """Number of chunks removed by a session cascade."""

    deleted: int
