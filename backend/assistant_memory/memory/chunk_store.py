from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant_memory.db.models import MemoryChunkRow
from assistant_memory.memory.types import ChunkProvenance, MemoryChunk
from assistant_memory.repos.memory_chunk_repo import MemoryChunkRepo
from assistant_memory.utils.time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    """Raised when the chunk persistence backend cannot be read or written."""


class ChunkStore(ABC):
    """Append-only memory chunk storage scoped by user."""

    @abstractmethod
    async def append(
        self,
        *,
        user_id: str,
        session_id: str,
        text_chunk: str,
        message_ids: Sequence[str],
        embedding: Sequence[float],
        provenance: Optional[ChunkProvenance] = None,
        embed_provider: Optional[str] = None,
        embed_model: Optional[str] = None,
    ) -> MemoryChunk:
        """Persist a new chunk with a fresh id and creation time."""

    @abstractmethod
    async def list_by_user(self, user_id: str) -> list[MemoryChunk]:
        """Return every chunk owned by ``user_id`` in no particular order."""

    @abstractmethod
    async def delete_by_session(self, session_id: str, *, user_id: Optional[str] = None) -> int:
        """Remove a deleted session's chunks, optionally only those owned by ``user_id``.

        Returns how many chunks were removed.
        """


class InMemoryChunkStore(ChunkStore):
    """Process-local store used when no database is configured."""

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._chunks: list[MemoryChunk] = []
        self._clock = clock

    async def append(
        self,
        *,
        user_id: str,
        session_id: str,
        text_chunk: str,
        message_ids: Sequence[str],
        embedding: Sequence[float],
        provenance: Optional[ChunkProvenance] = None,
        embed_provider: Optional[str] = None,
        embed_model: Optional[str] = None,
    ) -> MemoryChunk:
        chunk = _build_chunk(
            user_id=user_id,
            session_id=session_id,
            text_chunk=text_chunk,
            message_ids=message_ids,
            embedding=embedding,
            provenance=provenance,
            created_at=self._clock(),
        )
        self._chunks.append(chunk)
        return chunk

    async def list_by_user(self, user_id: str) -> list[MemoryChunk]:
        return [chunk for chunk in self._chunks if chunk.user_id == user_id]

    async def delete_by_session(self, session_id: str, *, user_id: Optional[str] = None) -> int:
        kept = [
            chunk
            for chunk in self._chunks
            if chunk.session_id != session_id
            or (user_id is not None and chunk.user_id != user_id)
        ]
        removed = len(self._chunks) - len(kept)
        self._chunks = kept
        return removed


class SQLChunkStore(ChunkStore):
    """SQLAlchemy-backed store; each call runs in its own transaction."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._clock = clock

    async def append(
        self,
        *,
        user_id: str,
        session_id: str,
        text_chunk: str,
        message_ids: Sequence[str],
        embedding: Sequence[float],
        provenance: Optional[ChunkProvenance] = None,
        embed_provider: Optional[str] = None,
        embed_model: Optional[str] = None,
    ) -> MemoryChunk:
        chunk = _build_chunk(
            user_id=user_id,
            session_id=session_id,
            text_chunk=text_chunk,
            message_ids=message_ids,
            embedding=embedding,
            provenance=provenance,
            created_at=self._clock(),
        )
        async with self._transaction() as db:
            await MemoryChunkRepo(db).insert_chunk(
                chunk_id=chunk.id,
                user_id=chunk.user_id,
                session_id=chunk.session_id,
                message_ids_json=json.dumps(list(chunk.message_ids)),
                text_chunk=chunk.text_chunk,
                vector_json=json.dumps(list(chunk.embedding), separators=(",", ":")),
                dim=len(chunk.embedding),
                embed_provider=embed_provider,
                embed_model=embed_model,
                provenance_json=(
                    json.dumps(chunk.provenance.to_dict()) if chunk.provenance else None
                ),
                created_at=chunk.created_at,
            )
        return chunk

    async def list_by_user(self, user_id: str) -> list[MemoryChunk]:
        async with self._transaction() as db:
            rows = await MemoryChunkRepo(db).list_by_user(user_id)
        return [_row_to_chunk(row) for row in rows]

    async def delete_by_session(self, session_id: str, *, user_id: Optional[str] = None) -> int:
        async with self._transaction() as db:
            removed = await MemoryChunkRepo(db).delete_by_session(session_id, user_id=user_id)
        if removed:
            logger.info("Removed %s memory chunks for session %s", removed, session_id)
        return removed

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    yield db
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("Memory chunk store is unavailable") from exc


def _build_chunk(
    *,
    user_id: str,
    session_id: str,
    text_chunk: str,
    message_ids: Sequence[str],
    embedding: Sequence[float],
    provenance: Optional[ChunkProvenance],
    created_at: datetime,
) -> MemoryChunk:
    if not message_ids:
        raise ValueError("A memory chunk must reference at least one message")
    if not embedding:
        raise ValueError("A memory chunk must carry an embedding")
    return MemoryChunk(
        id=uuid.uuid4().hex,
        user_id=user_id,
        session_id=session_id,
        message_ids=tuple(str(item) for item in message_ids),
        text_chunk=text_chunk,
        embedding=tuple(float(value) for value in embedding),
        created_at=created_at,
        provenance=provenance,
    )


def _row_to_chunk(row: MemoryChunkRow) -> MemoryChunk:
    try:
        message_ids = tuple(str(item) for item in json.loads(row.message_ids_json))
        embedding = tuple(float(value) for value in json.loads(row.vector_json))
        provenance = json.loads(row.provenance_json) if row.provenance_json else None
        if provenance is not None and not isinstance(provenance, dict):
            raise TypeError("provenance must be a JSON object")
    except (json.JSONDecodeError, TypeError, ValueError) as exc:
        raise StoreUnavailableError(f"Memory chunk {row.id} has a corrupt payload") from exc
    return MemoryChunk(
        id=row.id,
        user_id=row.user_id,
        session_id=row.session_id,
        message_ids=message_ids,
        text_chunk=row.text_chunk,
        embedding=embedding,
        created_at=ensure_utc(row.created_at),
        provenance=ChunkProvenance.from_dict(provenance) if provenance else None,
    )
