from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from assistant_memory.db.models import MemoryChunkRow


class MemoryChunkRepo:
    """Repository for semantic memory chunk persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def insert_chunk(
        self,
        *,
        chunk_id: str,
        user_id: str,
        session_id: str,
        message_ids_json: str,
        text_chunk: str,
        vector_json: str,
        dim: int,
        embed_provider: Optional[str],
        embed_model: Optional[str],
        provenance_json: Optional[str],
        created_at: datetime,
    ) -> MemoryChunkRow:
        """Insert one chunk row. Rows are never updated afterwards."""

        row = MemoryChunkRow(
            id=chunk_id,
            user_id=user_id,
            session_id=session_id,
            message_ids_json=message_ids_json,
            text_chunk=text_chunk,
            vector_json=vector_json,
            dim=dim,
            embed_provider=embed_provider,
            embed_model=embed_model,
            provenance_json=provenance_json,
            created_at=created_at,
        )
        self._db.add(row)
        await self._db.flush()
        return row

    async def list_by_user(self, user_id: str) -> list[MemoryChunkRow]:
        """List every chunk owned by a user, newest first."""

        result = await self._db.execute(
            select(MemoryChunkRow)
            .where(MemoryChunkRow.user_id == user_id)
            .order_by(MemoryChunkRow.created_at.desc(), MemoryChunkRow.id)
        )
        return list(result.scalars())

    async def delete_by_session(self, session_id: str, *, user_id: Optional[str] = None) -> int:
        """Remove chunks that originated in a session, optionally for one owner only."""

        stmt = delete(MemoryChunkRow).where(MemoryChunkRow.session_id == session_id)
        if user_id is not None:
            stmt = stmt.where(MemoryChunkRow.user_id == user_id)
        result = await self._db.execute(stmt)
        return int(result.rowcount or 0)
