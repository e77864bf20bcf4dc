from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from assistant_memory.db.base import Base
from assistant_memory.utils.time_utils import utc_now


class MemoryChunkRow(Base):
    """Write-once semantic memory chunk owned by one user."""

    __tablename__ = "memory_chunks"
    __table_args__ = (
        Index("ix_memory_chunks_user_created", "user_id", "created_at"),
        Index("ix_memory_chunks_session", "session_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    session_id: Mapped[str] = mapped_column(String, nullable=False)
    message_ids_json: Mapped[str] = mapped_column(Text, nullable=False)
    text_chunk: Mapped[str] = mapped_column(Text, nullable=False)
    vector_json: Mapped[str] = mapped_column(Text, nullable=False)
    dim: Mapped[int] = mapped_column(Integer, nullable=False)
    embed_provider: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    embed_model: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    provenance_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
