from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

_KNOWN_PROVENANCE_KEYS = ("role", "source", "language", "persona_id")


@dataclass(frozen=True)
class ChunkProvenance:
    """Known message metadata carried onto a chunk, plus an open extension map."""

    role: Optional[str] = None
    source: Optional[str] = None
    language: Optional[str] = None
    persona_id: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            key: getattr(self, key)
            for key in _KNOWN_PROVENANCE_KEYS
            if getattr(self, key) is not None
        }
        if self.extra:
            payload["extra"] = dict(self.extra)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChunkProvenance":
        extra = dict(payload.get("extra") or {})
        for key, value in payload.items():
            if key not in _KNOWN_PROVENANCE_KEYS and key != "extra":
                extra[key] = value
        return cls(
            role=_optional_str(payload.get("role")),
            source=_optional_str(payload.get("source")),
            language=_optional_str(payload.get("language")),
            persona_id=_optional_str(payload.get("persona_id")),
            extra=extra,
        )


@dataclass(frozen=True)
class MemoryChunk:
    """One persisted slice of message text with its embedding."""

    id: str
    user_id: str
    session_id: str
    message_ids: tuple[str, ...]
    text_chunk: str
    embedding: tuple[float, ...]
    created_at: datetime
    provenance: Optional[ChunkProvenance] = None


@dataclass(frozen=True)
class RetrievedContext:
    """Ranked retrieval candidate; computed per query, never stored."""

    chunk: MemoryChunk
    similarity_score: float
    recency_score: float
    final_score: float


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)
