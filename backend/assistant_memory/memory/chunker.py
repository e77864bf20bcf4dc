from __future__ import annotations

DEFAULT_CHUNK_SIZE = 450


def normalize_whitespace(text: str) -> str:
    """Trim and collapse every whitespace run to a single space."""

    return " ".join(text.split())


def chunk_text(text: str, size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split text into consecutive segments of at most ``size`` characters.

    Cuts are hard character counts on the whitespace-normalized text, so a
    segment may end mid-word. Blank input yields no segments.
    """

    if size < 1:
        raise ValueError("Chunk size must be >= 1")
    normalized = normalize_whitespace(text)
    return [normalized[start : start + size] for start in range(0, len(normalized), size)]
