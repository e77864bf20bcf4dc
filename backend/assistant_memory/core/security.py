from __future__ import annotations

import re

SECRET_PATTERN = re.compile(r"(sk-[A-Za-z0-9_-]{6,})")
BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]{6,}")


def redact_secrets(text: str) -> str:
    """Redact API keys and bearer tokens from a string."""

    redacted = SECRET_PATTERN.sub("sk-***", text)
    return BEARER_PATTERN.sub(r"\1***", redacted)

