from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Optional

import anyio
import httpx

if TYPE_CHECKING:
    from assistant_memory.core.config import Settings

logger = logging.getLogger(__name__)

FALLBACK_DIMENSION = 32


class EmbeddingProviderError(RuntimeError):
    """Raised when the live embedding provider call fails."""


class EmbeddingProvider(ABC):
    """Embedding strategy shared by indexing and querying."""

    provider: str
    model_name: str
    dimension: Optional[int]

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate the vector for one text input."""

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed each text with its own call, concurrently, keeping input order.

        The first failure cancels the calls still in flight and is re-raised.
        """

        if not texts:
            return []
        results: list[Optional[list[float]]] = [None] * len(texts)

        async def _embed_at(index: int, text: str) -> None:
            results[index] = await self.embed(text)

        try:
            async with anyio.create_task_group() as tg:
                for index, text in enumerate(texts):
                    tg.start_soon(_embed_at, index, text)
        except ExceptionGroup as group:
            raise group.exceptions[0]
        return [vector for vector in results if vector is not None]


class FallbackEmbeddingProvider(EmbeddingProvider):
    """Offline deterministic embedding from character codes.

    Bucket ``i`` sums the code points at positions congruent to ``i`` modulo
    the dimension, divided by the text length. Vectors from this provider are
    not comparable with vectors from a live model.
    """

    provider = "fallback"

    def __init__(self, dimension: int = FALLBACK_DIMENSION, model_name: str = "char-buckets-v1") -> None:
        if dimension <= 0:
            raise ValueError("Embedding dimension must be > 0")
        self.dimension = int(dimension)
        self.model_name = model_name

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for index, ch in enumerate(text):
            vector[index % self.dimension] += ord(ch)
        length = max(len(text), 1)
        return [value / length for value in vector]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI-compatible embedding provider; errors always propagate."""

    provider = "openai"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model_name: str,
        dimension: Optional[int] = None,
        timeout_sec: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key.strip():
            raise ValueError("OpenAI embedding API key is empty")
        if dimension is not None and dimension <= 0:
            raise ValueError("Embedding dimension must be > 0")
        self.model_name = model_name
        self.dimension = dimension
        self._api_key = api_key
        self._timeout_sec = timeout_sec
        self._transport = transport
        normalized = base_url.rstrip("/")
        self._endpoint = f"{normalized}/v1/embeddings"

    async def embed(self, text: str) -> list[float]:
        payload = {"model": self.model_name, "input": text}
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_sec, transport=self._transport
            ) as client:
                response = await client.post(self._endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise EmbeddingProviderError(
                f"OpenAI embedding request failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError("OpenAI embedding request failed") from exc
        except ValueError as exc:
            raise EmbeddingProviderError("OpenAI embedding response is not JSON") from exc

        return self._parse_embedding(data)

    def _parse_embedding(self, payload: Any) -> list[float]:
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list) or len(rows) != 1:
            raise EmbeddingProviderError("Embedding response shape is invalid")

        embedding = rows[0].get("embedding") if isinstance(rows[0], dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingProviderError("Embedding row is missing vector data")
        if self.dimension is not None and len(embedding) != self.dimension:
            raise EmbeddingProviderError(
                f"Embedding dimension mismatch: expected {self.dimension}, got {len(embedding)}"
            )
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingProviderError("Embedding contains non-numeric values") from exc


def create_embedding_provider(settings: "Settings") -> EmbeddingProvider:
    """Pick the embedding strategy once at startup from credential presence."""

    api_key = settings.openai_api_key.strip()
    if not api_key:
        logger.info("OPENAI_API_KEY is not set; using deterministic fallback embeddings")
        return FallbackEmbeddingProvider()

    model_name = settings.embed_model.strip() or "text-embedding-3-large"
    logger.info("Using OpenAI embeddings with model %s", model_name)
    return OpenAIEmbeddingProvider(
        base_url=settings.openai_base_url,
        api_key=api_key,
        model_name=model_name,
        dimension=settings.embed_dim if settings.embed_dim > 0 else None,
        timeout_sec=settings.embed_timeout_sec,
    )
