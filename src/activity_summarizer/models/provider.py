"""Embedding provider contract shared by the API clients and the cache."""

from __future__ import annotations

from typing import Protocol

MAX_EMBEDDING_INPUT_CHARS = 32_000


class EmbeddingProviderError(RuntimeError):
    """Raised when an embedding provider call fails or times out."""


class MalformedEmbeddingError(EmbeddingProviderError):
    """Raised when a provider returns a vector that violates the dimension contract."""


class EmbeddingProvider(Protocol):
    """Protocol for synchronous, thread-safe embedding providers."""

    @property
    def model(self) -> str:
        """Model identifier used to namespace persisted vectors."""

    def embed(self, text: str) -> list[float]:
        """Return one embedding vector for the input text."""

    def metrics_snapshot(self) -> dict:
        """Return cumulative request metrics for reporting."""

    def close(self) -> None:
        """Release network resources held by the provider."""


def truncate_for_embedding(text: str, max_chars: int = MAX_EMBEDDING_INPUT_CHARS) -> str:
    """Clip text to a size the embedding endpoints accept."""

    if len(text) <= max_chars:
        return text
    return text[:max_chars]
