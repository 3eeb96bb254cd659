"""Embedding provider clients."""

from activity_summarizer.config import Settings
from activity_summarizer.models.jina_client import JinaEmbeddingClient
from activity_summarizer.models.openai_client import OpenAIEmbeddingClient
from activity_summarizer.models.provider import (
    EmbeddingProvider,
    EmbeddingProviderError,
    MalformedEmbeddingError,
    truncate_for_embedding,
)


def build_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Construct the embedding provider selected by settings."""

    api_key = settings.resolved_embedding_api_key()
    if not api_key:
        raise ValueError(
            f"{settings.resolved_embedding_key_source()} is required for semantic segmentation."
        )

    timeout = settings.embedding_timeout_seconds
    if settings.resolved_embedding_provider() == "jina":
        return JinaEmbeddingClient(
            api_key=api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            timeout_seconds=timeout if timeout is not None else 60.0,
            max_retries=settings.client_max_retries,
            backoff_seconds=settings.client_backoff_seconds,
        )
    return OpenAIEmbeddingClient(
        api_key=api_key,
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        base_url=settings.openai_base_url.strip() or None,
        timeout_seconds=timeout,
        max_retries=settings.client_max_retries,
        backoff_seconds=settings.client_backoff_seconds,
    )


__all__ = [
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "JinaEmbeddingClient",
    "MalformedEmbeddingError",
    "OpenAIEmbeddingClient",
    "build_embedding_provider",
    "truncate_for_embedding",
]
