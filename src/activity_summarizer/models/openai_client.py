"""OpenAI embeddings client wrapper."""

from __future__ import annotations

import threading

from openai import APIError, APITimeoutError, BadRequestError, OpenAI, RateLimitError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

from activity_summarizer.models.provider import EmbeddingProviderError, truncate_for_embedding

# text-embedding-3-* accept an explicit output dimension; older models do not.
_MODELS_WITH_DIMENSIONS = ("text-embedding-3-",)


class OpenAIEmbeddingClient:
    """Embedding provider backed by the OpenAI embeddings endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = 60.0,
        max_retries: int = 4,
        backoff_seconds: float = 1.0,
        client: OpenAI | None = None,
    ) -> None:
        # SDK-level retries are disabled; tenacity owns backoff.
        self._client = client or OpenAI(
            api_key=api_key,
            base_url=base_url or None,
            timeout=timeout_seconds,
            max_retries=0,
        )
        self._model = model
        self._dimensions = dimensions
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._metrics_lock = threading.Lock()
        self._request_count = 0
        self._retry_count = 0
        self._total_tokens = 0

    @property
    def model(self) -> str:
        return self._model

    def _is_retryable_openai_error(self, exc: BaseException) -> bool:
        """Return whether an OpenAI exception should trigger retry/backoff."""

        if isinstance(exc, (RateLimitError, APITimeoutError)):
            return True
        if isinstance(exc, BadRequestError):
            return False
        return isinstance(exc, APIError)

    def _request_kwargs(self, inputs: list[str]) -> dict:
        kwargs: dict = {"model": self._model, "input": inputs}
        if self._dimensions is not None and self._model.startswith(_MODELS_WITH_DIMENSIONS):
            kwargs["dimensions"] = self._dimensions
        return kwargs

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, returning vectors in input order."""

        if not texts:
            return []

        inputs = [truncate_for_embedding(text) for text in texts]
        attempt_count = 0
        response = None
        max_attempts = max(1, self._max_retries)
        wait_strategy = wait_exponential(
            multiplier=self._backoff_seconds,
            min=self._backoff_seconds,
            max=max(self._backoff_seconds, self._backoff_seconds * 8),
        ) + wait_random(0.0, 0.25)
        retryer = Retrying(
            retry=retry_if_exception(self._is_retryable_openai_error),
            wait=wait_strategy,
            stop=stop_after_attempt(max_attempts),
            reraise=True,
        )

        try:
            for attempt in retryer:
                with attempt:
                    attempt_count += 1
                    response = self._client.embeddings.create(**self._request_kwargs(inputs))
        except APIError as exc:
            raise EmbeddingProviderError(f"OpenAI embeddings request failed: {exc}") from exc

        if response is None:
            raise EmbeddingProviderError("OpenAI embeddings response missing after retries.")

        usage = getattr(response, "usage", None)
        with self._metrics_lock:
            self._request_count += 1
            self._retry_count += max(0, attempt_count - 1)
            self._total_tokens += int(getattr(usage, "total_tokens", 0) or 0)

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise EmbeddingProviderError(
                "Embeddings response count does not match input count: "
                f"{len(data)} != {len(texts)}."
            )
        return [[float(value) for value in item.embedding] for item in data]

    def embed(self, text: str) -> list[float]:
        """Embed one text."""

        return self.embed_texts([text])[0]

    def close(self) -> None:
        """Close the underlying OpenAI client."""

        self._client.close()

    def metrics_snapshot(self) -> dict:
        """Return cumulative request/usage metrics for this client instance."""

        with self._metrics_lock:
            return {
                "request_count": self._request_count,
                "retry_count": self._retry_count,
                "total_tokens": self._total_tokens,
                "model": self._model,
            }
