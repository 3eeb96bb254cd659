"""Jina embeddings client wrapper."""

from __future__ import annotations

import threading

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

from activity_summarizer.models.provider import EmbeddingProviderError, truncate_for_embedding


class JinaEmbeddingClient:
    """Thin client around Jina's embeddings endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        dimensions: int | None = None,
        base_url: str = "https://api.jina.ai/v1/embeddings",
        timeout_seconds: float = 60.0,
        max_retries: int = 4,
        backoff_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        self._base_url = base_url
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._http = httpx.Client(
            timeout=timeout_seconds,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )
        self._metrics_lock = threading.Lock()
        self._request_count = 0
        self._retry_count = 0

    @property
    def model(self) -> str:
        return self._model

    def close(self) -> None:
        """Close the underlying HTTP client."""

        self._http.close()

    def _is_retryable_jina_error(self, exc: BaseException) -> bool:
        """Return whether a Jina request exception should trigger retry/backoff."""

        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            return status == 429 or status >= 500
        return isinstance(exc, (httpx.TimeoutException, httpx.RequestError))

    def _post_with_retry(self, payload: dict) -> httpx.Response:
        """POST to the embeddings endpoint with retry/backoff for transient errors."""

        response: httpx.Response | None = None
        attempt_count = 0
        max_attempts = max(1, self._max_retries)
        wait_strategy = wait_exponential(
            multiplier=self._backoff_seconds,
            min=self._backoff_seconds,
            max=max(self._backoff_seconds, self._backoff_seconds * 8),
        ) + wait_random(0.0, 0.25)
        retryer = Retrying(
            retry=retry_if_exception(self._is_retryable_jina_error),
            wait=wait_strategy,
            stop=stop_after_attempt(max_attempts),
            reraise=True,
        )
        try:
            for attempt in retryer:
                with attempt:
                    attempt_count += 1
                    response = self._http.post(self._base_url, json=payload)
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError(f"Jina embeddings request failed: {exc}") from exc
        finally:
            with self._metrics_lock:
                self._request_count += 1
                self._retry_count += max(0, attempt_count - 1)

        if response is None:
            raise EmbeddingProviderError("Jina embeddings response missing after retries.")
        return response

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts using Jina."""

        if not texts:
            return []

        payload: dict = {
            "model": self._model,
            "input": [truncate_for_embedding(text) for text in texts],
        }
        if self._dimensions is not None:
            payload["dimensions"] = self._dimensions

        response = self._post_with_retry(payload)
        try:
            body = response.json()
        except ValueError as exc:
            raise EmbeddingProviderError("Jina embeddings response was not valid JSON.") from exc
        if not isinstance(body, dict):
            raise EmbeddingProviderError(
                f"Unexpected embeddings response type: {type(body).__name__}"
            )

        data = body.get("data")
        if not isinstance(data, list):
            raise EmbeddingProviderError("Embeddings response missing list field 'data'.")

        embeddings_by_index: dict[int, list[float]] = {}
        for item in data:
            if not isinstance(item, dict):
                raise EmbeddingProviderError(
                    "Embeddings response 'data' contains non-object entries."
                )

            index = item.get("index")
            embedding = item.get("embedding")
            if not isinstance(index, int):
                raise EmbeddingProviderError("Embedding item missing integer 'index'.")
            if not isinstance(embedding, list):
                raise EmbeddingProviderError("Embedding item missing list 'embedding'.")

            embeddings_by_index[index] = [float(value) for value in embedding]

        if sorted(embeddings_by_index) != list(range(len(texts))):
            raise EmbeddingProviderError(
                "Embeddings response count does not match input count: "
                f"{len(embeddings_by_index)} != {len(texts)}."
            )

        return [embeddings_by_index[idx] for idx in range(len(texts))]

    def embed(self, text: str) -> list[float]:
        """Embed one text."""

        return self.embed_texts([text])[0]

    def metrics_snapshot(self) -> dict:
        """Return cumulative request metrics for this client instance."""

        with self._metrics_lock:
            return {
                "request_count": self._request_count,
                "retry_count": self._retry_count,
                "model": self._model,
            }
