"""Topic-shift splitting inside one time-gap candidate."""

from __future__ import annotations

import asyncio
import logging

import numpy as np

from activity_summarizer.models.provider import EmbeddingProviderError, MalformedEmbeddingError
from activity_summarizer.schemas import Message
from activity_summarizer.segmentation.cache import EmbeddingCache

logger = logging.getLogger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 when either norm is zero."""

    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape:
        raise ValueError(f"Vector dimension mismatch: {left.shape} vs {right.shape}.")
    norm = float(np.linalg.norm(left)) * float(np.linalg.norm(right))
    if norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / norm)


def has_usable_text(message: Message) -> bool:
    return bool(message.text and message.text.strip())


def find_topic_boundaries(
    messages: list[Message],
    vectors: dict[int, np.ndarray],
    similarity_threshold: float,
) -> list[int]:
    """Return indices `i` where a new conversation starts at `messages[i]`.

    Only adjacent pairs with embeddings on both sides are compared.
    """

    boundaries: list[int] = []
    for index in range(len(messages) - 1):
        left = vectors.get(index)
        right = vectors.get(index + 1)
        if left is None or right is None:
            continue
        if cosine_similarity(left, right) < similarity_threshold:
            boundaries.append(index + 1)
    return boundaries


def split_at(messages: list[Message], boundaries: list[int]) -> list[list[Message]]:
    """Cut messages at sorted boundary indices."""

    edges = [0, *boundaries, len(messages)]
    return [messages[start:end] for start, end in zip(edges, edges[1:]) if end > start]


async def split_by_topic(
    candidate: list[Message],
    cache: EmbeddingCache,
    *,
    similarity_threshold: float = 0.6,
    min_messages: int = 2,
) -> list[list[Message]]:
    """Subdivide a time-gap candidate where adjacent messages change topic.

    Candidates with fewer than `min_messages` non-blank texts are returned
    unsplit. If any embedding lookup fails the candidate is returned unsplit.
    """

    usable = [index for index, message in enumerate(candidate) if has_usable_text(message)]
    if len(usable) < max(2, min_messages):
        return [candidate]

    results = await asyncio.gather(
        *(cache.get_or_compute(candidate[index].text) for index in usable),
        return_exceptions=True,
    )

    vectors: dict[int, np.ndarray] = {}
    for index, result in zip(usable, results):
        if isinstance(result, MalformedEmbeddingError):
            logger.warning(
                "Embedding provider contract violation for message %s; keeping candidate "
                "of %d messages unsplit: %s",
                candidate[index].ts,
                len(candidate),
                result,
            )
            return [candidate]
        if isinstance(result, EmbeddingProviderError):
            logger.warning(
                "Embedding failed for message %s; keeping candidate of %d messages unsplit: %s",
                candidate[index].ts,
                len(candidate),
                result,
            )
            return [candidate]
        if isinstance(result, BaseException):
            raise result
        vectors[index] = result

    boundaries = find_topic_boundaries(candidate, vectors, similarity_threshold)
    if boundaries:
        logger.debug(
            "Semantic split of %d messages at %s",
            len(candidate),
            [candidate[index].ts for index in boundaries],
        )
    return split_at(candidate, boundaries)
