"""Conversation segmentation engine."""

from activity_summarizer.segmentation.cache import (
    EmbeddingCache,
    EmbeddingCacheEntry,
    EmbeddingCacheStore,
    EmbeddingCacheStoreError,
    cache_key,
    normalize_text,
)
from activity_summarizer.segmentation.consolidate import (
    ConsolidationConfig,
    consolidate,
    consolidate_async,
    has_same_author,
    hybrid_similarity,
)
from activity_summarizer.segmentation.references import (
    Reference,
    ReferenceSet,
    extract_message_references,
    extract_references,
    is_bot_conversation,
    is_bot_message,
    reference_similarity,
)
from activity_summarizer.segmentation.segment import (
    SegmentationConfig,
    build_conversation,
    conversation_id,
    group_by_channel,
    segment,
    segment_async,
    segment_channel,
)
from activity_summarizer.segmentation.semantic import cosine_similarity, split_by_topic
from activity_summarizer.segmentation.threads import ThreadGroup, extract_threads
from activity_summarizer.segmentation.time_gap import count_gap_boundaries, split_by_gap
from activity_summarizer.segmentation.timestamps import UnorderedInputError, parse_ts, ts_to_iso

__all__ = [
    "ConsolidationConfig",
    "EmbeddingCache",
    "EmbeddingCacheEntry",
    "EmbeddingCacheStore",
    "EmbeddingCacheStoreError",
    "Reference",
    "ReferenceSet",
    "SegmentationConfig",
    "ThreadGroup",
    "UnorderedInputError",
    "build_conversation",
    "cache_key",
    "consolidate",
    "consolidate_async",
    "conversation_id",
    "cosine_similarity",
    "count_gap_boundaries",
    "extract_message_references",
    "extract_references",
    "extract_threads",
    "group_by_channel",
    "has_same_author",
    "hybrid_similarity",
    "is_bot_conversation",
    "is_bot_message",
    "normalize_text",
    "parse_ts",
    "reference_similarity",
    "segment",
    "segment_async",
    "segment_channel",
    "split_by_gap",
    "split_by_topic",
    "ts_to_iso",
]
