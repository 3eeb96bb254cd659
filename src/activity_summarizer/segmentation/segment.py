"""Segmentation orchestrator: threads, time gaps, then topic shifts, per channel."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from activity_summarizer.config import Settings
from activity_summarizer.schemas import (
    ChannelFailure,
    Conversation,
    Message,
    SegmentationResult,
    SegmentationStats,
)
from activity_summarizer.segmentation.cache import EmbeddingCache
from activity_summarizer.segmentation.semantic import split_by_topic
from activity_summarizer.segmentation.threads import extract_threads
from activity_summarizer.segmentation.time_gap import count_gap_boundaries, split_by_gap
from activity_summarizer.segmentation.timestamps import UnorderedInputError, parse_ts, ts_to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SegmentationConfig:
    """Tunable thresholds for one segmentation run."""

    gap_threshold_seconds: float = 1800.0
    similarity_threshold: float = 0.6
    min_messages_for_semantic: int = 2
    semantic_enabled: bool = True
    user_id: str | None = None
    channel_max_concurrency: int = 4

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> SegmentationConfig:
        values = {
            "gap_threshold_seconds": settings.gap_threshold_seconds,
            "similarity_threshold": settings.similarity_threshold,
            "min_messages_for_semantic": settings.min_messages_for_semantic,
            "semantic_enabled": settings.semantic_enabled,
            "user_id": settings.tracked_user_id.strip() or None,
            "channel_max_concurrency": settings.channel_max_concurrency,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def conversation_id(channel_id: str, first_ts: str, last_ts: str) -> str:
    """Stable identity derived from channel and first/last timestamps."""

    digest = hashlib.sha256(f"{channel_id}:{first_ts}:{last_ts}".encode()).hexdigest()
    return digest[:16]


def build_conversation(
    messages: list[Message],
    *,
    channel_id: str,
    channel_name: str | None = None,
    user_id: str | None = None,
    thread_ts: str | None = None,
) -> Conversation:
    """Assemble a conversation from chronologically ordered messages."""

    if not messages:
        raise ValueError("Cannot build a conversation from zero messages.")

    first, last = messages[0], messages[-1]
    participants = sorted({message.user for message in messages if message.user})
    return Conversation(
        id=conversation_id(channel_id, first.ts, last.ts),
        channel_id=channel_id,
        channel_name=channel_name,
        is_thread=thread_ts is not None,
        thread_ts=thread_ts,
        messages=list(messages),
        start_time=ts_to_iso(first.ts),
        end_time=ts_to_iso(last.ts),
        participants=participants,
        message_count=len(messages),
        user_message_count=(
            sum(1 for message in messages if message.user == user_id) if user_id else 0
        ),
    )


def sort_channel_messages(messages: list[Message]) -> list[Message]:
    """Return messages sorted by ts; raise UnorderedInputError on malformed timestamps."""

    keyed = [(parse_ts(message.ts), position, message) for position, message in enumerate(messages)]
    keyed.sort(key=lambda item: (item[0], item[1]))
    return [message for _, _, message in keyed]


async def segment_channel(
    messages: list[Message],
    *,
    channel_id: str,
    config: SegmentationConfig | None = None,
    cache: EmbeddingCache | None = None,
    channel_name: str | None = None,
) -> SegmentationResult:
    """Partition one channel's messages into conversations.

    Semantic splitting runs only when a cache is supplied and enabled in config.
    Raises UnorderedInputError when a timestamp cannot be parsed.
    """

    cfg = config or SegmentationConfig()
    ordered = sort_channel_messages(messages)

    threads, remaining = extract_threads(ordered)
    candidates = split_by_gap(remaining, cfg.gap_threshold_seconds)
    time_gap_splits = count_gap_boundaries(candidates)

    use_semantic = cache is not None and cfg.semantic_enabled
    if use_semantic:
        refined = await asyncio.gather(
            *(
                split_by_topic(
                    candidate,
                    cache,
                    similarity_threshold=cfg.similarity_threshold,
                    min_messages=cfg.min_messages_for_semantic,
                )
                for candidate in candidates
            )
        )
    else:
        refined = [[candidate] for candidate in candidates]

    semantic_splits = sum(len(parts) - 1 for parts in refined)

    conversations = [
        build_conversation(
            group.messages,
            channel_id=channel_id,
            channel_name=channel_name,
            user_id=cfg.user_id,
            thread_ts=group.thread_ts,
        )
        for group in threads
    ]
    conversations.extend(
        build_conversation(
            part,
            channel_id=channel_id,
            channel_name=channel_name,
            user_id=cfg.user_id,
        )
        for parts in refined
        for part in parts
    )
    conversations.sort(key=lambda conv: (parse_ts(conv.messages[0].ts), conv.id))

    stats = SegmentationStats(
        total_messages=len(ordered),
        total_conversations=len(conversations),
        threads_extracted=len(threads),
        time_gap_splits=time_gap_splits,
        semantic_splits=semantic_splits,
    )
    logger.debug(
        "Segmented channel %s: %d messages -> %d conversations "
        "(threads=%d, gap_splits=%d, semantic_splits=%d)",
        channel_id,
        stats.total_messages,
        stats.total_conversations,
        stats.threads_extracted,
        stats.time_gap_splits,
        stats.semantic_splits,
    )
    return SegmentationResult(conversations=conversations, stats=stats)


def group_by_channel(messages: list[Message]) -> dict[str, list[Message]]:
    """Group messages by channel id, keeping input order within a channel."""

    grouped: dict[str, list[Message]] = {}
    for message in messages:
        grouped.setdefault(message.channel, []).append(message)
    return grouped


async def segment_async(
    messages: list[Message],
    *,
    config: SegmentationConfig | None = None,
    cache: EmbeddingCache | None = None,
    channel_names: Mapping[str, str] | None = None,
) -> SegmentationResult:
    """Segment every channel concurrently and merge the results.

    Channel failures are recorded in `failures`; they never abort the run.
    Conversations are ordered by channel id, then start time.
    """

    cfg = config or SegmentationConfig()
    names = channel_names or {}
    by_channel = group_by_channel(messages)
    limiter = asyncio.Semaphore(max(1, cfg.channel_max_concurrency))

    async def _run_channel(channel_id: str) -> SegmentationResult | ChannelFailure:
        channel_messages = by_channel[channel_id]
        async with limiter:
            try:
                return await segment_channel(
                    channel_messages,
                    channel_id=channel_id,
                    config=cfg,
                    cache=cache,
                    channel_name=names.get(channel_id),
                )
            except UnorderedInputError as exc:
                logger.warning("Skipping channel %s: %s", channel_id, exc)
                return _failure(channel_id, exc, len(channel_messages))
            except Exception as exc:
                logger.exception("Segmentation failed for channel %s", channel_id)
                return _failure(channel_id, exc, len(channel_messages))

    channel_ids = sorted(by_channel)
    outcomes = await asyncio.gather(*(_run_channel(channel_id) for channel_id in channel_ids))

    conversations: list[Conversation] = []
    stats: list[SegmentationStats] = []
    failures: list[ChannelFailure] = []
    for outcome in outcomes:
        if isinstance(outcome, ChannelFailure):
            failures.append(outcome)
            continue
        conversations.extend(outcome.conversations)
        stats.append(outcome.stats)

    return SegmentationResult(
        conversations=conversations,
        stats=SegmentationStats.combine(stats),
        failures=failures,
    )


def _failure(channel_id: str, exc: Exception, message_count: int) -> ChannelFailure:
    return ChannelFailure(
        channel_id=channel_id,
        error_type=type(exc).__name__,
        error=str(exc),
        message_count=message_count,
    )


def segment(
    messages: list[Message],
    *,
    config: SegmentationConfig | None = None,
    cache: EmbeddingCache | None = None,
    channel_names: Mapping[str, str] | None = None,
) -> SegmentationResult:
    """Synchronous entry point for `segment_async`."""

    return asyncio.run(
        segment_async(messages, config=config, cache=cache, channel_names=channel_names)
    )
