"""Group related conversations into activities without splitting or dropping any of them.

Grouping runs in order: bot posts join the neighbouring human conversation,
short acknowledgements join a larger neighbour, then every remaining pair is
linked when it is adjacent in time, close and by the same author, or similar
by shared references (optionally blended with embedding similarity).
Linked pairs are merged transitively.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from decimal import Decimal

import numpy as np

from activity_summarizer.config import Settings
from activity_summarizer.models.provider import EmbeddingProviderError
from activity_summarizer.schemas import (
    ConsolidationResult,
    ConsolidationStats,
    Conversation,
    ConversationGroup,
    Message,
)
from activity_summarizer.segmentation.cache import EmbeddingCache
from activity_summarizer.segmentation.references import (
    ReferenceSet,
    extract_references,
    is_bot_conversation,
    reference_similarity,
)
from activity_summarizer.segmentation.semantic import cosine_similarity
from activity_summarizer.segmentation.timestamps import parse_ts, ts_to_iso

logger = logging.getLogger(__name__)

_PARTICIPANT_OVERLAP_FOR_SAME_AUTHOR = 0.7


@dataclass(frozen=True, slots=True)
class ConsolidationConfig:
    """Time windows (minutes) and similarity thresholds for grouping."""

    adjacent_merge_window_minutes: float = 15.0
    proximity_window_minutes: float = 90.0
    proximity_min_similarity: float = 0.20
    dm_window_minutes: float = 180.0
    dm_min_similarity: float = 0.05
    same_author_max_gap_minutes: float = 360.0
    same_author_min_similarity: float = 0.20
    similarity_threshold: float = 0.4
    similarity_max_gap_minutes: float = 240.0
    bot_merge_window_minutes: float = 30.0
    trivial_max_messages: int = 2
    trivial_max_characters: int = 100
    trivial_merge_window_minutes: float = 30.0
    use_embeddings: bool = True
    reference_weight: float = 0.6
    embedding_weight: float = 0.4
    user_id: str | None = None

    def __post_init__(self) -> None:
        windows = {
            "adjacent_merge_window_minutes": self.adjacent_merge_window_minutes,
            "proximity_window_minutes": self.proximity_window_minutes,
            "dm_window_minutes": self.dm_window_minutes,
            "same_author_max_gap_minutes": self.same_author_max_gap_minutes,
            "similarity_max_gap_minutes": self.similarity_max_gap_minutes,
            "bot_merge_window_minutes": self.bot_merge_window_minutes,
            "trivial_merge_window_minutes": self.trivial_merge_window_minutes,
        }
        for name, value in windows.items():
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}.")
        if self.reference_weight < 0 or self.embedding_weight < 0:
            raise ValueError("reference_weight and embedding_weight must be >= 0.")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> ConsolidationConfig:
        values = {
            "adjacent_merge_window_minutes": settings.consolidation_adjacent_window_minutes,
            "similarity_threshold": settings.consolidation_similarity_threshold,
            "similarity_max_gap_minutes": settings.consolidation_max_gap_minutes,
            "use_embeddings": settings.consolidation_use_embeddings,
            "user_id": settings.tracked_user_id.strip() or None,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


@dataclass
class _Unit:
    """Conversations already joined by the bot or trivial passes."""

    conversations: list[Conversation]
    start: Decimal = field(init=False)
    end: Decimal = field(init=False)

    def __post_init__(self) -> None:
        stamps = [parse_ts(message.ts) for message in self.messages]
        self.start = min(stamps)
        self.end = max(stamps)

    @property
    def messages(self) -> list[Message]:
        return [message for conv in self.conversations for message in conv.messages]

    @property
    def message_count(self) -> int:
        return sum(len(conv.messages) for conv in self.conversations)

    @property
    def participants(self) -> set[str]:
        return {user for conv in self.conversations for user in conv.participants}

    @property
    def channel_ids(self) -> set[str]:
        return {conv.channel_id for conv in self.conversations}

    @property
    def sort_key(self) -> tuple[Decimal, str]:
        return (self.start, min(conv.id for conv in self.conversations))

    def join(self, other: _Unit) -> _Unit:
        return _Unit(self.conversations + other.conversations)


def _gap_minutes(earlier: _Unit, later: _Unit) -> float:
    return abs(float(later.start - earlier.end)) / 60.0


def _is_trivial(unit: _Unit, config: ConsolidationConfig) -> bool:
    if unit.message_count > config.trivial_max_messages:
        return False
    characters = sum(len(message.text or "") for message in unit.messages)
    return characters < config.trivial_max_characters


def _merge_bot_units(units: list[_Unit], window: float) -> tuple[list[_Unit], int]:
    ordered = sorted(units, key=lambda unit: unit.sort_key)
    merged: list[_Unit] = []
    joined = 0
    for index, unit in enumerate(ordered):
        if is_bot_conversation(unit.messages):
            previous = merged[-1] if merged else None
            if (
                previous is not None
                and not is_bot_conversation(previous.messages)
                and _gap_minutes(previous, unit) <= window
            ):
                merged[-1] = previous.join(unit)
                joined += 1
                continue
            if index + 1 < len(ordered):
                following = ordered[index + 1]
                if (
                    not is_bot_conversation(following.messages)
                    and _gap_minutes(unit, following) <= window
                ):
                    ordered[index + 1] = unit.join(following)
                    joined += 1
                    continue
        merged.append(unit)
    return merged, joined


def _merge_trivial_units(
    units: list[_Unit], config: ConsolidationConfig
) -> tuple[list[_Unit], int, int]:
    """Fold short acknowledgements into a larger neighbour; orphans stay as their own unit."""

    ordered = sorted(units, key=lambda unit: unit.sort_key)
    window = config.trivial_merge_window_minutes
    merged: list[_Unit] = []
    joined = 0
    orphans = 0
    for index, unit in enumerate(ordered):
        if not _is_trivial(unit, config):
            merged.append(unit)
            continue
        previous = merged[-1] if merged else None
        if (
            previous is not None
            and previous.message_count > unit.message_count
            and _gap_minutes(previous, unit) <= window
        ):
            merged[-1] = previous.join(unit)
            joined += 1
            continue
        if index + 1 < len(ordered):
            following = ordered[index + 1]
            if (
                following.message_count > unit.message_count
                and _gap_minutes(unit, following) <= window
            ):
                ordered[index + 1] = unit.join(following)
                joined += 1
                continue
        orphans += 1
        merged.append(unit)
    return merged, joined, orphans


def has_same_author(
    left: set[str],
    right: set[str],
    user_id: str | None = None,
) -> bool:
    """Treat two participant sets as one author's work.

    True when the tracked user took part in both, when both have the same
    single participant, or when the sets overlap by at least 70%.
    """

    if user_id and user_id in left and user_id in right:
        return True
    if len(left) == 1 and len(right) == 1:
        return left == right
    union = left | right
    if not union:
        return False
    return len(left & right) / len(union) >= _PARTICIPANT_OVERLAP_FOR_SAME_AUTHOR


def hybrid_similarity(
    references: float,
    left_vector: np.ndarray | None,
    right_vector: np.ndarray | None,
    *,
    reference_weight: float = 0.6,
    embedding_weight: float = 0.4,
) -> float:
    """Blend reference overlap with embedding cosine; reference overlap alone without vectors.

    Negative cosine contributes nothing.
    """

    if left_vector is None or right_vector is None:
        return references
    semantic = max(0.0, cosine_similarity(left_vector, right_vector))
    return reference_weight * references + embedding_weight * semantic


def _unit_text(unit: _Unit) -> str:
    ordered = sorted(unit.messages, key=lambda message: parse_ts(message.ts))
    return " ".join(message.text for message in ordered if message.text and message.text.strip())


async def _embed_units(
    units: list[_Unit], cache: EmbeddingCache
) -> tuple[list[np.ndarray | None], int]:
    texts = [_unit_text(unit) for unit in units]
    targets = [index for index, text in enumerate(texts) if text]
    results = await asyncio.gather(
        *(cache.get_or_compute(texts[index]) for index in targets),
        return_exceptions=True,
    )

    vectors: list[np.ndarray | None] = [None] * len(units)
    failures = 0
    for index, result in zip(targets, results):
        if isinstance(result, EmbeddingProviderError):
            failures += 1
            logger.warning(
                "Embedding failed for conversation %s; using references only: %s",
                units[index].conversations[0].id,
                result,
            )
            continue
        if isinstance(result, BaseException):
            raise result
        vectors[index] = result
    return vectors, failures


def _is_dm_pair(left: _Unit, right: _Unit) -> bool:
    # Direct-message channel ids start with "D".
    channels = left.channel_ids | right.channel_ids
    return len(channels) == 1 and next(iter(channels)).startswith("D")


class _DisjointSet:
    def __init__(self, size: int) -> None:
        self._parent = list(range(size))

    def find(self, item: int) -> int:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            parent = self._parent[item]
            self._parent[item] = root
            item = parent
        return root

    def union(self, left: int, right: int) -> None:
        left_root, right_root = self.find(left), self.find(right)
        if left_root != right_root:
            self._parent[left_root] = right_root


def _build_group(units: list[_Unit], references: list[ReferenceSet]) -> ConversationGroup:
    conversations = sorted(
        (conv for unit in units for conv in unit.conversations),
        key=lambda conv: (parse_ts(conv.messages[0].ts), conv.id),
    )
    member_ids = [conv.id for conv in conversations]
    start = min(unit.start for unit in units)
    end = max(unit.end for unit in units)
    shared: set[str] = set()
    for reference_set in references:
        shared |= reference_set.values

    return ConversationGroup(
        id=hashlib.sha256(":".join(sorted(member_ids)).encode()).hexdigest()[:16],
        conversations=conversations,
        shared_references=sorted(shared),
        start_time=ts_to_iso(str(start)),
        end_time=ts_to_iso(str(end)),
        participants=sorted({user for conv in conversations for user in conv.participants}),
        channel_ids=sorted({conv.channel_id for conv in conversations}),
        total_message_count=sum(len(conv.messages) for conv in conversations),
        total_user_message_count=sum(conv.user_message_count for conv in conversations),
        has_threads=any(conv.is_thread for conv in conversations),
        original_conversation_ids=member_ids,
    )


async def consolidate_async(
    conversations: list[Conversation],
    *,
    config: ConsolidationConfig | None = None,
    cache: EmbeddingCache | None = None,
) -> ConsolidationResult:
    """Group related conversations.

    Every input conversation lands in exactly one group, unchanged. Embedding
    similarity is used only when a cache is supplied and enabled in config;
    a failed embedding falls back to reference similarity for that pair.
    """

    cfg = config or ConsolidationConfig()
    if not conversations:
        return ConsolidationResult()

    units = [_Unit([conv]) for conv in conversations]
    units, bots_merged = _merge_bot_units(units, cfg.bot_merge_window_minutes)
    units, trivials_merged, orphans_kept = _merge_trivial_units(units, cfg)
    units.sort(key=lambda unit: unit.sort_key)

    references = [extract_references(unit.messages) for unit in units]
    vectors: list[np.ndarray | None] = [None] * len(units)
    embedding_failures = 0
    if cache is not None and cfg.use_embeddings:
        vectors, embedding_failures = await _embed_units(units, cache)

    links = _DisjointSet(len(units))
    adjacent_merged = proximity_merged = same_author_merged = 0
    for i in range(len(units)):
        for j in range(i + 1, len(units)):
            left, right = units[i], units[j]
            similarity = hybrid_similarity(
                reference_similarity(references[i], references[j]),
                vectors[i],
                vectors[j],
                reference_weight=cfg.reference_weight,
                embedding_weight=cfg.embedding_weight,
            )
            same_author = has_same_author(left.participants, right.participants, cfg.user_id)
            gap = _gap_minutes(left, right)

            is_adjacent = gap <= cfg.adjacent_merge_window_minutes
            if _is_dm_pair(left, right):
                proximity_window, proximity_floor = cfg.dm_window_minutes, cfg.dm_min_similarity
            else:
                proximity_window = cfg.proximity_window_minutes
                proximity_floor = cfg.proximity_min_similarity
            is_proximity = (
                same_author
                and gap <= proximity_window
                and (proximity_floor == 0 or similarity >= proximity_floor)
            )
            if same_author:
                threshold = cfg.same_author_min_similarity
                max_gap = cfg.same_author_max_gap_minutes
            else:
                threshold = cfg.similarity_threshold
                max_gap = cfg.similarity_max_gap_minutes
            is_similar = gap <= max_gap and similarity >= threshold

            if not (is_adjacent or is_proximity or is_similar):
                continue
            if is_adjacent and not same_author:
                adjacent_merged += 1
            elif is_proximity and similarity < cfg.same_author_min_similarity:
                proximity_merged += 1
            elif same_author and similarity < cfg.similarity_threshold:
                same_author_merged += 1
            links.union(i, j)

    members: dict[int, list[int]] = {}
    for index in range(len(units)):
        members.setdefault(links.find(index), []).append(index)

    groups = [
        _build_group([units[index] for index in indexes], [references[index] for index in indexes])
        for indexes in members.values()
    ]
    groups.sort(key=lambda group: (parse_ts(group.conversations[0].messages[0].ts), group.id))

    stats = ConsolidationStats(
        original_conversations=len(conversations),
        consolidated_groups=len(groups),
        bot_conversations_merged=bots_merged,
        trivial_conversations_merged=trivials_merged,
        trivial_orphans_kept=orphans_kept,
        adjacent_merged=adjacent_merged,
        proximity_merged=proximity_merged,
        same_author_merged=same_author_merged,
        reference_groups_merged=sum(len(indexes) - 1 for indexes in members.values()),
        embedding_failures=embedding_failures,
    )
    logger.debug(
        "Consolidated %d conversations into %d groups",
        stats.original_conversations,
        stats.consolidated_groups,
    )
    return ConsolidationResult(groups=groups, stats=stats)


def consolidate(
    conversations: list[Conversation],
    *,
    config: ConsolidationConfig | None = None,
    cache: EmbeddingCache | None = None,
) -> ConsolidationResult:
    """Synchronous entry point for `consolidate_async`."""

    return asyncio.run(consolidate_async(conversations, config=config, cache=cache))
