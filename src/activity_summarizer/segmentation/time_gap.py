"""Inactivity-gap splitting of a chronologically sorted channel stream."""

from __future__ import annotations

from decimal import Decimal

from activity_summarizer.schemas import Message
from activity_summarizer.segmentation.timestamps import parse_ts


def split_by_gap(
    messages: list[Message],
    gap_threshold_seconds: float,
) -> list[list[Message]]:
    """Split sorted messages wherever consecutive timestamps are more than the threshold apart.

    A gap of exactly `gap_threshold_seconds` does not split.
    """

    if gap_threshold_seconds < 0:
        raise ValueError(f"gap_threshold_seconds must be >= 0, got {gap_threshold_seconds}.")
    if not messages:
        return []

    threshold = Decimal(str(gap_threshold_seconds))
    candidates: list[list[Message]] = []
    current = [messages[0]]
    previous_ts = parse_ts(messages[0].ts)

    for message in messages[1:]:
        current_ts = parse_ts(message.ts)
        if current_ts - previous_ts > threshold:
            candidates.append(current)
            current = [message]
        else:
            current.append(message)
        previous_ts = current_ts

    candidates.append(current)
    return candidates


def count_gap_boundaries(candidates: list[list[Message]]) -> int:
    """Number of boundaries that produced the given candidates."""

    return max(len(candidates) - 1, 0)
