"""Thread extraction from a flat channel message stream."""

from __future__ import annotations

from dataclasses import dataclass

from activity_summarizer.schemas import Message
from activity_summarizer.segmentation.timestamps import parse_ts


@dataclass(frozen=True, slots=True)
class ThreadGroup:
    """A thread root (when present in the input) plus its replies, ordered by ts."""

    thread_ts: str
    messages: list[Message]

    @property
    def reply_count(self) -> int:
        return sum(1 for message in self.messages if message.is_thread_reply)


def extract_threads(messages: list[Message]) -> tuple[list[ThreadGroup], list[Message]]:
    """Pull reply chains out of a channel stream.

    Replies are grouped by `thread_ts`. A group's root message, matched by
    `ts == thread_ts`, moves into the thread with its replies. Roots without
    any reply in the input are not threads and stay in the remaining stream,
    which keeps the input order.
    """

    replies_by_root: dict[str, list[Message]] = {}
    for message in messages:
        if message.is_thread_reply:
            replies_by_root.setdefault(message.thread_ts, []).append(message)

    if not replies_by_root:
        return [], list(messages)

    roots: dict[str, Message] = {}
    remaining: list[Message] = []
    for message in messages:
        if message.is_thread_reply:
            continue
        if message.ts in replies_by_root and message.ts not in roots:
            roots[message.ts] = message
            continue
        remaining.append(message)

    groups: list[ThreadGroup] = []
    for thread_ts, replies in replies_by_root.items():
        members = list(replies)
        root = roots.get(thread_ts)
        if root is not None:
            members.append(root)
        members.sort(key=lambda item: parse_ts(item.ts))
        groups.append(ThreadGroup(thread_ts=thread_ts, messages=members))

    groups.sort(key=lambda group: parse_ts(group.messages[0].ts))
    return groups, remaining
