"""Extract cross-conversation references (issues, tickets, errors, services) from message text."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from activity_summarizer.schemas import Message

# Each pattern yields the normalized reference value from its match.
_GITHUB_ISSUE_RE = re.compile(r"(?:^|[\s(\[])(?:([\w-]+/[\w-]+)#|#)(\d+)\b")
_GITHUB_URL_RE = re.compile(r"github\.com/[\w-]+/[\w-]+/(?:issues|pull)/(\d+)", re.IGNORECASE)
_JIRA_TICKET_RE = re.compile(r"\b([A-Z]{2,}[A-Z0-9]*-\d+)\b")
_ERROR_PATTERN_RE = re.compile(
    r"\b([a-z]{2,}(?:error|exception))\b|\b([45]\d{2})\s+(?:error|status)\b",
    re.IGNORECASE,
)
_USER_MENTION_RE = re.compile(r"<@(U[A-Z0-9]+)(?:\|[^>]+)?>")
_AWS_LOG_GROUP_RE = re.compile(
    r"cloudwatch[^#]*#[^/]*log-groups/log-group(?:/|%252F|\$252F)([a-zA-Z0-9_-]+)",
    re.IGNORECASE,
)
_SERVICE_NAME_RE = re.compile(
    r"\b([a-z][a-z0-9]*-(?:auth|api|web|service|worker|backend|frontend|core|app))\b",
    re.IGNORECASE,
)
_SLACK_MESSAGE_RE = re.compile(
    r"https?://[\w-]+\.slack\.com/archives/([A-Z0-9]+)/p(\d+)(?:\?\S*)?",
    re.IGNORECASE,
)

# Mentions say who is involved, not what is discussed.
_NON_TOPICAL_KINDS = frozenset({"user_mention"})


@dataclass(frozen=True, slots=True)
class Reference:
    """One reference found in a message."""

    kind: str
    value: str
    raw: str
    message_ts: str


@dataclass(frozen=True, slots=True)
class ReferenceSet:
    """All references found in a group of messages."""

    references: tuple[Reference, ...] = ()

    @property
    def values(self) -> frozenset[str]:
        return frozenset(reference.value for reference in self.references)

    @property
    def topical_values(self) -> frozenset[str]:
        """Values used for similarity, excluding user mentions."""

        return frozenset(
            reference.value
            for reference in self.references
            if reference.kind not in _NON_TOPICAL_KINDS
        )

    def union(self, other: ReferenceSet) -> ReferenceSet:
        return ReferenceSet(self.references + other.references)


def _slack_ts(raw: str) -> str:
    # Archive links encode "1700000000.123456" as "p1700000000123456".
    return f"{raw[:10]}.{raw[10:]}" if len(raw) > 10 else raw


def extract_message_references(message: Message) -> list[Reference]:
    """Return every reference in one message, in pattern order."""

    text = message.text or ""
    if not text:
        return []

    found: list[Reference] = []

    def add(kind: str, value: str, raw: str) -> None:
        found.append(Reference(kind=kind, value=value, raw=raw, message_ts=message.ts))

    for match in _GITHUB_ISSUE_RE.finditer(text):
        add("github_issue", f"#{match.group(2)}", match.group(0).strip())
    for match in _GITHUB_URL_RE.finditer(text):
        add("github_url", f"#{match.group(1)}", match.group(0))
    for match in _JIRA_TICKET_RE.finditer(text):
        add("jira_ticket", match.group(1).upper(), match.group(0))
    for match in _ERROR_PATTERN_RE.finditer(text):
        add("error_pattern", (match.group(1) or match.group(2)).lower(), match.group(0))
    for match in _USER_MENTION_RE.finditer(text):
        add("user_mention", match.group(1), match.group(0))
    for match in _AWS_LOG_GROUP_RE.finditer(text):
        add("aws_log_group", match.group(1).lower(), match.group(0))
    for match in _SERVICE_NAME_RE.finditer(text):
        add("service_name", match.group(1).lower(), match.group(0))
    for match in _SLACK_MESSAGE_RE.finditer(text):
        add("slack_message", f"slack:{match.group(1)}:{_slack_ts(match.group(2))}", match.group(0))
    return found


def extract_references(messages: Iterable[Message]) -> ReferenceSet:
    """Collect references across messages, e.g. one conversation's."""

    collected: list[Reference] = []
    for message in messages:
        collected.extend(extract_message_references(message))
    return ReferenceSet(tuple(collected))


def reference_similarity(left: ReferenceSet, right: ReferenceSet) -> float:
    """Jaccard similarity of topical reference values; 0.0 when both are empty."""

    left_values = left.topical_values
    right_values = right.topical_values
    union = left_values | right_values
    if not union:
        return 0.0
    return len(left_values & right_values) / len(union)


def is_bot_message(message: Message) -> bool:
    """Integration posts carry a bot subtype, or text without a user."""

    if message.subtype == "bot_message":
        return True
    return not message.user and bool(message.text)


def is_bot_conversation(messages: Iterable[Message]) -> bool:
    """Return whether every message in the group is a bot message."""

    items = list(messages)
    return bool(items) and all(is_bot_message(message) for message in items)
