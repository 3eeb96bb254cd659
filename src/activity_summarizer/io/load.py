"""Loaders for chat message datasets."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from activity_summarizer.schemas import Message


class MessageDatasetError(ValueError):
    """Raised when a message dataset fails schema or integrity checks."""


@dataclass(frozen=True)
class DatasetSummary:
    """Aggregate summary for a set of messages."""

    message_count: int
    channel_count: int
    unique_user_count: int
    thread_reply_count: int
    empty_text_count: int


def load_messages_jsonl(path: str | Path) -> list[Message]:
    """Load and validate message records from a JSONL file.

    Each non-empty line must be a JSON object that conforms to the `Message`
    schema. A `(channel, ts)` pair may appear only once.
    """

    file_path = Path(path)
    if not file_path.exists():
        raise MessageDatasetError(f"Message file does not exist: {file_path}")

    messages: list[Message] = []
    seen_ids: set[tuple[str, str]] = set()

    with file_path.open(encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            stripped = line.strip()
            if not stripped:
                continue

            try:
                payload = json.loads(stripped)
            except json.JSONDecodeError as exc:
                raise MessageDatasetError(
                    f"Invalid JSON on line {line_number} of {file_path}: {exc.msg}"
                ) from exc

            if not isinstance(payload, dict):
                raise MessageDatasetError(
                    f"Expected object on line {line_number} of {file_path}, "
                    f"got {type(payload).__name__}."
                )

            try:
                message = Message.model_validate(payload)
            except ValidationError as exc:
                raise MessageDatasetError(
                    f"Message schema validation failed on line {line_number} of "
                    f"{file_path}: {exc}"
                ) from exc

            message_id = (message.channel, message.ts)
            if message_id in seen_ids:
                raise MessageDatasetError(
                    f"Duplicate message ts '{message.ts}' in channel '{message.channel}' "
                    f"found on line {line_number} of {file_path}."
                )

            seen_ids.add(message_id)
            messages.append(message)

    if not messages:
        raise MessageDatasetError(f"No messages found in file: {file_path}")

    return messages


def summarize_messages(messages: list[Message]) -> DatasetSummary:
    """Compute basic summary stats for a message list."""

    return DatasetSummary(
        message_count=len(messages),
        channel_count=len({message.channel for message in messages}),
        unique_user_count=len({message.user for message in messages if message.user}),
        thread_reply_count=sum(1 for message in messages if message.is_thread_reply),
        empty_text_count=sum(1 for message in messages if not message.text.strip()),
    )
