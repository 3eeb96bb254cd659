"""I/O utilities for reading messages and writing segmentation artifacts."""

from activity_summarizer.io.load import (
    DatasetSummary,
    MessageDatasetError,
    load_messages_jsonl,
    summarize_messages,
)
from activity_summarizer.io.save import ensure_directory, save_json, save_jsonl

__all__ = [
    "DatasetSummary",
    "MessageDatasetError",
    "ensure_directory",
    "load_messages_jsonl",
    "save_json",
    "save_jsonl",
    "summarize_messages",
]
