"""Utilities for saving segmentation outputs."""

from __future__ import annotations

import json
import logging
import os
import uuid
from contextlib import suppress
from pathlib import Path
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def ensure_directory(path: str | Path) -> Path:
    """Create a directory if it does not exist and return it."""

    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _fsync_directory(path: Path) -> None:
    """Best-effort fsync for a directory."""

    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        logger.debug("fsync: unable to open directory %s", path)
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("fsync: sync failed for directory %s", path)
    finally:
        os.close(fd)


def _atomic_write_text(path: Path, content: str) -> None:
    """Atomically replace file contents via temp-write + rename."""

    ensure_directory(path.parent)
    temp_path = path.parent / f".{path.name}.{uuid.uuid4().hex}.tmp"
    try:
        with temp_path.open("w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
        _fsync_directory(path.parent)
    finally:
        if temp_path.exists():
            with suppress(OSError):
                temp_path.unlink()


def _as_json_data(row: dict[str, Any] | BaseModel) -> dict[str, Any]:
    return row.model_dump(mode="json") if isinstance(row, BaseModel) else row


def save_json(path: str | Path, payload: dict[str, Any] | BaseModel) -> Path:
    """Save a JSON object to disk."""

    file_path = Path(path)
    content = json.dumps(_as_json_data(payload), ensure_ascii=True, indent=2) + "\n"
    _atomic_write_text(file_path, content)
    return file_path


def save_jsonl(path: str | Path, rows: list[dict[str, Any] | BaseModel]) -> Path:
    """Save records as JSONL."""

    file_path = Path(path)
    content = "".join(json.dumps(_as_json_data(row), ensure_ascii=True) + "\n" for row in rows)
    _atomic_write_text(file_path, content)
    return file_path
