"""Tests for artifact save helpers."""

from __future__ import annotations

import json
from pathlib import Path

from activity_summarizer.io import ensure_directory, save_json, save_jsonl
from activity_summarizer.schemas import SegmentationStats


def test_save_json_overwrites_atomically(tmp_path: Path):
    json_path = tmp_path / "nested" / "artifact.json"
    save_json(json_path, {"value": 1})
    assert json.loads(json_path.read_text(encoding="utf-8"))["value"] == 1

    save_json(json_path, {"value": 2})
    assert json.loads(json_path.read_text(encoding="utf-8"))["value"] == 2
    assert [path.name for path in json_path.parent.iterdir()] == ["artifact.json"]


def test_save_json_accepts_models(tmp_path: Path):
    path = save_json(tmp_path / "stats.json", SegmentationStats(total_messages=3))
    assert json.loads(path.read_text(encoding="utf-8"))["total_messages"] == 3


def test_save_jsonl(tmp_path: Path):
    jsonl_path = tmp_path / "rows.jsonl"
    save_jsonl(jsonl_path, [{"index": 1}, SegmentationStats(total_messages=2)])
    rows = [json.loads(line) for line in jsonl_path.read_text(encoding="utf-8").splitlines()]
    assert rows[0] == {"index": 1}
    assert rows[1]["total_messages"] == 2


def test_ensure_directory(tmp_path: Path):
    created = ensure_directory(tmp_path / "a" / "b")
    assert created.is_dir()
    assert ensure_directory(created) == created
