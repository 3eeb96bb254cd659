"""Tests for timestamp parsing and time-gap splitting."""

import pytest

from activity_summarizer.schemas import Message
from activity_summarizer.segmentation import (
    UnorderedInputError,
    count_gap_boundaries,
    parse_ts,
    split_by_gap,
    ts_to_iso,
)


def _msg(ts: str) -> Message:
    return Message(ts=ts, channel="C1", user="U1", text="hello")


class TestTimestamps:
    def test_parse_keeps_fractional_precision(self):
        assert parse_ts("1700000000.000100") - parse_ts("1700000000.000099") > 0

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            "abc",
            "NaN",
            "Infinity",
            "-5",
            "1e3",
            "1_000",
            "+12",
            ".5",
            "300000000000.000100",
            None,
        ],
    )
    def test_malformed_timestamps_raise(self, raw):
        with pytest.raises(UnorderedInputError):
            parse_ts(raw)

    def test_largest_representable_timestamp(self):
        assert ts_to_iso("253402300799.999999") == "9999-12-31T23:59:59.999999+00:00"
        with pytest.raises(UnorderedInputError, match="out of range"):
            parse_ts("253402300800")

    def test_iso_rendering(self):
        assert ts_to_iso("0") == "1970-01-01T00:00:00+00:00"
        assert ts_to_iso("1.5") == "1970-01-01T00:00:01.500000+00:00"


class TestSplitByGap:
    def test_gap_equal_to_threshold_does_not_split(self):
        candidates = split_by_gap([_msg("0"), _msg("1800")], 1800)
        assert len(candidates) == 1

    def test_gap_above_threshold_splits(self):
        candidates = split_by_gap([_msg("0"), _msg("1801")], 1800)
        assert [[m.ts for m in part] for part in candidates] == [["0"], ["1801"]]
        assert count_gap_boundaries(candidates) == 1

    def test_fractional_gap_just_above_threshold_splits(self):
        candidates = split_by_gap([_msg("100.000000"), _msg("1900.000001")], 1800)
        assert len(candidates) == 2

    def test_multiple_splits(self):
        messages = [_msg(ts) for ts in ["100", "110", "5000", "5010", "9000"]]
        candidates = split_by_gap(messages, 1800)
        assert [[m.ts for m in part] for part in candidates] == [
            ["100", "110"],
            ["5000", "5010"],
            ["9000"],
        ]
        assert count_gap_boundaries(candidates) == 2

    def test_empty_input(self):
        assert split_by_gap([], 1800) == []
        assert count_gap_boundaries([]) == 0

    def test_zero_threshold_splits_every_distinct_timestamp(self):
        candidates = split_by_gap([_msg("1"), _msg("2"), _msg("3")], 0)
        assert len(candidates) == 3

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError, match="gap_threshold_seconds"):
            split_by_gap([_msg("1")], -1)
