"""Tests for reference extraction and reference similarity."""

import pytest

from activity_summarizer.schemas import Message
from activity_summarizer.segmentation import (
    extract_message_references,
    extract_references,
    is_bot_conversation,
    is_bot_message,
    reference_similarity,
)


def _msg(text: str, *, user: str | None = "UA", subtype: str | None = None) -> Message:
    return Message(ts="100", channel="C1", user=user, text=text, subtype=subtype)


def _values(text: str) -> set[str]:
    return extract_references([_msg(text)]).values


class TestExtractReferences:
    def test_github_issues_and_urls_share_a_value(self):
        refs = extract_message_references(
            _msg("see #123 and acme/api#45, also https://github.com/acme/api/pull/123")
        )
        assert {(ref.kind, ref.value) for ref in refs} == {
            ("github_issue", "#123"),
            ("github_issue", "#45"),
            ("github_url", "#123"),
        }
        assert all(ref.message_ts == "100" for ref in refs)

    def test_hash_inside_a_word_is_not_an_issue(self):
        assert _values("channel word#12 here") == set()

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("blocked on AUTH-123 today", "AUTH-123"),
            ("got a NullPointerException again", "nullpointerexception"),
            ("upstream returned 503 error", "503"),
            ("restart payments-api please", "payments-api"),
        ],
    )
    def test_single_reference_kinds(self, text, expected):
        assert expected in _values(text)

    def test_lowercase_ticket_is_not_a_ticket(self):
        assert _values("see ab-12") == set()

    def test_slack_message_links_are_normalized(self):
        values = _values("context: https://acme.slack.com/archives/C024BE91L/p1700000000123456")
        assert "slack:C024BE91L:1700000000.123456" in values

    def test_cloudwatch_log_group(self):
        values = _values(
            "logs at https://console.aws.amazon.com/cloudwatch/home"
            "#logsV2:log-groups/log-group/Billing_Worker"
        )
        assert "billing_worker" in values

    def test_mentions_are_kept_but_not_topical(self):
        refs = extract_references([_msg("ping <@U123ABC|alice> and <@U999>")])
        assert refs.values == {"U123ABC", "U999"}
        assert refs.topical_values == frozenset()

    def test_empty_text_has_no_references(self):
        assert extract_message_references(_msg("")) == []


class TestReferenceSimilarity:
    def test_jaccard_over_topical_values(self):
        left = extract_references([_msg("AUTH-1 and #7")])
        right = extract_references([_msg("still #7")])
        assert reference_similarity(left, right) == pytest.approx(0.5)

    def test_no_references_means_zero(self):
        empty = extract_references([_msg("hello")])
        assert reference_similarity(empty, empty) == 0.0

    def test_shared_mentions_alone_do_not_count(self):
        left = extract_references([_msg("<@U1> can you look")])
        right = extract_references([_msg("<@U1> thanks")])
        assert reference_similarity(left, right) == 0.0

    def test_union_combines_references(self):
        left = extract_references([_msg("#1")])
        right = extract_references([_msg("#2")])
        assert left.union(right).values == {"#1", "#2"}


class TestBotDetection:
    def test_bot_subtype(self):
        assert is_bot_message(_msg("Build passed", subtype="bot_message"))

    def test_text_without_user_is_a_bot(self):
        assert is_bot_message(_msg("Deploy finished", user=None))

    def test_userless_empty_message_is_not_a_bot(self):
        assert not is_bot_message(_msg("", user=None))

    def test_conversation_is_bot_only_when_every_message_is(self):
        bot = _msg("Build passed", subtype="bot_message")
        assert is_bot_conversation([bot, bot])
        assert not is_bot_conversation([bot, _msg("nice")])
        assert not is_bot_conversation([])
