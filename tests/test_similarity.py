"""
Tests for similarity metrics and order-preserving deduplication.
"""
import pytest
from collections import namedtuple

from insight_core.evidence.similarity import (
    EditDistanceSimilarity,
    JaccardWordSimilarity,
    deduplicate,
    levenshtein_distance,
)

Item = namedtuple("Item", "text source")


def _dedupe(items, metric, threshold):
    return deduplicate(items, metric, threshold,
                       text_of=lambda i: i.text,
                       source_of=lambda i: i.source)


class TestLevenshtein:
    """Test edit distance."""

    @pytest.mark.parametrize("a,b,expected", [
        ("kitten", "sitting", 3),
        ("", "abc", 3),
        ("abc", "", 3),
        ("same", "same", 0),
        ("flaw", "lawn", 2),
    ])
    def test_distance(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    def test_symmetric(self):
        assert levenshtein_distance("review", "reviews") == levenshtein_distance("reviews", "review")


class TestEditDistanceSimilarity:
    """Test normalized edit distance ratio."""

    def test_identical_is_one(self):
        assert EditDistanceSimilarity().similarity("Send report", "send report") == 1.0

    def test_two_empty_strings_are_identical(self):
        assert EditDistanceSimilarity().similarity("", "") == 1.0

    def test_ratio(self):
        # one insertion over 16 characters
        sim = EditDistanceSimilarity().similarity("send the reports", "send the report")
        assert sim == pytest.approx(15 / 16)

    def test_scope_is_same_message_only(self):
        metric = EditDistanceSimilarity()
        assert metric.in_scope("m1", "m1")
        assert not metric.in_scope("m1", "m2")


class TestJaccardWordSimilarity:
    """Test word-set overlap."""

    def test_partial_overlap(self):
        assert JaccardWordSimilarity().similarity("a b", "b c") == pytest.approx(1 / 3)

    def test_case_insensitive(self):
        assert JaccardWordSimilarity().similarity("Launch Monday", "launch monday") == 1.0

    def test_empty_union_is_zero(self):
        assert JaccardWordSimilarity().similarity("", "   ") == 0.0

    def test_scope_is_global(self):
        assert JaccardWordSimilarity().in_scope("m1", "m2")


class TestDeduplicate:
    """Test first-occurrence-wins deduplication."""

    def test_first_occurrence_wins(self):
        items = [Item("send the report", "m1"), Item("send the reports", "m1")]
        kept = _dedupe(items, EditDistanceSimilarity(), 0.8)
        assert kept == [items[0]]

    def test_edit_distance_never_collapses_across_messages(self):
        items = [Item("send the report", "m1"), Item("send the report", "m2")]
        kept = _dedupe(items, EditDistanceSimilarity(), 0.8)
        assert kept == items

    def test_jaccard_collapses_across_messages(self):
        items = [Item("We agreed: Launch on Monday.", "m1"), Item("We agreed: launch on Monday.", "m2")]
        kept = _dedupe(items, JaccardWordSimilarity(), 0.7)
        assert kept == [items[0]]

    def test_threshold_is_strict(self):
        # similarity exactly at threshold is not a duplicate
        items = [Item("a b c d", "m1"), Item("a b c d e", "m2")]
        assert JaccardWordSimilarity().similarity(items[0].text, items[1].text) == 0.8
        kept = _dedupe(items, JaccardWordSimilarity(), 0.8)
        assert kept == items

    def test_preserves_order(self):
        items = [Item("alpha", "m1"), Item("beta", "m2"), Item("gamma", "m3")]
        assert _dedupe(items, JaccardWordSimilarity(), 0.7) == items

    def test_no_two_kept_items_above_threshold(self):
        items = [
            Item("ship the release on friday", "m1"),
            Item("ship the release on friday please", "m2"),
            Item("write the changelog", "m3"),
            Item("ship release on friday", "m4"),
        ]
        metric = JaccardWordSimilarity()
        kept = _dedupe(items, metric, 0.7)
        for i, a in enumerate(kept):
            for b in kept[i + 1:]:
                assert metric.similarity(a.text, b.text) <= 0.7
