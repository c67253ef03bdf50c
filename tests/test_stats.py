"""Tests for leaderboard statistics."""

from prose_polisher.models import PatternLeaderboard
from prose_polisher.stats import HISTOGRAM_BUCKETS, summarize


class TestSummarize:
    def test_empty(self):
        stats = summarize(PatternLeaderboard())
        assert stats.total_entries == 0
        assert stats.mean_score == 0.0
        assert stats.score_histogram == {b: 0 for b in HISTOGRAM_BUCKETS}

    def test_counts_and_scores(self):
        lb = PatternLeaderboard(
            merged={"her eyes sparkled with amusement/mischief": 30.0},
            remaining={"suddenly": 9.0, "a faint blush": 4.0, "the dark": 2.0},
        )
        stats = summarize(lb)
        assert stats.total_entries == 4
        assert stats.merged_patterns == 1
        assert stats.remaining_phrases == 3
        assert stats.min_score == 2.0
        assert stats.max_score == 30.0
        assert stats.mean_score == 11.2
        assert stats.median_score == 6.5
        assert stats.score_histogram == {"<3": 1, "3-5": 1, "5-10": 1, "10-25": 0, ">25": 1}
