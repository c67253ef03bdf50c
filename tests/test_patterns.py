"""Tests for pattern merging."""

from prose_polisher import patterns
from prose_polisher.models import NgramEntry
from prose_polisher.patterns import merge
from prose_polisher.tracker import NgramFrequencyTracker


def entries(**scores: float) -> list[NgramEntry]:
    return [NgramEntry(text=text.replace("_", " "), score=score) for text, score in scores.items()]


def _accounted(phrase: str, leaderboard) -> bool:
    if phrase in leaderboard.remaining:
        return True
    containers = list(leaderboard.remaining)
    for group in leaderboard.patterns:
        containers.extend(group.members)
    return any(f" {phrase} " in f" {other} " for other in containers)


class TestMerge:
    def test_groups_shared_prefix(self):
        lb = merge(entries(
            her_eyes_sparkled_with_mischief=5.0,
            her_eyes_sparkled_with_amusement=4.0,
            her_eyes=2.0,
            a_faint_blush=6.0,
            faint_blush=3.0,
            shivers_down_spine=1.0,
        ))
        assert dict(lb.merged) == {"her eyes sparkled with amusement/mischief": 9.0}
        assert dict(lb.remaining) == {"a faint blush": 6.0}
        group = lb.patterns[0]
        assert group.prefix == "her eyes sparkled with"
        assert group.members == ("her eyes sparkled with amusement", "her eyes sparkled with mischief")
        assert group.representative == "her eyes sparkled with mischief"

    def test_higher_scoring_subphrase_not_absorbed(self):
        lb = merge(entries(suddenly=9.0, suddenly_he=3.0))
        assert dict(lb.remaining) == {"suddenly": 9.0, "suddenly he": 3.0}
        assert not lb.merged

    def test_prefix_of_pattern_absorbed(self):
        lb = merge(entries(the_dark_lord_rose=4.0, the_dark_lord_fell=4.0, the_dark=5.0))
        assert dict(lb.merged) == {"the dark lord fell/rose": 8.0}
        assert not lb.remaining

    def test_display_threshold(self):
        lb = merge(entries(alpha_beta=1.0, gamma_delta=0.5))
        assert lb.is_empty

    def test_candidate_cap(self, monkeypatch):
        monkeypatch.setattr(patterns, "MAX_LEADERBOARD_CANDIDATES", 2)
        lb = merge(entries(alpha_beta=5.0, gamma_delta=4.0, epsilon_zeta=3.0))
        assert dict(lb.remaining) == {"alpha beta": 5.0, "gamma delta": 4.0}

    def test_duplicate_entries_aggregate(self):
        lb = merge([NgramEntry(text="alpha beta", score=2.0), NgramEntry(text="alpha beta", score=3.0)])
        assert dict(lb.remaining) == {"alpha beta": 5.0}

    def test_empty(self):
        assert merge([]).is_empty

    def test_pattern_min_common(self):
        data = entries(red_fox_runs_fast=4.0, red_fox_jumps_high=4.0)
        assert dict(merge(data, pattern_min_common=2).merged) == {"red fox jumps high/runs fast": 8.0}
        lb = merge(data, pattern_min_common=3)
        assert not lb.merged
        assert len(lb.remaining) == 2

    def test_computed_at_message(self):
        assert merge(entries(alpha_beta=2.0), computed_at_message=16).computed_at_message == 16


class TestRepresentative:
    def test_longest_above_threshold(self):
        lb = merge(entries(red_fox_runs_fast=4.0, red_fox_jumps=5.0), slop_threshold=3.0)
        group = lb.patterns[0]
        assert group.key == "red fox jumps/runs fast"
        assert group.representative == "red fox runs fast"

    def test_short_phrase_wins_when_long_is_below_threshold(self):
        lb = merge(entries(red_fox_runs_fast=2.0, red_fox_jumps=5.0), slop_threshold=3.0)
        assert lb.patterns[0].representative == "red fox jumps"

    def test_fallback_to_all_members(self):
        lb = merge(entries(red_fox_runs=2.0, red_fox_jumps=2.0), slop_threshold=3.0)
        assert lb.patterns[0].representative == "red fox jumps"


class TestPartition:
    def test_merged_and_remaining_disjoint(self):
        tracker = NgramFrequencyTracker(ngram_min=2, ngram_max=6)
        texts = [
            "The air was thick with the smell of ozone.",
            "The air was thick with the smell of rain.",
            "The air was thick with the smell of smoke.",
            "Her eyes sparkled with mischief. A faint blush crept across her cheeks.",
            "Her eyes sparkled with amusement. A faint blush crept across her neck.",
        ]
        for i, text in enumerate(texts, 1):
            tracker.observe(text, i)

        raw = tracker.entries()
        lb = merge(raw, pattern_min_common=2, slop_threshold=3.0)
        assert lb.merged
        assert set(lb.merged).isdisjoint(lb.remaining)
        for entry in raw:
            if entry.score > patterns.DISPLAY_THRESHOLD:
                assert _accounted(entry.text, lb), entry.text
