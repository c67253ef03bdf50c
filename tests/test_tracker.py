"""Tests for the n-gram frequency tracker."""

import pytest

from prose_polisher.tracker import NgramFrequencyTracker


@pytest.fixture
def tracker():
    return NgramFrequencyTracker(ngram_min=2, ngram_max=3, slop_threshold=3.0)


class TestObserve:
    def test_scores_by_length(self, tracker):
        tracker.observe("Her eyes sparkled.", 1)
        assert tracker.get("eyes sparkled").score == pytest.approx(1.0)
        assert tracker.get("her eyes sparkled").score == pytest.approx(1.2)
        entry = tracker.get("her eyes")
        assert entry.occurrence_count == 1
        assert entry.last_seen_message_index == 1
        assert entry.context_sentence == "Her eyes sparkled."

    def test_repetition_accumulates(self, tracker):
        tracker.observe("Her eyes sparkled.", 1)
        tracker.observe("Her eyes sparkled again.", 2)
        entry = tracker.get("eyes sparkled")
        assert entry.score == pytest.approx(2.0)
        assert entry.occurrence_count == 2
        assert entry.last_seen_message_index == 2

    def test_ngrams_stay_within_sentences(self, tracker):
        tracker.observe("He left. She cried.", 1)
        assert "left she" not in tracker
        assert "he left" in tracker

    def test_common_only_phrases_skipped(self, tracker):
        assert tracker.observe("It was the.", 1) == 0
        assert len(tracker) == 0

    def test_empty_message(self, tracker):
        assert tracker.observe("", 1) == 0
        assert tracker.observe(None, 1) == 0
        assert tracker.observe("<br>", 1) == 0

    def test_handled_phrases_skipped(self, tracker):
        tracker.observe("Her eyes sparkled.", 1, handled=lambda phrase: "eyes" in phrase)
        assert len(tracker) == 0

    def test_ngram_max_respected(self):
        tracker = NgramFrequencyTracker(ngram_min=2, ngram_max=3)
        tracker.observe("one two three four five.", 1)
        assert "two three four" in tracker
        assert "two three four five" not in tracker


class TestWhitelistAndBlacklist:
    def test_blacklist_weight_multiplies(self):
        tracker = NgramFrequencyTracker(ngram_min=2, ngram_max=3, blacklist={"softly": 2})
        tracker.observe("She smiled softly.", 1)
        assert tracker.get("smiled softly").score == pytest.approx(2.0)
        assert tracker.get("she smiled softly").score == pytest.approx(2.4)
        assert tracker.get("she smiled").score == pytest.approx(1.0)

    def test_whitelist_veto_beats_blacklist(self):
        tracker = NgramFrequencyTracker(
            ngram_min=2, ngram_max=4, whitelist=["Alice"], blacklist={"softly": 2},
        )
        for i in range(1, 6):
            tracker.observe("Alice smiled softly.", i)
        assert tracker.get("alice smiled softly") is None
        assert tracker.get("alice smiled") is None
        assert all("alice" not in e.text.split() for e in tracker.entries())
        assert tracker.get("smiled softly").score == pytest.approx(10.0)

    def test_blacklisted_word_tracked_standalone(self):
        tracker = NgramFrequencyTracker(ngram_min=2, ngram_max=3, blacklist={"suddenly": 3})
        for i, text in enumerate(["Suddenly, he left.", "Suddenly, she cried.", "Suddenly, they ran."], 1):
            tracker.observe(text, i)
        entry = tracker.get("suddenly")
        assert entry.score == pytest.approx(9.0)
        assert entry.occurrence_count == 3
        assert tracker.get("he left").score == pytest.approx(1.0)
        assert tracker.get("suddenly he").score == pytest.approx(3.0)

    def test_whitelisted_blacklist_term_not_tracked(self):
        tracker = NgramFrequencyTracker(ngram_min=2, ngram_max=3, whitelist=["ozone"], blacklist={"ozone": 5})
        tracker.observe("It smelled of ozone.", 1)
        assert "ozone" not in tracker

    def test_configure_keeps_scores(self, tracker):
        tracker.observe("Her eyes sparkled.", 1)
        tracker.configure(2, 5, 4.0, whitelist=["eyes"])
        assert tracker.get("eyes sparkled").score == pytest.approx(1.0)
        tracker.observe("Her eyes sparkled.", 2)
        assert tracker.get("eyes sparkled").score == pytest.approx(1.0)

    def test_whitelist_covers_possessive(self):
        tracker = NgramFrequencyTracker(ngram_min=2, ngram_max=3, whitelist=["alice"], blacklist={"softly": 2})
        tracker.observe("Alice's smile softly faded.", 1)
        assert all("alice" not in e.text for e in tracker.entries())
        assert "smile softly" in tracker

    def test_terms_normalized_like_text(self):
        tracker = NgramFrequencyTracker(ngram_min=2, ngram_max=3, whitelist=["Alice,"], blacklist={"Softly!": 2})
        tracker.observe("Alice smiled softly.", 1)
        assert tracker.get("alice smiled") is None
        assert tracker.get("smiled softly").score == pytest.approx(2.0)


class TestSlopCandidates:
    def test_longest_candidates_kept(self, tracker):
        for i in range(1, 4):
            tracker.observe("A faint blush spread.", i)
        assert tracker.slop_candidates == {"a faint blush", "faint blush spread"}

    def test_below_threshold_not_candidate(self, tracker):
        tracker.observe("A faint blush spread.", 1)
        assert tracker.slop_candidates == frozenset()

    def test_containment_is_word_based(self):
        tracker = NgramFrequencyTracker(ngram_min=2, ngram_max=2, slop_threshold=1.0)
        tracker.observe("She left.", 1)
        tracker.observe("He left.", 2)
        assert tracker.slop_candidates == {"she left", "he left"}


class TestPruning:
    def test_stale_low_score_removed(self, tracker):
        tracker.observe("Zorp blint quax.", 1)
        assert len(tracker) == 3
        assert tracker.prune_cycle(12, 10) == 3
        assert len(tracker) == 0

    def test_recent_entries_kept(self, tracker):
        tracker.observe("Zorp blint quax.", 1)
        assert tracker.prune_cycle(5, 10) == 0
        assert len(tracker) == 3

    def test_stale_high_score_decays(self, tracker):
        for _ in range(4):
            tracker.observe("Zorp blint.", 1)
        tracker.prune_cycle(12, 10)
        assert tracker.get("zorp blint").score == pytest.approx(3.6)

    def test_growth_bounded(self, tracker):
        largest = 0
        for i in range(1, 201):
            tracker.observe(f"Zorp{i} blint{i} quax{i}.", i)
            largest = max(largest, len(tracker))
            if i % 10 == 0:
                tracker.prune_cycle(i, 10)
        assert largest <= 3 * 21
        assert len(tracker) == 3 * 11

    def test_prune_low_signal(self, tracker):
        tracker.observe("Zorp blint.", 1)
        tracker.observe("Her eyes sparkled.", 2)
        tracker.observe("Her eyes sparkled.", 3)
        assert tracker.prune_low_signal() == 1
        assert "zorp blint" not in tracker
        assert "eyes sparkled" in tracker

    def test_reset_scores_then_prune(self, tracker):
        for i in range(1, 4):
            tracker.observe("A faint blush spread.", i)
        assert tracker.reset_scores(["A Faint Blush", "not tracked"]) == 1
        assert tracker.get("a faint blush").score == 0.0
        assert "a faint blush" not in tracker.slop_candidates
        tracker.prune_cycle(3, 10)
        assert "a faint blush" not in tracker
        assert "faint blush" in tracker


class TestState:
    def test_top_entries(self, tracker):
        tracker.observe("Her eyes sparkled.", 1)
        top = tracker.top_entries(1)
        assert [e.text for e in top] == ["her eyes sparkled"]

    def test_entries_are_copies(self, tracker):
        tracker.observe("Her eyes sparkled.", 1)
        tracker.entries()[0].score = 100.0
        assert max(e.score for e in tracker.entries()) < 100.0

    def test_load_and_clear(self, tracker):
        tracker.observe("A faint blush spread.", 1)
        snapshot = tracker.entries()
        other = NgramFrequencyTracker()
        other.load(snapshot, ["a faint", "unknown phrase"])
        assert len(other) == len(tracker)
        assert other.slop_candidates == {"a faint"}
        other.clear()
        assert len(other) == 0
        assert other.slop_candidates == frozenset()
