"""Summary statistics for a leaderboard."""

import statistics

from .models import LeaderboardStats, PatternLeaderboard

HISTOGRAM_BUCKETS = ["<3", "3-5", "5-10", "10-25", ">25"]


def summarize(leaderboard: PatternLeaderboard) -> LeaderboardStats:
    """Compute aggregate statistics over every entry of a leaderboard."""
    scores = list(leaderboard.merged.values()) + list(leaderboard.remaining.values())
    if not scores:
        return LeaderboardStats(
            total_entries=0,
            merged_patterns=0,
            remaining_phrases=0,
            mean_score=0.0,
            median_score=0.0,
            min_score=0.0,
            max_score=0.0,
            score_histogram={b: 0 for b in HISTOGRAM_BUCKETS},
        )

    return LeaderboardStats(
        total_entries=len(scores),
        merged_patterns=len(leaderboard.merged),
        remaining_phrases=len(leaderboard.remaining),
        mean_score=round(statistics.mean(scores), 1),
        median_score=round(statistics.median(scores), 1),
        min_score=round(min(scores), 1),
        max_score=round(max(scores), 1),
        score_histogram=_build_histogram(scores),
    )


def _build_histogram(values: list[float]) -> dict[str, int]:
    """Bucket scores into a histogram."""
    buckets = {b: 0 for b in HISTOGRAM_BUCKETS}
    for v in values:
        if v < 3:
            buckets["<3"] += 1
        elif v < 5:
            buckets["3-5"] += 1
        elif v < 10:
            buckets["5-10"] += 1
        elif v < 25:
            buckets["10-25"] += 1
        else:
            buckets[">25"] += 1
    return buckets
