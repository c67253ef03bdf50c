"""Collapse overlapping n-grams into patterns for the leaderboard."""

from typing import Iterable

from .models import NgramEntry, PatternGroup, PatternLeaderboard
from .text import common_prefix_length

DISPLAY_THRESHOLD = 1.0
MAX_LEADERBOARD_CANDIDATES = 2000


def merge(
    entries: Iterable[NgramEntry],
    pattern_min_common: int = 2,
    slop_threshold: float = 3.0,
    computed_at_message: int = 0,
) -> PatternLeaderboard:
    """Build a two-tier leaderboard from raw n-gram entries.

    Entries at or below the display threshold are left out. A phrase contained
    in a longer phrase that scores at least as high is absorbed into it.
    Survivors sharing their first ``pattern_min_common`` words are merged into
    one pattern keyed ``"<common prefix> <variation>/<variation>"``; everything
    else is listed under ``remaining``.
    """
    scores = _visible_scores(entries)
    survivors = _absorb_subphrases(scores)

    groups: dict[tuple[str, ...], list[tuple[str, ...]]] = {}
    ungrouped: list[tuple[str, ...]] = []
    for tokens in sorted(survivors):
        if len(tokens) > pattern_min_common:
            groups.setdefault(tokens[:pattern_min_common], []).append(tokens)
        else:
            ungrouped.append(tokens)

    patterns: list[PatternGroup] = []
    for members in groups.values():
        if len(members) < 2:
            ungrouped.extend(members)
            continue
        patterns.append(_build_pattern(members, scores, slop_threshold))

    prefixes = [tuple(p.prefix.split()) for p in patterns]
    remaining = {}
    for tokens in ungrouped:
        if any(prefix[:len(tokens)] == tokens for prefix in prefixes):
            continue
        phrase = " ".join(tokens)
        remaining[phrase] = scores[phrase]

    patterns.sort(key=lambda p: (-p.score, p.key))
    return PatternLeaderboard(
        merged={p.key: p.score for p in patterns},
        remaining=remaining,
        patterns=tuple(patterns),
        computed_at_message=computed_at_message,
    )


def _visible_scores(entries: Iterable[NgramEntry]) -> dict[str, float]:
    """Scores above the display threshold, capped to the best candidates."""
    scores: dict[str, float] = {}
    for entry in entries:
        if entry.score > DISPLAY_THRESHOLD:
            scores[entry.text] = scores.get(entry.text, 0.0) + entry.score
    ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    return dict(ranked[:MAX_LEADERBOARD_CANDIDATES])


def _absorb_subphrases(scores: dict[str, float]) -> list[tuple[str, ...]]:
    """Token sequences of the phrases not absorbed into a longer one."""
    ordered = sorted(scores, key=lambda p: (-len(p.split()), -scores[p], p))
    kept: list[str] = []
    padded: list[str] = []
    for phrase in ordered:
        needle = f" {phrase} "
        if any(
            needle in haystack and scores[longer] >= scores[phrase]
            for longer, haystack in zip(kept, padded)
            if longer != phrase
        ):
            continue
        kept.append(phrase)
        padded.append(needle)
    return [tuple(p.split()) for p in kept]


def _build_pattern(
    members: list[tuple[str, ...]],
    scores: dict[str, float],
    slop_threshold: float,
) -> PatternGroup:
    prefix_len = min(len(m) for m in members) - 1
    for other in members[1:]:
        prefix_len = min(prefix_len, common_prefix_length(list(members[0]), list(other)))

    prefix = " ".join(members[0][:prefix_len])
    variations = sorted(" ".join(m[prefix_len:]) for m in members)
    phrases = [" ".join(m) for m in members]
    return PatternGroup(
        key=f"{prefix} {'/'.join(variations)}",
        prefix=prefix,
        members=tuple(sorted(phrases)),
        representative=_representative(phrases, scores, slop_threshold),
        score=sum(scores[p] for p in phrases),
    )


def _representative(phrases: list[str], scores: dict[str, float], slop_threshold: float) -> str:
    """Longest phrase above the slop threshold; ties by score, then lexical order."""
    eligible = [p for p in phrases if scores[p] > slop_threshold] or phrases
    return min(eligible, key=lambda p: (-len(p.split()), -scores[p], p))
