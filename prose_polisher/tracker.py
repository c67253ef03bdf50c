"""Incremental n-gram frequency tracking across a chat transcript."""

from typing import Callable, Iterable, Mapping

from loguru import logger

from .models import NgramEntry
from .text import (
    blacklist_weight,
    generate_ngrams,
    is_common_only,
    is_whitelisted,
    normalize_phrase,
    split_sentences,
    strip_markup,
    token_contains,
    tokenize,
)

LENGTH_BONUS = 0.2
SCORE_FLOOR = 0.0
STALE_DECAY = 0.9
LOW_SIGNAL_SCORE = 2.0
LOW_SIGNAL_COUNT = 2


class NgramFrequencyTracker:
    """Running phrase -> score table, updated one AI message at a time.

    Each sentence is scanned with windows of ``ngram_min`` to ``ngram_max``
    words. A window containing a whitelisted term is never tracked; otherwise
    it scores ``(1 + (n - ngram_min) * 0.2) * max(1, w)`` per occurrence, where
    ``w`` is the highest weight among blacklisted terms it contains.
    Blacklisted terms shorter than ``ngram_min`` are also tracked on their own.
    """

    def __init__(
        self,
        ngram_min: int = 2,
        ngram_max: int = 10,
        slop_threshold: float = 3.0,
        whitelist: Iterable[str] = (),
        blacklist: Mapping[str, int] | None = None,
    ) -> None:
        self._entries: dict[str, NgramEntry] = {}
        self._slop_candidates: set[str] = set()
        self.configure(ngram_min, ngram_max, slop_threshold, whitelist, blacklist)

    def configure(
        self,
        ngram_min: int,
        ngram_max: int,
        slop_threshold: float,
        whitelist: Iterable[str] = (),
        blacklist: Mapping[str, int] | None = None,
    ) -> None:
        """Update scoring parameters. Existing scores are kept."""
        self.ngram_min = max(1, ngram_min)
        self.ngram_max = max(self.ngram_min, ngram_max)
        self.slop_threshold = slop_threshold
        self.whitelist = frozenset(filter(None, (" ".join(tokenize(t)) for t in whitelist)))
        self.blacklist = {
            term: w for term, w in ((" ".join(tokenize(t)), w) for t, w in (blacklist or {}).items()) if term
        }

    def observe(
        self,
        message_text: str | None,
        message_index: int,
        handled: Callable[[str], bool] | None = None,
    ) -> int:
        """Track every n-gram of one message. Returns the number of updates made.

        ``handled`` lets the caller skip phrases an active rule already rewrites.
        """
        clean = strip_markup(message_text)
        if not clean:
            return 0

        updates = 0
        for sentence in split_sentences(clean):
            words = tokenize(sentence)
            if not words:
                continue
            updates += self._observe_blacklisted_terms(words, sentence, message_index)
            for n in range(self.ngram_min, min(self.ngram_max, len(words)) + 1):
                for start in range(len(words) - n + 1):
                    window = words[start:start + n]
                    if is_whitelisted(window, self.whitelist) or is_common_only(window):
                        continue
                    phrase = " ".join(window)
                    if handled is not None and handled(phrase):
                        continue
                    weight = blacklist_weight(window, self.blacklist)
                    increment = (1.0 + (n - self.ngram_min) * LENGTH_BONUS) * max(1, weight)
                    self._record(phrase, increment, message_index, sentence)
                    updates += 1
        return updates

    def _observe_blacklisted_terms(self, words: list[str], sentence: str, message_index: int) -> int:
        updates = 0
        for term, weight in self.blacklist.items():
            term_words = term.split()
            if len(term_words) >= self.ngram_min or term in self.whitelist:
                continue
            occurrences = generate_ngrams(words, len(term_words)).count(term)
            for _ in range(occurrences):
                self._record(term, float(weight), message_index, sentence)
                updates += 1
        return updates

    def _record(self, phrase: str, increment: float, message_index: int, sentence: str) -> None:
        entry = self._entries.get(phrase)
        if entry is None:
            entry = NgramEntry(text=phrase, last_seen_message_index=message_index)
            self._entries[phrase] = entry

        previous = entry.score
        entry.score += increment
        entry.occurrence_count += 1
        entry.last_seen_message_index = message_index
        entry.context_sentence = sentence

        if previous < self.slop_threshold <= entry.score:
            self._add_slop_candidate(phrase)

    def _add_slop_candidate(self, phrase: str) -> None:
        """Keep only the longest of overlapping candidates."""
        tokens = phrase.split()
        superseded = []
        for existing in self._slop_candidates:
            existing_tokens = existing.split()
            if token_contains(existing_tokens, tokens):
                return
            if token_contains(tokens, existing_tokens):
                superseded.append(existing)
        self._slop_candidates.difference_update(superseded)
        self._slop_candidates.add(phrase)

    def prune_cycle(self, current_message_index: int, pruning_cycle: int, slop_threshold: float | None = None) -> int:
        """Evict spent and stale low-score entries; decay stale high-score ones.

        Returns the number of entries removed.
        """
        threshold = self.slop_threshold if slop_threshold is None else slop_threshold
        removed = 0
        for phrase, entry in list(self._entries.items()):
            stale = current_message_index - entry.last_seen_message_index > pruning_cycle
            if entry.score <= SCORE_FLOOR or (stale and entry.score < threshold):
                self._remove(phrase)
                removed += 1
            elif stale:
                entry.score *= STALE_DECAY
        if removed:
            logger.debug(f"Pruned {removed} old/low-score n-grams, {len(self._entries)} remain")
        return removed

    def prune_low_signal(self) -> int:
        """Drop entries seen once with a small score. Used during history analysis."""
        removed = 0
        for phrase, entry in list(self._entries.items()):
            if entry.score < LOW_SIGNAL_SCORE and entry.occurrence_count < LOW_SIGNAL_COUNT:
                self._remove(phrase)
                removed += 1
        if removed:
            logger.debug(f"Pruned {removed} very low-score n-grams")
        return removed

    def reset_scores(self, phrases: Iterable[str]) -> int:
        """Zero the scores of the given phrases so the next prune evicts them."""
        reset = 0
        for phrase in phrases:
            key = normalize_phrase(phrase)
            entry = self._entries.get(key)
            if entry is not None:
                entry.score = 0.0
                reset += 1
            self._slop_candidates.discard(key)
        return reset

    def _remove(self, phrase: str) -> None:
        del self._entries[phrase]
        self._slop_candidates.discard(phrase)

    def get(self, phrase: str) -> NgramEntry | None:
        return self._entries.get(normalize_phrase(phrase))

    def entries(self) -> list[NgramEntry]:
        """Copies of all tracked entries."""
        return [
            NgramEntry(
                text=e.text,
                score=e.score,
                occurrence_count=e.occurrence_count,
                last_seen_message_index=e.last_seen_message_index,
                context_sentence=e.context_sentence,
            )
            for e in self._entries.values()
        ]

    def top_entries(self, limit: int) -> list[NgramEntry]:
        """Highest-scoring entries, ties broken by phrase."""
        ranked = sorted(self._entries.values(), key=lambda e: (-e.score, e.text))
        return ranked[:limit]

    @property
    def slop_candidates(self) -> frozenset[str]:
        return frozenset(self._slop_candidates)

    def load(self, entries: Iterable[NgramEntry], slop_candidates: Iterable[str] = ()) -> None:
        """Replace the table with restored entries."""
        self._entries = {e.text: e for e in entries}
        self._slop_candidates = {c for c in slop_candidates if c in self._entries}

    def clear(self) -> None:
        self._entries.clear()
        self._slop_candidates.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, phrase: str) -> bool:
        return normalize_phrase(phrase) in self._entries
