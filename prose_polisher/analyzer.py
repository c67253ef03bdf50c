"""Coordinates n-gram tracking, pattern merging and rule generation for a chat."""

from typing import Any, Callable, Hashable, Iterable, Mapping

from loguru import logger

from .config import Settings
from .errors import MissingDependencyError
from .generation import (
    BATCH_SIZE,
    PRESCREEN_BATCH_SIZE,
    Generator,
    build_generation_prompt,
    call_generator,
    parse_response,
    prescreen,
    validate_drafts,
)
from .models import (
    GenerationCandidate,
    GenerationReport,
    MessageOutcome,
    NgramEntry,
    PatternLeaderboard,
)
from .patterns import merge
from .rules import RuleStore
from .text import strip_markup
from .tracker import NgramFrequencyTracker

SNAPSHOT_VERSION = 1
HISTORY_PRUNE_INTERVAL = 5
FALLBACK_LEADERBOARD_SIZE = 100


class Analyzer:
    """Per-chat repetition analysis.

    Messages are numbered by an internal counter of AI messages processed;
    that counter drives the leaderboard, pruning and generation cycles.
    Host message ids only serve to ignore a message rendered twice.
    """

    def __init__(self, settings: Settings | None = None, rule_store: RuleStore | None = None) -> None:
        self.settings = settings if settings is not None else Settings()
        self.rule_store = rule_store if rule_store is not None else RuleStore()
        self.tracker = NgramFrequencyTracker()
        self.total_ai_messages = 0
        self.message_counter_for_trigger = 0
        self._leaderboard: PatternLeaderboard | None = None
        self._processed_ids: set[Hashable] = set()
        self.apply_settings(self.settings)

    def apply_settings(self, settings: Settings) -> None:
        """Switch to new settings; tracked scores are kept."""
        self.settings = settings
        self.tracker.configure(
            ngram_min=settings.ngram_min,
            ngram_max=settings.ngram_max,
            slop_threshold=settings.slop_threshold,
            whitelist=settings.whitelist,
            blacklist=settings.blacklist,
        )
        if not settings.is_dynamic_enabled:
            self.message_counter_for_trigger = 0

    def record_message(self, text: str | None, message_id: Hashable | None = None) -> MessageOutcome:
        """Track one AI message. Never raises."""
        try:
            return self._record_message(text, message_id)
        except MissingDependencyError as e:
            logger.warning(f"Message not analyzed: {e.message}")
        except Exception:
            logger.exception("Failed to analyze message")
        return MessageOutcome(processed=False, message_number=self.total_ai_messages)

    def _record_message(self, text: str | None, message_id: Hashable | None) -> MessageOutcome:
        settings = self.settings
        if settings is None:
            raise MissingDependencyError("settings")
        if not settings.enabled:
            return MessageOutcome(processed=False, message_number=self.total_ai_messages)
        if message_id is not None and message_id in self._processed_ids:
            logger.debug(f"Message {message_id!r} already analyzed, skipping")
            return MessageOutcome(processed=False, message_number=self.total_ai_messages)
        if not strip_markup(text):
            return MessageOutcome(processed=False, message_number=self.total_ai_messages)

        if message_id is not None:
            self._processed_ids.add(message_id)
        self.total_ai_messages += 1
        number = self.total_ai_messages
        self.tracker.observe(text, number, handled=self._handled_predicate())

        pruned = 0
        if number % settings.pruning_cycle == 0:
            pruned = self.tracker.prune_cycle(number, settings.pruning_cycle, settings.slop_threshold)

        updated = False
        if number % settings.leaderboard_update_cycle == 0:
            self.refresh_leaderboard()
            updated = True

        generation_due = False
        if settings.is_dynamic_enabled:
            self.message_counter_for_trigger += 1
            if self.message_counter_for_trigger >= settings.dynamic_trigger_count and self.tracker.slop_candidates:
                logger.info(f"Dynamic trigger reached after {self.message_counter_for_trigger} messages")
                generation_due = True
                self.message_counter_for_trigger = 0

        return MessageOutcome(
            processed=True,
            message_number=number,
            leaderboard_updated=updated,
            pruned=pruned,
            generation_due=generation_due,
        )

    def _handled_predicate(self) -> Callable[[str], bool] | None:
        """Predicate matching phrases an active rule already rewrites."""
        active = self.rule_store.get_active_rules(self.settings)
        patterns = self.rule_store.cache.compiled_patterns(active)
        if not patterns:
            return None
        return lambda phrase: any(p.search(phrase) for p in patterns)

    def refresh_leaderboard(self) -> PatternLeaderboard:
        """Recompute the merged leaderboard from the current n-gram table."""
        self._leaderboard = merge(
            self.tracker.entries(),
            pattern_min_common=self.settings.pattern_min_common,
            slop_threshold=self.settings.slop_threshold,
            computed_at_message=self.total_ai_messages,
        )
        logger.info(
            f"Leaderboard recomputed at message {self.total_ai_messages}: "
            f"{len(self._leaderboard.merged)} patterns, {len(self._leaderboard.remaining)} phrases"
        )
        return self._leaderboard

    def get_leaderboard(self) -> PatternLeaderboard:
        """Current snapshot, or the raw top entries when none has been computed yet."""
        try:
            if self._leaderboard is not None:
                return self._leaderboard
            top = self.tracker.top_entries(FALLBACK_LEADERBOARD_SIZE)
            return PatternLeaderboard(
                remaining={e.text: e.score for e in top if e.score > 0},
                computed_at_message=self.total_ai_messages,
            )
        except Exception:
            logger.exception("Failed to build leaderboard")
            return PatternLeaderboard()

    def analyze_history(self, messages: Iterable[Mapping[str, Any]]) -> PatternLeaderboard:
        """Rebuild all analysis state from a full chat transcript.

        ``messages`` are host chat messages with ``is_user`` and ``mes`` keys;
        user and empty messages are skipped. A message's position in the
        transcript is treated as its host message id.
        """
        self.clear()
        handled = self._handled_predicate()
        for position, message in enumerate(messages):
            if message.get("is_user"):
                continue
            text = message.get("mes")
            if not strip_markup(text):
                continue
            self._processed_ids.add(position)
            self.total_ai_messages += 1
            self.tracker.observe(text, self.total_ai_messages, handled=handled)
            if self.total_ai_messages % HISTORY_PRUNE_INTERVAL == 0:
                self.tracker.prune_low_signal()

        leaderboard = self.refresh_leaderboard()
        self.tracker.prune_cycle(self.total_ai_messages, self.settings.pruning_cycle, self.settings.slop_threshold)

        if self.tracker.slop_candidates:
            self.message_counter_for_trigger = self.settings.dynamic_trigger_count
            logger.info(
                f"History analysis found {len(self.tracker.slop_candidates)} slop candidates "
                f"in {self.total_ai_messages} AI messages, dynamic trigger armed"
            )
        else:
            logger.info(f"History analysis complete, {self.total_ai_messages} AI messages, no slop found")
        return leaderboard

    def analyze_summary(self, text: str | None) -> int:
        """Track a chat summary without advancing the message counter."""
        if not strip_markup(text):
            return 0
        updates = self.tracker.observe(text, self.total_ai_messages, handled=self._handled_predicate())
        logger.debug(f"Summary analyzed, {updates} n-gram updates")
        return updates

    def generation_candidates(self, limit: int = PRESCREEN_BATCH_SIZE) -> list[GenerationCandidate]:
        """Leaderboard phrases and patterns, best first, with context sentences."""
        leaderboard = self.get_leaderboard()
        candidates = [GenerationCandidate(key, key, score) for key, score in leaderboard.merged.items()]
        for phrase, score in leaderboard.remaining.items():
            entry = self.tracker.get(phrase)
            context = entry.context_sentence if entry is not None and entry.context_sentence else phrase
            candidates.append(GenerationCandidate(phrase, context, score))
        candidates.sort(key=lambda c: (-c.score, c.candidate))
        return candidates[:limit]

    def generate_rules_from_analysis(self, generator: Generator, timeout: float | None = None) -> GenerationReport:
        """Draft rules for the top candidates and add the valid ones.

        Raises GenerationError when the generator fails, times out or returns
        unparseable output; nothing is committed in that case.
        """
        active = self.rule_store.get_active_rules(self.settings)
        patterns = self.rule_store.cache.compiled_patterns(active)
        candidates = [
            c for c in self.generation_candidates(PRESCREEN_BATCH_SIZE)
            if not any(p.search(c.candidate) for p in patterns)
        ]
        if not candidates:
            logger.info("No slop candidates to generate rules for")
            return GenerationReport()

        if not self.settings.skip_triage_check:
            candidates = prescreen(candidates, generator, timeout)
        batch = candidates[:BATCH_SIZE]
        if not batch:
            logger.info("Pre-screening left no candidates for rule generation")
            return GenerationReport()

        prompt = build_generation_prompt(batch, self.settings.regex_generation_instructions)
        drafts = parse_response(call_generator(generator, prompt, timeout))
        rules, rejected = validate_drafts(drafts)
        added = self.rule_store.add_generated(rules)

        self._retire_candidates(batch)
        self.refresh_leaderboard()
        logger.info(f"Rule generation added {len(added)} rules, rejected {len(rejected)} drafts")
        return GenerationReport(added=added, rejected=rejected, candidates=batch)

    def _retire_candidates(self, batch: Iterable[GenerationCandidate]) -> None:
        """Zero the scores behind processed candidates so they leave the leaderboard."""
        members = {p.key: p.members for p in self.get_leaderboard().patterns}
        phrases: list[str] = []
        for candidate in batch:
            phrases.extend(members.get(candidate.candidate, (candidate.candidate,)))
        self.tracker.reset_scores(phrases)

    def clear(self) -> None:
        """Forget all analysis state for the current chat."""
        self.tracker.clear()
        self._leaderboard = None
        self._processed_ids.clear()
        self.total_ai_messages = 0
        self.message_counter_for_trigger = 0

    def serialize(self) -> dict[str, Any]:
        """Versioned snapshot of the n-gram table, leaderboard and counters."""
        return {
            "version": SNAPSHOT_VERSION,
            "ngrams": [e.to_dict() for e in self.tracker.entries()],
            "slop_candidates": sorted(self.tracker.slop_candidates),
            "leaderboard": self._leaderboard.to_dict() if self._leaderboard is not None else None,
            "message_counter_for_trigger": self.message_counter_for_trigger,
            "total_ai_messages_processed": self.total_ai_messages,
            "processed_message_ids": list(self._processed_ids),
        }

    def deserialize(self, blob: Mapping[str, Any] | None) -> bool:
        """Restore a snapshot from ``serialize``. Returns False and keeps current state on bad input."""
        if not blob:
            return False
        if blob.get("version") != SNAPSHOT_VERSION:
            logger.warning(f"Unsupported analyzer snapshot version {blob.get('version')!r}, ignoring")
            return False
        try:
            entries = [NgramEntry.from_dict(e) for e in blob.get("ngrams") or ()]
            total = int(blob.get("total_ai_messages_processed") or 0)
            leaderboard_data = blob.get("leaderboard")
            leaderboard = (
                PatternLeaderboard.from_dict(leaderboard_data, computed_at_message=total)
                if leaderboard_data is not None else None
            )
            counter = int(blob.get("message_counter_for_trigger") or 0)
            processed = set(blob.get("processed_message_ids") or ())
            slop = list(blob.get("slop_candidates") or ())
        except Exception:
            logger.exception("Analyzer snapshot is malformed, ignoring")
            return False

        self.tracker.load(entries, slop)
        self._leaderboard = leaderboard
        self.total_ai_messages = total
        self.message_counter_for_trigger = counter
        self._processed_ids = processed
        logger.info(f"Loaded analyzer state ({len(entries)} n-grams)")
        return True
