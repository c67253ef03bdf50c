"""Session wiring: the ready queue and the per-chat polisher context."""

from collections import deque
from enum import Enum
from typing import Any, Callable, Hashable, Iterable, Mapping, Self

from loguru import logger

from .analyzer import Analyzer
from .config import Settings, load_default_static_rules, settings_from_dict
from .host import publish_rules
from .models import MessageOutcome, Rule
from .replacement import RegexCache, ReplacementEngine
from .rules import RuleStore
from .text import normalize_whitespace

HISTORY_CLEANUP_MIN_AGE = 2


class Readiness(Enum):
    NOT_READY = "not_ready"
    READY = "ready"


class ReadyQueue:
    """Defers callables until the host reports it is ready, then runs them in order."""

    def __init__(self) -> None:
        self.state = Readiness.NOT_READY
        self._pending: deque[Callable[[], Any]] = deque()

    @property
    def is_ready(self) -> bool:
        return self.state is Readiness.READY

    def submit(self, task: Callable[[], Any]) -> None:
        """Run now when ready, otherwise queue."""
        if self.is_ready:
            self._run(task)
        else:
            self._pending.append(task)

    def mark_ready(self) -> int:
        """Switch to READY and drain the queue. Returns the number of tasks run."""
        self.state = Readiness.READY
        ran = 0
        while self._pending:
            self._run(self._pending.popleft())
            ran += 1
        if ran:
            logger.debug(f"Ran {ran} deferred tasks")
        return ran

    def discard_pending(self) -> int:
        """Drop pending tasks without changing the readiness state."""
        dropped = len(self._pending)
        self._pending.clear()
        return dropped

    def cancel(self) -> int:
        """Drop pending tasks and go back to NOT_READY."""
        dropped = self.discard_pending()
        self.state = Readiness.NOT_READY
        return dropped

    @staticmethod
    def _run(task: Callable[[], Any]) -> None:
        try:
            task()
        except Exception:
            logger.exception(f"Deferred task {task!r} failed")

    def __len__(self) -> int:
        return len(self._pending)


class PolisherContext:
    """Everything one chat session needs, wired together.

    Holds the settings, the rule store with its regex cache, the replacement
    engine and the analyzer.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        static_rules: Iterable[Rule | Mapping[str, Any]] | None = None,
        engine: ReplacementEngine | None = None,
    ) -> None:
        self.settings = settings if settings is not None else Settings()
        self.cache = engine.cache if engine is not None else RegexCache()
        self.rules = RuleStore(self.cache)
        self.rules.load_static(static_rules if static_rules is not None else load_default_static_rules())
        self.rules.load_dynamic(self.settings.dynamic_rules)
        self.engine = engine if engine is not None else ReplacementEngine(self.cache)
        self.analyzer = Analyzer(self.settings, self.rules)
        self.ready_queue = ReadyQueue()

    @classmethod
    def from_settings_blob(
        cls,
        blob: Mapping[str, Any] | None,
        static_rules: Iterable[Rule | Mapping[str, Any]] | None = None,
    ) -> Self:
        """Create a context from the host's stored settings blob."""
        return cls(settings=settings_from_dict(blob), static_rules=static_rules)

    def mark_ready(self) -> None:
        self.ready_queue.mark_ready()

    def active_rules(self) -> list[Rule]:
        return self.rules.get_active_rules(self.settings)

    def on_message_rendered(self, message_id: Hashable, text: str | None, is_user: bool = False) -> MessageOutcome:
        """Feed one rendered chat message to the analyzer. User messages are ignored."""
        if is_user:
            return MessageOutcome(processed=False, message_number=self.analyzer.total_ai_messages)
        if not self.ready_queue.is_ready:
            self.ready_queue.submit(lambda: self.analyzer.record_message(text, message_id))
            return MessageOutcome(processed=False, message_number=self.analyzer.total_ai_messages)
        return self.analyzer.record_message(text, message_id)

    def polish(self, text: str | None) -> str | None:
        """Rewrite text with the active rules."""
        if not self.settings.enabled:
            return text
        return self.engine.apply(text, self.active_rules())

    def cleanup_history(
        self,
        messages: Iterable[Mapping[str, Any]],
        min_age: int = HISTORY_CLEANUP_MIN_AGE,
    ) -> list[dict[str, Any]]:
        """Rewrite older chat messages with the active rules.

        Every message except the newest ``min_age`` has its ``mes`` polished
        and its whitespace normalized. Returns new message dicts; the input
        is not modified.
        """
        cleaned = [dict(m) for m in messages]
        if not self.settings.enabled:
            return cleaned
        rules = self.active_rules()
        cutoff = len(cleaned) - max(0, min_age)
        changed = 0
        for message in cleaned[:max(0, cutoff)]:
            text = message.get("mes")
            if not text or not isinstance(text, str):
                continue
            result = normalize_whitespace(self.engine.apply(text, rules))
            if result != text:
                message["mes"] = result
                changed += 1
        logger.info(f"History cleanup rewrote {changed} of {len(cleaned)} messages")
        return cleaned

    def publish(self, host_rules: Iterable[Mapping[str, Any]] | None) -> list[dict[str, Any]]:
        """Sync the active rules into the host's regex array."""
        return publish_rules(host_rules, self.active_rules(), self.settings)

    def update_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.analyzer.apply_settings(settings)
        self.cache.clear()

    def settings_blob(self) -> dict[str, Any]:
        """Settings in the host's camelCase shape, dynamic rules included."""
        self.settings.dynamic_rules = self.rules.dynamic_rules_payload()
        return self.settings.to_dict()

    def on_chat_changed(self) -> None:
        """Reset per-chat analysis state. Rules and settings are kept.

        Messages from the previous chat still waiting for readiness are dropped.
        """
        dropped = self.ready_queue.discard_pending()
        self.analyzer.clear()
        logger.info(f"Chat changed, analysis state reset ({dropped} pending messages dropped)")

    def close(self) -> None:
        dropped = self.ready_queue.cancel()
        if dropped:
            logger.debug(f"Dropped {dropped} pending tasks on close")
