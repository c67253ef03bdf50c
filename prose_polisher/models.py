"""Data models for prose-polisher."""

import re
import secrets
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

from .errors import MalformedRuleError

STATIC_ID_PREFIX = "_prosePolisherRule_"
STATIC_ID_SUFFIX = "_static"
DYNAMIC_ID_PREFIX = "DYN_"
DEFAULT_PLACEMENT = (0, 2, 3, 5, 6)


def static_rule_id(script_name: str) -> str:
    """Derive the id of a static rule from its name."""
    return STATIC_ID_PREFIX + re.sub(r"\s+", "_", script_name.strip()) + STATIC_ID_SUFFIX


def new_dynamic_rule_id() -> str:
    """Allocate a fresh id for a user-authored or generated rule."""
    return f"{DYNAMIC_ID_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(3)[:5]}"


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class Rule:
    """A find/replace directive.

    Field names are snake_case; ``from_dict`` and ``to_dict`` convert from and
    to the camelCase shape stored in the host's settings blob.
    """

    id: str
    script_name: str
    find_regex: str
    replace_string: str = ""
    disabled: bool = False
    is_static: bool = False
    is_new: bool = False
    placement: tuple[int, ...] = DEFAULT_PLACEMENT
    min_depth: int | None = None
    max_depth: int | None = None
    trim_strings: tuple[str, ...] = ()
    substitute_regex: int = 0
    run_on_edit: bool = False
    markdown_only: bool = False
    prompt_only: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, is_static: bool | None = None) -> "Rule":
        """Build a rule from a loosely-typed dict, filling every default.

        This is the one place rule dicts are normalized: static seeds, stored
        dynamic rules, editor submissions and generated drafts all pass
        through here. Raises MalformedRuleError when a field cannot be coerced.
        """
        static = bool(data.get("isStatic", False)) if is_static is None else is_static
        script_name = str(data.get("scriptName") or "").strip()
        rule_id = data.get("id")
        if not rule_id:
            if static:
                rule_id = static_rule_id(script_name or f"staticrule_{secrets.token_hex(3)[:5]}")
            else:
                rule_id = new_dynamic_rule_id()

        placement = data.get("placement")
        if placement is None:
            placement = DEFAULT_PLACEMENT

        try:
            return cls(
                id=str(rule_id),
                script_name=script_name,
                find_regex=str(data.get("findRegex") or ""),
                replace_string=str(data.get("replaceString") or ""),
                disabled=bool(data.get("disabled", False)),
                is_static=static,
                is_new=bool(data.get("isNew", False)),
                placement=tuple(int(p) for p in placement),
                min_depth=_optional_int(data.get("minDepth")),
                max_depth=_optional_int(data.get("maxDepth")),
                trim_strings=tuple(str(s) for s in data.get("trimStrings") or ()),
                substitute_regex=int(data.get("substituteRegex") or 0),
                run_on_edit=bool(data.get("runOnEdit", False)),
                markdown_only=bool(data.get("markdownOnly", False)),
                prompt_only=bool(data.get("promptOnly", False)),
            )
        except (TypeError, ValueError) as e:
            raise MalformedRuleError(f"Rule {script_name or rule_id!r} has a malformed field: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase shape the host stores."""
        return {
            "id": self.id,
            "scriptName": self.script_name,
            "findRegex": self.find_regex,
            "replaceString": self.replace_string,
            "disabled": self.disabled,
            "isStatic": self.is_static,
            "isNew": self.is_new,
            "placement": list(self.placement),
            "minDepth": self.min_depth,
            "maxDepth": self.max_depth,
            "trimStrings": list(self.trim_strings),
            "substituteRegex": self.substitute_regex,
            "runOnEdit": self.run_on_edit,
            "markdownOnly": self.markdown_only,
            "promptOnly": self.prompt_only,
        }

    def with_changes(self, **changes: Any) -> "Rule":
        """Return a copy with the given fields replaced. ``id`` cannot change."""
        if "id" in changes and changes["id"] != self.id:
            raise ValueError("Rule id is immutable")
        return replace(self, **changes)


@dataclass
class NgramEntry:
    """A tracked candidate repeated phrase."""

    text: str
    score: float = 0.0
    occurrence_count: int = 0
    last_seen_message_index: int = 0
    context_sentence: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "score": self.score,
            "occurrence_count": self.occurrence_count,
            "last_seen_message_index": self.last_seen_message_index,
            "context_sentence": self.context_sentence,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NgramEntry":
        return cls(
            text=str(data["text"]),
            score=float(data.get("score", 0.0)),
            occurrence_count=int(data.get("occurrence_count", 0)),
            last_seen_message_index=int(data.get("last_seen_message_index", 0)),
            context_sentence=str(data.get("context_sentence", "")),
        )


@dataclass(frozen=True)
class PatternGroup:
    """Detail behind one merged leaderboard key."""

    key: str
    prefix: str
    members: tuple[str, ...]
    representative: str
    score: float


def _frozen_scores(scores: Mapping[str, float] | None) -> Mapping[str, float]:
    ordered = sorted((scores or {}).items(), key=lambda item: (-item[1], item[0]))
    return MappingProxyType(dict(ordered))


@dataclass(frozen=True)
class PatternLeaderboard:
    """Point-in-time view of repeated phrases.

    ``merged`` maps synthesized pattern keys to aggregated scores and
    ``remaining`` maps unmerged phrases to their scores. Both are read-only and
    ordered by descending score.
    """

    merged: Mapping[str, float] = field(default_factory=dict)
    remaining: Mapping[str, float] = field(default_factory=dict)
    patterns: tuple[PatternGroup, ...] = ()
    computed_at_message: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "merged", _frozen_scores(self.merged))
        object.__setattr__(self, "remaining", _frozen_scores(self.remaining))

    @property
    def is_empty(self) -> bool:
        return not self.merged and not self.remaining

    def top(self, limit: int | None = None) -> list[tuple[str, float, bool]]:
        """Return (phrase, score, is_pattern) across both tiers, best first."""
        rows = [(k, v, True) for k, v in self.merged.items()]
        rows += [(k, v, False) for k, v in self.remaining.items()]
        rows.sort(key=lambda row: (-row[1], row[0]))
        return rows if limit is None else rows[:limit]

    def to_dict(self) -> dict[str, Any]:
        return {"merged": dict(self.merged), "remaining": dict(self.remaining)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], computed_at_message: int = 0) -> "PatternLeaderboard":
        return cls(
            merged={str(k): float(v) for k, v in (data.get("merged") or {}).items()},
            remaining={str(k): float(v) for k, v in (data.get("remaining") or {}).items()},
            computed_at_message=computed_at_message,
        )


@dataclass(frozen=True)
class MessageOutcome:
    """What happened while recording one AI message."""

    processed: bool
    message_number: int = 0
    leaderboard_updated: bool = False
    pruned: int = 0
    generation_due: bool = False


@dataclass(frozen=True)
class GenerationCandidate:
    """A phrase offered to the external rule generator."""

    candidate: str
    enhanced_context: str
    score: float


@dataclass
class GenerationReport:
    """Outcome of one rule-generation round."""

    added: list[Rule] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    candidates: list[GenerationCandidate] = field(default_factory=list)


@dataclass
class LeaderboardStats:
    """Aggregate statistics over a leaderboard."""

    total_entries: int
    merged_patterns: int
    remaining_phrases: int
    mean_score: float
    median_score: float
    min_score: float
    max_score: float
    score_histogram: dict[str, int] = field(default_factory=dict)
