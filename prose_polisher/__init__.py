"""prose-polisher: Detect repetitive phrasing in AI chat transcripts and rewrite it with regex rules."""

from .analyzer import Analyzer
from .config import Settings, load_default_static_rules, load_settings, load_static_rules, settings_from_dict
from .errors import (
    ErrorType,
    GenerationError,
    InvalidPatternError,
    MalformedRuleError,
    MissingDependencyError,
    ProsePolisherError,
)
from .host import publish_rules, strip_published
from .lifecycle import PolisherContext, Readiness, ReadyQueue
from .models import (
    GenerationCandidate,
    GenerationReport,
    LeaderboardStats,
    MessageOutcome,
    NgramEntry,
    PatternGroup,
    PatternLeaderboard,
    Rule,
)
from .patterns import merge
from .replacement import RegexCache, ReplacementEngine
from .rules import RuleStore
from .stats import summarize
from .tracker import NgramFrequencyTracker

__all__ = [
    "Analyzer",
    "ErrorType",
    "GenerationCandidate",
    "GenerationError",
    "GenerationReport",
    "InvalidPatternError",
    "LeaderboardStats",
    "MalformedRuleError",
    "MessageOutcome",
    "MissingDependencyError",
    "NgramEntry",
    "NgramFrequencyTracker",
    "PatternGroup",
    "PatternLeaderboard",
    "PolisherContext",
    "ProsePolisherError",
    "Readiness",
    "ReadyQueue",
    "RegexCache",
    "ReplacementEngine",
    "Rule",
    "RuleStore",
    "Settings",
    "load_default_static_rules",
    "load_settings",
    "load_static_rules",
    "merge",
    "publish_rules",
    "settings_from_dict",
    "strip_published",
    "summarize",
]
