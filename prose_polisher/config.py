"""Settings blob and static rule seed loading."""

import importlib.resources
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml
from loguru import logger

from .errors import MalformedRuleError
from .models import Rule
from .text import tokenize


@dataclass
class Settings:
    """Analyzer and rule settings as stored in the host's settings blob."""

    enabled: bool = True
    is_static_enabled: bool = True
    is_dynamic_enabled: bool = True
    dynamic_trigger_count: int = 25
    slop_threshold: float = 3.0
    leaderboard_update_cycle: int = 8
    pruning_cycle: int = 30
    ngram_min: int = 2
    ngram_max: int = 10
    pattern_min_common: int = 2
    whitelist: list[str] = field(default_factory=list)
    blacklist: dict[str, int] = field(default_factory=dict)
    integrate_with_global_regex: bool = True
    dynamic_rules: list[dict[str, Any]] = field(default_factory=list)
    regex_generation_instructions: str = ""
    skip_triage_check: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the camelCase blob, unknown keys included."""
        data = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if isinstance(value, (list, dict)):
                value = type(value)(value)
            data[SETTINGS_KEYS[f.name]] = value
        return data


SETTINGS_KEYS: dict[str, str] = {
    "enabled": "enabled",
    "is_static_enabled": "isStaticEnabled",
    "is_dynamic_enabled": "isDynamicEnabled",
    "dynamic_trigger_count": "dynamicTriggerCount",
    "slop_threshold": "slopThreshold",
    "leaderboard_update_cycle": "leaderboardUpdateCycle",
    "pruning_cycle": "pruningCycle",
    "ngram_min": "ngramMin",
    "ngram_max": "ngramMax",
    "pattern_min_common": "patternMinCommon",
    "whitelist": "whitelist",
    "blacklist": "blacklist",
    "integrate_with_global_regex": "integrateWithGlobalRegex",
    "dynamic_rules": "dynamicRules",
    "regex_generation_instructions": "regexGenerationInstructions",
    "skip_triage_check": "skipTriageCheck",
}

# (min, max) bounds for numeric settings; None means unbounded
NUMERIC_BOUNDS: dict[str, tuple[float | None, float | None]] = {
    "dynamic_trigger_count": (1, None),
    "slop_threshold": (1, None),
    "leaderboard_update_cycle": (1, None),
    "pruning_cycle": (5, None),
    "ngram_min": (1, 20),
    "ngram_max": (3, 20),
    "pattern_min_common": (2, 10),
}

BLACKLIST_WEIGHT_RANGE = (1, 10)


def load_settings(path: str | Path) -> Settings:
    """Load settings from a YAML or JSON file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return settings_from_dict(data or {})


def settings_from_dict(data: Mapping[str, Any] | None) -> Settings:
    """Build Settings from a host blob, falling back to defaults per key."""
    defaults = Settings()
    if data is None:
        logger.warning("No settings blob supplied, using defaults")
        return defaults

    values: dict[str, Any] = {}
    known_keys = set()
    for name, key in SETTINGS_KEYS.items():
        known_keys.add(key)
        if key not in data or data[key] is None:
            continue
        default = getattr(defaults, name)
        values[name] = _coerce(name, key, data[key], default)

    settings = Settings(**values, extra={k: v for k, v in data.items() if k not in known_keys})
    _validate_settings(settings, defaults)
    return settings


def _coerce(name: str, key: str, raw: Any, default: Any) -> Any:
    """Coerce a raw blob value to the type of its default."""
    try:
        if isinstance(default, bool):
            if isinstance(raw, str):
                return raw.strip().lower() in ("1", "true", "yes", "on")
            return bool(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        if name == "whitelist":
            return _parse_whitelist(raw)
        if name == "blacklist":
            return _parse_blacklist(raw)
        if name == "dynamic_rules":
            return [dict(r) for r in raw if isinstance(r, Mapping)]
        if isinstance(default, str):
            return str(raw)
    except (TypeError, ValueError):
        logger.warning(f"Setting {key!r} has unusable value {raw!r}, using default {default!r}")
        return default
    return raw


def _normalize_term(term: Any) -> str:
    """Reduce a list term to the tokens the tracker compares against."""
    return " ".join(tokenize(str(term)))


def _parse_whitelist(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    terms = []
    for term in raw:
        term = _normalize_term(term)
        if term and term not in terms:
            terms.append(term)
    return terms


def _parse_blacklist(raw: Any) -> dict[str, int]:
    """Parse the blacklist, clamping weights into 1..10."""
    if not isinstance(raw, Mapping):
        raise TypeError("blacklist must be a mapping of term to weight")
    low, high = BLACKLIST_WEIGHT_RANGE
    parsed: dict[str, int] = {}
    for term, weight in raw.items():
        term = _normalize_term(term)
        if not term:
            continue
        try:
            weight = int(weight)
        except (TypeError, ValueError):
            logger.warning(f"Blacklist term {term!r} has non-numeric weight {weight!r}, using {low}")
            weight = low
        parsed[term] = min(max(weight, low), high)
    return parsed


def _validate_settings(settings: Settings, defaults: Settings) -> None:
    """Reset out-of-range numeric settings to their defaults."""
    for name, (low, high) in NUMERIC_BOUNDS.items():
        value = getattr(settings, name)
        if (low is not None and value < low) or (high is not None and value > high):
            default = getattr(defaults, name)
            logger.warning(
                f"Setting {SETTINGS_KEYS[name]!r}={value!r} is outside "
                f"[{low}, {high if high is not None else 'inf'}], using default {default!r}"
            )
            setattr(settings, name, default)

    if settings.ngram_min > settings.ngram_max:
        logger.warning(
            f"ngramMin {settings.ngram_min} exceeds ngramMax {settings.ngram_max}, "
            f"using ngramMin={min(defaults.ngram_min, settings.ngram_max)}"
        )
        settings.ngram_min = min(defaults.ngram_min, settings.ngram_max)


def load_static_rules(path: str | Path) -> list[Rule]:
    """Load a static rule seed (a JSON or YAML array of rule objects)."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return _build_static_rules(data)


def load_default_static_rules() -> list[Rule]:
    """Load the bundled static rule seed."""
    pkg = importlib.resources.files("prose_polisher") / "static_rules" / "default.yaml"
    data = yaml.safe_load(pkg.read_text(encoding="utf-8"))
    return _build_static_rules(data)


def _build_static_rules(data: Any) -> list[Rule]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("Static rule seed must be a list of rule objects")

    rules = []
    seen_ids = set()
    for item in data:
        if not isinstance(item, Mapping):
            raise ValueError(f"Static rule entry is not an object: {item!r}")
        missing = {"scriptName", "findRegex"} - {k for k, v in item.items() if v}
        if missing:
            raise ValueError(f"Static rule missing required fields: {missing}")
        try:
            rule = Rule.from_dict(item, is_static=True)
        except MalformedRuleError as e:
            raise ValueError(f"Static rule seed entry is malformed: {e.message}") from e
        if rule.id in seen_ids:
            raise ValueError(f"Duplicate static rule id: {rule.id!r}")
        seen_ids.add(rule.id)
        rules.append(rule)
    return rules
