"""Static and dynamic rule storage."""

from typing import Any, Iterable, Mapping

from loguru import logger

from .config import Settings
from .errors import InvalidPatternError, MalformedRuleError
from .models import Rule
from .replacement import RegexCache, compile_rule_regex

STATIC_EDITABLE_FIELDS = frozenset({"disabled"})

_FIELD_NAMES = {
    "scriptName": "script_name",
    "findRegex": "find_regex",
    "replaceString": "replace_string",
    "isNew": "is_new",
    "minDepth": "min_depth",
    "maxDepth": "max_depth",
    "trimStrings": "trim_strings",
    "substituteRegex": "substitute_regex",
    "runOnEdit": "run_on_edit",
    "markdownOnly": "markdown_only",
    "promptOnly": "prompt_only",
}


def validate_rule(rule: Rule) -> None:
    """Raise MalformedRuleError unless the rule can be saved."""
    if not rule.script_name:
        raise MalformedRuleError("Rule name cannot be empty")
    if not rule.find_regex:
        raise MalformedRuleError(f"Rule {rule.script_name!r} has an empty find regex")
    if not rule.placement:
        raise MalformedRuleError(f"Rule {rule.script_name!r} must have at least one placement")
    try:
        compile_rule_regex(rule.find_regex)
    except InvalidPatternError as e:
        raise MalformedRuleError(f"Rule {rule.script_name!r}: {e.message}") from e


def _normalize_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Map editor field names to Rule attributes, coercing sequences to tuples."""
    rule_fields = set(Rule.__dataclass_fields__)
    normalized: dict[str, Any] = {}
    for key, value in changes.items():
        name = _FIELD_NAMES.get(key, key)
        if name not in rule_fields:
            raise MalformedRuleError(f"Unknown rule field {key!r}")
        try:
            normalized[name] = _coerce_field(name, value)
        except (TypeError, ValueError) as e:
            raise MalformedRuleError(f"Rule field {key!r} has unusable value {value!r}") from e
    return normalized


def _coerce_field(name: str, value: Any) -> Any:
    if name == "placement":
        return tuple(int(p) for p in value or ())
    if name == "trim_strings":
        return tuple(str(s) for s in value or ())
    if name == "script_name":
        return str(value or "").strip()
    if name in ("find_regex", "replace_string", "id"):
        return str(value or "")
    if name in ("min_depth", "max_depth"):
        return None if value is None or value == "" else int(value)
    if name == "substitute_regex":
        return int(value or 0)
    if name in ("disabled", "is_static", "is_new", "run_on_edit", "markdown_only", "prompt_only"):
        return bool(value)
    return value


def _coerce_rule(item: Rule | Mapping[str, Any], is_static: bool) -> Rule | None:
    """Build a stored rule, or log and return None when the entry is unusable."""
    if isinstance(item, Rule):
        return item
    try:
        return Rule.from_dict(item, is_static=is_static)
    except MalformedRuleError as e:
        logger.warning(f"Skipping stored rule: {e.message}")
    except AttributeError:
        logger.warning(f"Skipping stored rule that is not an object: {item!r}")
    return None


def _sort_key(rule: Rule) -> tuple[str, str]:
    return (rule.script_name.lower(), rule.id)


class RuleStore:
    """Owns the static and dynamic rule collections.

    Every mutation clears the shared RegexCache so no stale compiled pattern
    survives a rule change.
    """

    def __init__(self, cache: RegexCache | None = None) -> None:
        self.cache = cache or RegexCache()
        self._static: dict[str, Rule] = {}
        self._dynamic: dict[str, Rule] = {}

    def load_static(self, rules: Iterable[Rule | Mapping[str, Any]]) -> None:
        """Replace the static rules.

        Invalid regexes are kept but never applied. Entries with malformed
        fields are skipped.
        """
        self._static = {}
        for item in rules:
            rule = _coerce_rule(item, is_static=True)
            if rule is None:
                continue
            if not rule.is_static:
                rule = rule.with_changes(is_static=True)
            self._static[rule.id] = rule
        self.cache.clear()
        logger.debug(f"Loaded {len(self._static)} static rules")

    def load_dynamic(self, rules: Iterable[Rule | Mapping[str, Any]]) -> None:
        """Replace the dynamic rules, typically from the settings blob. Malformed entries are skipped."""
        self._dynamic = {}
        for item in rules:
            rule = _coerce_rule(item, is_static=False)
            if rule is None:
                continue
            if rule.is_static:
                rule = rule.with_changes(is_static=False)
            if rule.id in self._dynamic or rule.id in self._static:
                logger.warning(f"Duplicate rule id {rule.id!r} in dynamic rules, skipping")
                continue
            self._dynamic[rule.id] = rule
        self.cache.clear()
        logger.debug(f"Loaded {len(self._dynamic)} dynamic rules")

    def get_active_rules(self, settings: Settings | None) -> list[Rule]:
        """Enabled rules in application order: static then dynamic, each by name."""
        if settings is None:
            logger.warning("get_active_rules called without settings, returning no rules")
            return []
        active: list[Rule] = []
        if settings.is_static_enabled:
            active += sorted((r for r in self._static.values() if not r.disabled), key=_sort_key)
        if settings.is_dynamic_enabled:
            active += sorted((r for r in self._dynamic.values() if not r.disabled), key=_sort_key)
        return active

    def create_rule(self, data: Mapping[str, Any]) -> Rule:
        """Validate and add a new dynamic rule."""
        rule = Rule.from_dict({**data, "id": None}, is_static=False)
        validate_rule(rule)
        self._dynamic[rule.id] = rule
        self.cache.clear()
        logger.info(f"Created rule {rule.script_name!r} ({rule.id})")
        return rule

    def update_rule(self, rule_id: str, changes: Mapping[str, Any]) -> Rule:
        """Apply field changes (camelCase or snake_case keys) to an existing rule.

        Static rules only accept a change to ``disabled``. On any validation
        failure the stored rule is left as it was.
        """
        current = self._require(rule_id)
        normalized = _normalize_changes(changes)
        if normalized.pop("id", rule_id) != rule_id:
            raise MalformedRuleError("Rule id cannot be changed")
        normalized.pop("is_static", None)

        if current.is_static:
            forbidden = sorted(
                k for k, v in normalized.items()
                if k not in STATIC_EDITABLE_FIELDS and v != getattr(current, k)
            )
            if forbidden:
                raise MalformedRuleError(
                    f"Static rule {current.script_name!r} can only be enabled or disabled "
                    f"(attempted to change {', '.join(forbidden)})"
                )

        updated = current.with_changes(**normalized)
        validate_rule(updated)

        self._collection(updated)[rule_id] = updated
        self.cache.clear()
        logger.info(f"Updated rule {updated.script_name!r} ({rule_id})")
        return updated

    def delete_rule(self, rule_id: str) -> Rule:
        """Remove a dynamic rule. Static rules cannot be deleted."""
        rule = self._require(rule_id)
        if rule.is_static:
            raise MalformedRuleError(f"Static rule {rule.script_name!r} cannot be deleted")
        del self._dynamic[rule_id]
        self.cache.clear()
        logger.info(f"Deleted rule {rule.script_name!r} ({rule_id})")
        return rule

    def toggle_rule(self, rule_id: str) -> Rule:
        """Flip the disabled flag of any rule."""
        rule = self._require(rule_id)
        toggled = rule.with_changes(disabled=not rule.disabled)
        self._collection(toggled)[rule_id] = toggled
        self.cache.clear()
        return toggled

    def add_generated(self, rules: Iterable[Rule]) -> list[Rule]:
        """Insert already-validated generated rules in one step."""
        added = [r.with_changes(is_static=False) if r.is_static else r for r in rules]
        for rule in added:
            self._dynamic[rule.id] = rule
        if added:
            self.cache.clear()
            logger.info(f"Added {len(added)} generated rules")
        return added

    def all_rules(self) -> list[Rule]:
        """Every rule, static first, each group by name."""
        return sorted(self._static.values(), key=_sort_key) + sorted(self._dynamic.values(), key=_sort_key)

    def get(self, rule_id: str) -> Rule | None:
        return self._static.get(rule_id) or self._dynamic.get(rule_id)

    def dynamic_rules_payload(self) -> list[dict[str, Any]]:
        """Dynamic rules in the camelCase shape stored under ``dynamicRules``."""
        return [r.to_dict() for r in self._dynamic.values()]

    def _require(self, rule_id: str) -> Rule:
        rule = self.get(rule_id)
        if rule is None:
            raise MalformedRuleError(f"Unknown rule id {rule_id!r}")
        return rule

    def _collection(self, rule: Rule) -> dict[str, Rule]:
        return self._static if rule.is_static else self._dynamic

    def __len__(self) -> int:
        return len(self._static) + len(self._dynamic)
