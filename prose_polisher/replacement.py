"""Compiled-pattern cache and rule application."""

import random
import re
from typing import Iterable

from loguru import logger

from .errors import InvalidPatternError
from .models import Rule

RANDOM_BLOCK_RE = re.compile(r"\{\{random:([\s\S]+?)\}\}")
_JS_NAMED_GROUP_RE = re.compile(r"\(\?<(?![=!])([A-Za-z_]\w*)>")
_JS_NAMED_BACKREF_RE = re.compile(r"\\k<([A-Za-z_]\w*)>")
_RANDOM_GROUP_REF_RE = re.compile(r"\$(\d)")
_LITERAL_TEMPLATE_RE = re.compile(r"\$(\$|&|\d{1,2})")

_INVALID = object()


def translate_js_regex(source: str) -> str:
    """Rewrite the JavaScript-only regex syntax that Python spells differently."""
    source = _JS_NAMED_GROUP_RE.sub(r"(?P<\1>", source)
    return _JS_NAMED_BACKREF_RE.sub(r"(?P=\1)", source)


def compile_rule_regex(source: str) -> re.Pattern:
    """Compile a rule's find regex, raising InvalidPatternError on failure."""
    if not source:
        raise InvalidPatternError(source, "pattern is empty")
    try:
        return re.compile(translate_js_regex(source), re.IGNORECASE)
    except re.error as e:
        raise InvalidPatternError(source, str(e)) from e


def _rule_key(rule: Rule) -> str:
    return rule.id or rule.script_name


class RegexCache:
    """Memoizes compiled find patterns and parsed random-option lists per rule."""

    def __init__(self) -> None:
        self._patterns: dict[tuple[str, str], object] = {}
        self._options: dict[tuple[str, str], list[str] | None] = {}

    def get_compiled_pattern(self, rule: Rule) -> re.Pattern | None:
        """Return the compiled pattern, or None when the regex is invalid."""
        key = (_rule_key(rule), rule.find_regex)
        cached = self._patterns.get(key)
        if cached is None:
            try:
                cached = compile_rule_regex(rule.find_regex)
            except InvalidPatternError as e:
                logger.warning(f"Invalid regex in rule {rule.script_name!r}, skipping: {e.message}")
                cached = _INVALID
            self._patterns[key] = cached
        return None if cached is _INVALID else cached

    def get_random_options(self, rule: Rule) -> list[str] | None:
        """Parse ``{{random:a,b,c}}`` from the replacement, or None for a literal."""
        key = (_rule_key(rule), rule.replace_string)
        if key not in self._options:
            options = None
            match = RANDOM_BLOCK_RE.search(rule.replace_string)
            if match:
                options = [opt.strip() for opt in match.group(1).split(",")]
                options = [opt for opt in options if opt] or None
            self._options[key] = options
        return self._options[key]

    def compiled_patterns(self, rules: Iterable[Rule]) -> list[re.Pattern]:
        """Compiled patterns of every rule that compiles."""
        patterns = (self.get_compiled_pattern(rule) for rule in rules)
        return [p for p in patterns if p is not None]

    def clear(self) -> None:
        """Drop both caches. Call whenever rule membership or content changes."""
        self._patterns.clear()
        self._options.clear()

    def __len__(self) -> int:
        return len(self._patterns)


def _group_or_empty(match: re.Match, index: int) -> str:
    if index < 1 or index > (match.re.groups or 0):
        return ""
    return match.group(index) or ""


def expand_js_template(template: str, match: re.Match) -> str:
    """Expand a JavaScript replacement string (``$1``, ``$&``, ``$$``) for one match.

    A reference to a group that did not participate expands to an empty string;
    a reference to a group the pattern does not define is left as written.
    Two-digit references fall back to one digit plus a literal when the
    two-digit group does not exist, as JavaScript does.
    """
    group_count = match.re.groups or 0

    def _expand(ref: re.Match) -> str:
        token = ref.group(1)
        if token == "$":
            return "$"
        if token == "&":
            return match.group(0)
        index = int(token)
        if len(token) == 2 and index > group_count:
            first = int(token[0])
            if 1 <= first <= group_count:
                return (match.group(first) or "") + token[1]
            return ref.group(0)
        if 1 <= index <= group_count:
            return match.group(index) or ""
        return ref.group(0)

    return _LITERAL_TEMPLATE_RE.sub(_expand, template)


class ReplacementEngine:
    """Applies an ordered list of rules to text; each rule sees the previous output."""

    def __init__(self, cache: RegexCache | None = None, rng: random.Random | None = None) -> None:
        self.cache = cache or RegexCache()
        self._rng = rng or random.Random()

    def apply(self, text: str | None, rules: Iterable[Rule]) -> str | None:
        """Rewrite ``text`` with every rule in order."""
        if not text:
            return text

        result = text
        for rule in rules:
            pattern = self.cache.get_compiled_pattern(rule)
            if pattern is None:
                continue
            try:
                result = self._apply_rule(result, rule, pattern)
            except Exception:
                logger.exception(f"Rule {rule.script_name!r} failed during replacement, skipping")
        return result

    def _apply_rule(self, text: str, rule: Rule, pattern: re.Pattern) -> str:
        options = self.cache.get_random_options(rule)
        if options:
            def _choose(match: re.Match) -> str:
                chosen = self._rng.choice(options)
                return _RANDOM_GROUP_REF_RE.sub(lambda ref: _group_or_empty(match, int(ref.group(1))), chosen)

            return pattern.sub(_choose, text)

        template = rule.replace_string
        return pattern.sub(lambda match: expand_js_template(template, match), text)
