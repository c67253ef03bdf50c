"""Boundary to an external text generator that drafts new rules.

The generator is any callable taking a prompt string and returning the raw
model output. Everything here is about what goes into that call and checking
what comes back before it reaches the rule store.
"""

import importlib
import json
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Iterable, Sequence

from loguru import logger

from .errors import GenerationError, InvalidPatternError, MalformedRuleError
from .models import GenerationCandidate, Rule
from .replacement import compile_rule_regex

Generator = Callable[[str], str]

BATCH_SIZE = 15
PRESCREEN_BATCH_SIZE = 50
MIN_ALTERNATIVES_PER_RULE = 15
GENERATOR_WORKERS = 2
GENERATOR_THREAD_PREFIX = "prose-polisher-generator"

_executor = ThreadPoolExecutor(max_workers=GENERATOR_WORKERS, thread_name_prefix=GENERATOR_THREAD_PREFIX)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_RANDOM_WRAPPER_RE = re.compile(r"^\{\{random:([\s\S]+?)\}\}$")

PRESCREEN_PROMPT = """\
You review phrases that an automatic detector flagged as repetitive in AI-written prose.
For each phrase decide whether a regular expression replacement would improve the prose.
Reply with a JSON array of objects with the keys "candidate", "valid_for_regex" (true or false)
and "enhanced_context" (the phrase widened to the words that make it recognizable)."""

GENERATION_PROMPT = """\
You write find/replace rules for repetitive phrases in AI-written prose.
Reply with a JSON array of objects with the keys "scriptName", "findRegex" and "replaceString".
"findRegex" is a JavaScript regular expression matched case-insensitively; use capture groups
for words that must be kept. "replaceString" must be "{{{{random:alt1,alt2,...}}}}" with at least
{min_alternatives} comma-separated alternatives; $1, $2 refer to capture groups."""


def load_generator(dotted_path: str) -> Generator:
    """Load a generator callable from a dotted path.

    Supports two formats:
    - "module.path:function_name" (colon separator)
    - "module.path.function_name" (dot separator, last segment is the function)
    """
    if ":" in dotted_path:
        module_path, func_name = dotted_path.rsplit(":", 1)
    else:
        module_path, func_name = dotted_path.rsplit(".", 1)

    module = importlib.import_module(module_path)
    func = getattr(module, func_name)

    if not callable(func):
        raise TypeError(f"Generator {dotted_path!r} is not callable")

    return func


def call_generator(generator: Generator, prompt: str, timeout: float | None = None) -> str:
    """Run the generator once, raising GenerationError on failure, timeout or empty output.

    Calls run on a shared pool of GENERATOR_WORKERS threads. A call that times
    out cannot be interrupted: its thread keeps running until the generator
    returns, and the result is discarded. A call still queued when it times
    out is cancelled.
    """
    future = _executor.submit(generator, prompt)
    try:
        raw = future.result(timeout=timeout)
    except FutureTimeoutError as e:
        future.cancel()
        raise GenerationError(f"Generator timed out after {timeout}s") from e
    except Exception as e:
        raise GenerationError(f"Generator raised {type(e).__name__}: {e}") from e

    if not isinstance(raw, str) or not raw.strip():
        raise GenerationError("Generator returned no data")
    return raw


def extract_json(raw: str) -> Any:
    """Pull the JSON payload out of free-form model output."""
    attempts = []
    fenced = _FENCED_JSON_RE.search(raw)
    if fenced:
        attempts.append(fenced.group(1))
    attempts.append(raw.strip())
    for pattern in (_ARRAY_RE, _OBJECT_RE):
        match = pattern.search(raw)
        if match:
            attempts.append(match.group(0))

    for text in attempts:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            continue
    raise GenerationError("Generator response contained no parseable JSON")


def parse_response(raw: str) -> list[Any]:
    """Parse generator output into a list of items."""
    data = extract_json(raw)
    return data if isinstance(data, list) else [data]


def build_prescreen_prompt(candidates: Sequence[GenerationCandidate]) -> str:
    phrases = "\n".join(f"- {c.candidate}" for c in candidates)
    return f"{PRESCREEN_PROMPT}\n\nEvaluate these phrases:\n{phrases}\n\nReply with the JSON array now."


def build_generation_prompt(
    candidates: Sequence[GenerationCandidate],
    instructions: str = "",
    min_alternatives: int = MIN_ALTERNATIVES_PER_RULE,
) -> str:
    """Assemble the rule-drafting prompt for one batch of candidates."""
    system = GENERATION_PROMPT.format(min_alternatives=min_alternatives)
    if instructions.strip():
        system = f"{system}\n\nAdditional instructions:\n{instructions.strip()}"
    lines = "\n".join(
        "- " + json.dumps({"candidate": c.candidate, "enhanced_context": c.enhanced_context})
        for c in candidates
    )
    return f"{system}\n\nGenerate rules for these candidates:\n{lines}\n\nFollow all instructions precisely."


def prescreen(
    candidates: Sequence[GenerationCandidate],
    generator: Generator,
    timeout: float | None = None,
) -> list[GenerationCandidate]:
    """Ask the generator which candidates are worth a rule.

    Any failure falls back to the unscreened candidates.
    """
    if not candidates:
        return []
    by_phrase = {c.candidate: c for c in candidates}
    try:
        verdicts = parse_response(call_generator(generator, build_prescreen_prompt(candidates), timeout))
    except GenerationError as e:
        logger.warning(f"Pre-screening failed, using raw candidates: {e.message}")
        return list(candidates)

    approved = []
    for verdict in verdicts:
        if not isinstance(verdict, dict) or not verdict.get("valid_for_regex"):
            continue
        phrase = str(verdict.get("candidate") or "")
        context = str(verdict.get("enhanced_context") or "")
        if not phrase or not context:
            continue
        original = by_phrase.get(phrase)
        approved.append(GenerationCandidate(phrase, context, original.score if original else 0.0))

    rejected = len(verdicts) - len(approved)
    if rejected > 0:
        logger.info(f"Pre-screening rejected {rejected} of {len(candidates)} candidates")
    return approved


def normalize_replace_string(raw: str) -> tuple[str, list[str]]:
    """Repair a drafted replacement into a ``{{random:...}}`` template.

    Returns the template and its alternatives. A list without the wrapper is
    wrapped; spaced braces such as ``{ {random: ...} }`` are tightened.
    """
    text = re.sub(r"\{\s*\{", "{{", raw.strip())
    text = re.sub(r"\}\s*\}", "}}", text)
    text = re.sub(r"\{\{\s*random:", "{{random:", text, count=1)

    wrapped = _RANDOM_WRAPPER_RE.match(text)
    if wrapped:
        alternatives = [a.strip() for a in wrapped.group(1).split(",") if a.strip()]
    else:
        alternatives = [a.strip() for a in text.strip('"').split(",") if a.strip()]
    return f"{{{{random:{','.join(alternatives)}}}}}", alternatives


def validate_drafts(
    drafts: Iterable[Any],
    min_alternatives: int = MIN_ALTERNATIVES_PER_RULE,
) -> tuple[list[Rule], list[str]]:
    """Turn drafted rule objects into Rules, rejecting unusable ones.

    Returns (accepted rules, rejection reasons).
    """
    accepted: list[Rule] = []
    rejected: list[str] = []
    for draft in drafts:
        if not isinstance(draft, dict):
            rejected.append(f"Draft is not an object: {draft!r}")
            continue
        name = str(draft.get("scriptName") or "").strip()
        find_regex = str(draft.get("findRegex") or "")
        replace_string = str(draft.get("replaceString") or "")
        if not name or not find_regex or not replace_string:
            rejected.append(f"Draft {name or draft!r} is missing scriptName, findRegex or replaceString")
            continue
        try:
            compile_rule_regex(find_regex)
        except InvalidPatternError as e:
            rejected.append(f"Draft {name!r}: {e.message}")
            continue

        template, alternatives = normalize_replace_string(replace_string)
        if len(alternatives) < min_alternatives:
            rejected.append(
                f"Draft {name!r} has {len(alternatives)} alternatives, need {min_alternatives}"
            )
            continue

        try:
            rule = Rule.from_dict({
                **draft,
                "id": None,
                "scriptName": name,
                "replaceString": template,
                "isStatic": False,
                "isNew": True,
            }, is_static=False)
        except MalformedRuleError as e:
            rejected.append(f"Draft {name!r} has malformed fields: {e.message}")
            continue
        if not rule.placement:
            rejected.append(f"Draft {name!r} has no placement")
            continue
        accepted.append(rule)

    for reason in rejected:
        logger.warning(f"Rejected generated rule: {reason}")
    return accepted, rejected
