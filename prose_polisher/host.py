"""Publishing rules into the host application's regex pipeline."""

from typing import Any, Iterable, Mapping

from loguru import logger

from .config import Settings
from .models import DEFAULT_PLACEMENT, STATIC_ID_PREFIX, Rule

HOST_ID_PREFIX = STATIC_ID_PREFIX
HOST_NAME_PREFIX = "(PP) "


def is_published(entry: Mapping[str, Any]) -> bool:
    """True when a host regex entry was published by prose-polisher."""
    entry_id = entry.get("id")
    return isinstance(entry_id, str) and entry_id.startswith(HOST_ID_PREFIX)


def strip_published(host_rules: Iterable[Mapping[str, Any]] | None) -> list[dict[str, Any]]:
    """Host regex entries with every prose-polisher entry removed."""
    return [dict(entry) for entry in host_rules or () if not is_published(entry)]


def to_host_descriptor(rule: Rule) -> dict[str, Any]:
    """The host's regex-script shape for one rule."""
    return {
        "id": f"{HOST_ID_PREFIX}{rule.id}",
        "scriptName": f"{HOST_NAME_PREFIX}{rule.script_name}",
        "findRegex": rule.find_regex,
        "replaceString": rule.replace_string,
        "disabled": rule.disabled,
        "substituteRegex": rule.substitute_regex,
        "minDepth": rule.min_depth,
        "maxDepth": rule.max_depth,
        "trimStrings": list(rule.trim_strings),
        "placement": list(rule.placement or DEFAULT_PLACEMENT),
        "runOnEdit": rule.run_on_edit,
        "markdownOnly": rule.markdown_only,
        "promptOnly": rule.prompt_only,
    }


def publish_rules(
    host_rules: Iterable[Mapping[str, Any]] | None,
    rules: Iterable[Rule],
    settings: Settings | None,
) -> list[dict[str, Any]]:
    """Replace previously published entries in the host array with the given active rules.

    Entries that do not carry the prose-polisher id prefix are kept untouched
    and in order. Publishing twice with the same input gives the same array.
    On any failure the host array is returned without prose-polisher entries.
    """
    try:
        result = strip_published(host_rules)
    except Exception:
        logger.exception("Host regex array is unreadable, publishing nothing")
        return []

    if settings is None:
        logger.warning("publish_rules called without settings, prose-polisher entries removed")
        return result
    if not (settings.enabled and settings.integrate_with_global_regex):
        logger.info("Global regex integration is off, prose-polisher entries removed")
        return result

    try:
        descriptors = [to_host_descriptor(rule) for rule in rules if not rule.disabled]
    except Exception:
        logger.exception("Failed to build host regex descriptors")
        return result

    result.extend(descriptors)
    logger.info(f"Published {len(descriptors)} rules to the host regex array")
    return result
