"""Reading saved chat transcripts."""

import json
from pathlib import Path
from typing import Any


def load_transcript(path: str | Path) -> list[dict[str, Any]]:
    """Load chat messages from a SillyTavern ``.jsonl`` file or a JSON list.

    In ``.jsonl`` files the first line is chat metadata when it has no ``mes``
    key, and is skipped. Every returned message has ``is_user`` and ``mes``.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")

    stripped = text.lstrip()
    if stripped.startswith("["):
        raw = json.loads(stripped)
    else:
        raw = [json.loads(line) for line in text.splitlines() if line.strip()]

    messages = []
    for item in raw:
        if not isinstance(item, dict) or "mes" not in item:
            continue
        messages.append({
            **item,
            "is_user": bool(item.get("is_user", False)),
            "mes": str(item.get("mes") or ""),
        })
    return messages
