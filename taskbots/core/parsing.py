"""Forgiving extraction of JSON from LLM replies.

Models wrap JSON in markdown fences, prepend chatter, or think out loud in
``<think>`` blocks first.  These helpers peel that away and return ``None``
when nothing usable is left, so callers can fall back to a safe default.
"""

from __future__ import annotations

import json
import re
from typing import Any

from taskbots.core.logging import get_logger

logger = get_logger("core.parsing")

_THINK_RE = re.compile(r"<think>.*?(?:</think>|$)", re.S | re.I)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.S | re.I)


def strip_think(text: str) -> str:
    """Remove ``<think>…</think>`` reasoning blocks (unterminated ones too)."""
    return _THINK_RE.sub("", text or "").strip()


def _candidates(text: str) -> list[str]:
    text = strip_think(text)
    found = [m.group(1).strip() for m in _FENCE_RE.finditer(text)]
    found.append(text.strip())
    return [c for c in found if c]


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _slice(text: str, open_char: str, close_char: str) -> Any:
    start = text.find(open_char)
    end = text.rfind(close_char) + 1
    if start >= 0 and end > start:
        return _loads(text[start:end])
    return None


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Return the first JSON object found in ``text``, else None."""
    if not text:
        return None
    for candidate in _candidates(text):
        parsed = _loads(candidate)
        if isinstance(parsed, dict):
            return parsed
        parsed = _slice(candidate, "{", "}")
        if isinstance(parsed, dict):
            return parsed
    logger.debug("No JSON object in reply: %s", text[:200])
    return None


def extract_json_array(text: str | None) -> list[Any] | None:
    """Return a JSON array found in ``text``.

    An object holding a single list value (``{"subtasks": [...]}``) counts
    as that list.
    """
    if not text:
        return None
    for candidate in _candidates(text):
        parsed = _loads(candidate)
        if parsed is None:
            parsed = _slice(candidate, "[", "]")
        if parsed is None:
            parsed = _slice(candidate, "{", "}")
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict):
            lists = [v for v in parsed.values() if isinstance(v, list)]
            if len(lists) == 1:
                return lists[0]
    logger.debug("No JSON array in reply: %s", text[:200])
    return None
