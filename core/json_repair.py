"""
Tolerant parsing of JSON emitted by the vision/LLM layer.

Model output is frequently wrapped in Markdown fences or cut off when it hits
the max-token budget. `repair` recovers the common truncations by closing the
open string, filling a dangling key with null, dropping a trailing comma and
closing every open bracket/brace in reverse order. It never raises.
"""

import json
import logging
import re
from typing import Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_DANGLING_KEY = re.compile(r":\s*$")
_TRAILING_COMMA = re.compile(r",\s*$")
_CLOSERS = {"{": "}", "[": "]"}
_FAIL = object()


def strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def _scan(text: str) -> Tuple[bool, List[str]]:
    """
    Walk `text` once, honouring string and escape state.
    Returns (ends_inside_string, stack_of_unclosed_openers).
    """
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]"):
            if stack and _CLOSERS[stack[-1]] == ch:
                stack.pop()
    return in_string, stack


def close_truncated(text: str) -> str:
    attempt = text
    in_string, _ = _scan(attempt)
    if in_string:
        if attempt.endswith("\\") and not attempt.endswith("\\\\"):
            attempt = attempt[:-1]
        attempt += '"'

    if _DANGLING_KEY.search(attempt):
        attempt += "null"

    attempt = _TRAILING_COMMA.sub("", attempt)
    _, stack = _scan(attempt)
    return attempt + "".join(_CLOSERS[c] for c in reversed(stack))


def _loads(text: str) -> Any:
    try:
        return json.loads(text, strict=False)
    except (ValueError, RecursionError):
        return _FAIL


def _candidates(cleaned: str) -> List[str]:
    out = [cleaned]
    # Prose before the payload ("Here are the items: [...]")
    starts = [i for i in (cleaned.find("["), cleaned.find("{")) if i > 0]
    if starts:
        out.append(cleaned[min(starts):])
    return out


def repair(text: Any) -> Any:
    """
    Parse model output into a JSON value, repairing truncation when needed.

    - str/bytes: fences stripped, parsed directly, then repaired and re-parsed.
    - Anything already parsed (list, dict, numbers, None) is returned as is, so
      repair(repair(x)) == repair(x).
    A top-level JSON string is never a valid payload and yields None, like
    anything else that cannot be recovered.
    """
    if isinstance(text, (bytes, bytearray)):
        text = text.decode("utf-8", errors="replace")
    if not isinstance(text, str):
        return text

    cleaned = strip_fences(text)
    if not cleaned:
        return None

    for candidate in _candidates(cleaned):
        parsed = _loads(candidate)
        if parsed is not _FAIL:
            return None if isinstance(parsed, str) else parsed
        parsed = _loads(close_truncated(candidate))
        if parsed is not _FAIL:
            logger.info("json.repair.recovered chars=%d", len(candidate))
            return None if isinstance(parsed, str) else parsed

    logger.warning("json.repair.failed chars=%d", len(cleaned))
    return None


def parse_items(text: Any) -> List[dict]:
    """Accepts `[...]` or `{"items": [...]}`; anything else means no items."""
    value = repair(text)
    if isinstance(value, dict) and isinstance(value.get("items"), list):
        value = value["items"]
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def parse_header(text: Any) -> Optional[dict]:
    value = repair(text)
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
        value = value[0]
    return value if isinstance(value, dict) else None
