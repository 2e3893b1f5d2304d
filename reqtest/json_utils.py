"""JSON extraction helpers for LLM replies."""

import json
import re
from typing import Any

# C0 and C1 control characters (includes \t, \r, \n and DEL)
_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u001F\u007F-\u009F]")
_FENCED_RE = re.compile(r"```(?:json)?\s*([\[{][\s\S]*?[\]}])\s*```", re.IGNORECASE)


def clean_json_text(text: str) -> str:
    """Strip control characters and surrounding whitespace.

    JSON never needs raw control characters: whitespace between tokens is
    optional and inside strings they must be escaped.
    """
    return _CONTROL_CHARS_RE.sub("", text).strip()


def extract_json(text: str) -> Any | None:
    """Extract a JSON value from an LLM reply.

    Tries, in order: a fenced ```json block, the first balanced object or
    array, then the whole cleaned text. Returns None if nothing parses.
    """
    if not isinstance(text, str):
        return None

    m = _FENCED_RE.search(text)
    if m:
        try:
            return json.loads(clean_json_text(m.group(1)))
        except json.JSONDecodeError:
            pass

    cleaned = clean_json_text(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    start = min((i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1), default=-1)
    if start == -1:
        return None
    opener = cleaned[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(cleaned[start:], start):
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
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                candidate = re.sub(r",\s*([}\]])", r"\1", cleaned[start:i + 1])
                try:
                    return json.loads(candidate)
                except json.JSONDecodeError:
                    return None
    return None
