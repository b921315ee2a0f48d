"""Best-effort extraction of JSON blocks embedded in generated text.

Model output routinely wraps the JSON it was asked for in prose or markdown
fences, truncates it, or omits it altogether. ``extract`` scans for the first
balanced bracket span that parses as the requested shape and raises
``ExtractionError`` when there is none. Field-level defaults are the caller's
job.
"""
from __future__ import annotations

import json
from typing import Any, Literal

from app.errors import ExtractionError

Shape = Literal["array", "object"]

_OPENERS = {"[": "]", "{": "}"}
_CLOSERS = {"]", "}"}


def _match_bracket(text: str, start: int) -> int | None:
    """Return the index closing the bracket opened at ``start``, honoring JSON strings."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
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
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in _CLOSERS:
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return idx
    return None


def _matches_shape(value: Any, shape: Shape) -> bool:
    if shape == "object":
        return isinstance(value, dict)
    return isinstance(value, list) and bool(value) and all(isinstance(item, dict) for item in value)


def _candidate_starts(text: str, shape: Shape):
    opener = "[" if shape == "array" else "{"
    idx = text.find(opener)
    while idx >= 0:
        if shape == "object" or text[idx + 1 :].lstrip().startswith("{"):
            yield idx
        idx = text.find(opener, idx + 1)


def _try_parse(span: str, shape: Shape) -> Any | None:
    try:
        parsed = json.loads(span)
    except json.JSONDecodeError:
        return None
    return parsed if _matches_shape(parsed, shape) else None


def extract(text: str, shape: Shape = "object") -> Any:
    """Parse the first JSON array-of-objects or object found in ``text``."""
    if shape not in ("array", "object"):
        raise ValueError(f"Unsupported shape: {shape}")
    if not isinstance(text, str) or not text.strip():
        raise ExtractionError("No text to extract JSON from")

    first_start: int | None = None
    for start in _candidate_starts(text, shape):
        if first_start is None:
            first_start = start
        end = _match_bracket(text, start)
        if end is None:
            continue
        parsed = _try_parse(text[start : end + 1], shape)
        if parsed is not None:
            return parsed

    if first_start is not None:
        # Greedy span from the first opener to the last closer.
        closer = "]" if shape == "array" else "}"
        last = text.rfind(closer)
        if last > first_start:
            parsed = _try_parse(text[first_start : last + 1], shape)
            if parsed is not None:
                return parsed

    raise ExtractionError(f"No JSON {shape} found in generated text")
