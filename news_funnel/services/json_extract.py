"""
JSON extraction from free-form model text.

The model is asked for bare JSON but routinely wraps it in markdown fences or
chatter, and the chatter may hold bracket pairs of its own ("[0-100]", "{n}").
extract_json() returns the first balanced object/array that actually parses as a
tagged result: Parsed(value) or Malformed(raw_text, reason). Callers branch on
the variant instead of null-checking.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Literal

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_INVALID_ESCAPE = re.compile(r'(?<!\\)\\(?!["\\/bfnrtu])')

_BRACKETS = {"object": ("{", "}"), "array": ("[", "]")}


@dataclass(frozen=True)
class Parsed:
    value: Any


@dataclass(frozen=True)
class Malformed:
    raw_text: str
    reason: str


ParseResult = Parsed | Malformed


def strip_fences(text: str) -> str:
    text = text.strip()
    text = _FENCE_OPEN.sub("", text)
    return _FENCE_CLOSE.sub("", text).strip()


def find_balanced(text: str, opener: str, closer: str, start: int = 0) -> str | None:
    """First balanced opener..closer block at or after `start`; brackets inside strings are ignored."""
    start = text.find(opener, start)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
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
                return text[start : i + 1]
    return None


def extract_json(text: str | None, kind: Literal["object", "array"]) -> ParseResult:
    if not text or not text.strip():
        return Malformed(raw_text=text or "", reason="empty")

    opener, closer = _BRACKETS[kind]
    body = strip_fences(text)
    found_block = False
    # A block that fails to parse is prose; keep scanning from the next opener
    pos = body.find(opener)
    while pos != -1:
        block = find_balanced(body, opener, closer, pos)
        if block is None:
            pos = body.find(opener, pos + 1)
            continue
        found_block = True
        for candidate in (block, _INVALID_ESCAPE.sub(r"\\\\", block)):
            try:
                return Parsed(value=json.loads(candidate))
            except json.JSONDecodeError:
                continue
        pos = body.find(opener, pos + 1)

    if not found_block:
        return Malformed(raw_text=text, reason=f"no_{kind}")
    return Malformed(raw_text=text, reason="invalid_json")
