"""
Helpers for pulling JSON payloads out of free-form oracle text.

Model output is untrusted: it may wrap the payload in prose or markdown fences,
contain brackets inside strings, or be truncated. The scanner below walks the
text once from left to right, tracks string/escape state, and only returns a
top-level substring whose brackets balance and which decodes to the expected
JSON type. A malformed payload yields nothing rather than a fragment of it.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional

_PAIRS = {"[": "]", "{": "}"}


def strip_code_fences(text: str) -> str:
    """Remove a leading ```/```json fence and a trailing ``` if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        cleaned = "\n".join(lines)
    return cleaned


def scan_balanced(text: str, start: int) -> Optional[str]:
    """
    Return the balanced bracket substring beginning at text[start], or None when
    the brackets never close or close with the wrong kind.
    """
    opener = text[start]
    if opener not in _PAIRS:
        return None
    stack: List[str] = []
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
        elif ch in _PAIRS:
            stack.append(_PAIRS[ch])
        elif ch in ("]", "}"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start : idx + 1]
    return None


def _first_decoded(text: Optional[str], opener: str, kind: type) -> Optional[Any]:
    """
    Walk the text once. A balanced candidate that does not decode to `kind` is
    skipped as a whole, so brackets nested inside a malformed payload are never
    tried on their own; an unclosed or mismatched candidate ends the search.
    """
    if not text:
        return None
    cleaned = strip_code_fences(text)
    pos = cleaned.find(opener)
    while pos != -1:
        chunk = scan_balanced(cleaned, pos)
        if chunk is None:
            return None
        try:
            decoded = json.loads(chunk)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, kind):
            return decoded
        pos = cleaned.find(opener, pos + len(chunk))
    return None


def extract_json_array(text: Optional[str]) -> Optional[List[Any]]:
    """First balanced `[...]` in the text that decodes to a JSON list."""
    return _first_decoded(text, "[", list)


def extract_json_object(text: Optional[str]) -> Optional[dict]:
    """First balanced `{...}` in the text that decodes to a JSON object."""
    return _first_decoded(text, "{", dict)
