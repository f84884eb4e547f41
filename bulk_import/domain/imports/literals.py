"""
Repair quasi-JSON cell values into structured data.

Spreadsheet exports of document databases often flatten arrays and objects
into Python-repr strings such as ``[{'name': 'egg', 'qty': 2, 'ok': True}]``.
``normalize_literal`` turns those into real lists/dicts. Values that look like
containers but cannot be repaired are returned verbatim and flagged so the
validator can surface them instead of dropping them.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, List

logger = logging.getLogger(__name__)

_PAIRS = {"[": "]", "{": "}"}
_BARE_WORDS = {
    "None": "null",
    "True": "true",
    "False": "false",
    "null": "null",
    "true": "true",
    "false": "false",
}
_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


@dataclass(frozen=True)
class LiteralResult:
    value: Any
    structured: bool
    low_confidence: bool


def looks_like_container(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    text = value.strip()
    return len(text) >= 2 and text[0] in _PAIRS and text[-1] == _PAIRS[text[0]]


def _read_quoted(text: str, start: int) -> tuple:
    """Read a quoted string starting at ``start``; return (content, index after closing quote)."""
    quote = text[start]
    chars: List[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            chars.append(_SIMPLE_ESCAPES.get(nxt, ch + nxt))
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise ValueError("unterminated string literal")


def _drop_trailing_comma(out: List[str]) -> None:
    idx = len(out) - 1
    while idx >= 0 and out[idx].isspace():
        idx -= 1
    if idx >= 0 and out[idx] == ",":
        del out[idx]


def rewrite_pseudo_json(text: str) -> str:
    """
    Rewrite a Python-literal-style container into strict JSON text.

    Quoted strings (either quote style) are re-emitted as JSON strings,
    ``None``/``True``/``False`` become ``null``/``true``/``false``, numeric
    tokens are copied untouched and trailing commas are dropped.

    Raises:
        ValueError: If a string literal is left unterminated.
    """
    out: List[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch in ("'", '"'):
            content, i = _read_quoted(text, i)
            out.append(json.dumps(content, ensure_ascii=False))
            continue
        if ch.isalpha() or ch == "_":
            j = i
            while j < len(text) and (text[j].isalnum() or text[j] == "_"):
                j += 1
            word = text[i:j]
            out.append(_BARE_WORDS.get(word, word))
            i = j
            continue
        if ch in ("]", "}"):
            _drop_trailing_comma(out)
        out.append(ch)
        i += 1
    return "".join(out)


def normalize_literal(value: Any) -> LiteralResult:
    """
    Parse container-looking strings into structured data.

    Strict JSON is tried first; if that fails the text is rewritten with
    ``rewrite_pseudo_json`` and parsed again. Non-container values pass
    through untouched.
    """
    if not looks_like_container(value):
        return LiteralResult(value=value, structured=False, low_confidence=False)

    text = value.strip()
    try:
        return LiteralResult(value=json.loads(text), structured=True, low_confidence=False)
    except json.JSONDecodeError:
        pass

    try:
        repaired = json.loads(rewrite_pseudo_json(text))
    except ValueError as exc:
        logger.debug("Could not normalise literal %r: %s", text[:80], exc)
        return LiteralResult(value=value, structured=False, low_confidence=True)

    return LiteralResult(value=repaired, structured=True, low_confidence=False)
