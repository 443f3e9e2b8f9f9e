"""Removal of model reasoning spans (``<think>...</think>``) from response text.

Reasoning models wrap their deliberation in think tags, sometimes malformed,
unclosed, nested, or carrying attributes. ``sanitize`` scans delimiter
tokens with a small state machine instead of applying regex passes, and
its output never contains a delimiter, so ``sanitize(sanitize(x)) ==
sanitize(x)`` for every input.
"""

import re
from typing import Any


# A tag whose name starts with "think", in any of its forms, plus such a tag
# truncated at end of text
DELIMITER = re.compile(r"<\s*/?\s*think\w*(?:\s[^<>]*)?/?\s*(?:>|\Z)", re.IGNORECASE)
_CLOSING = re.compile(r"<\s*/")
_SELF_CLOSING = re.compile(r"/\s*>\Z")


def _kind(token: str) -> str:
    if _CLOSING.match(token):
        return "close"
    if _SELF_CLOSING.search(token) or not token.endswith(">"):
        return "drop"
    return "open"


def _scan(text: str) -> str:
    """Single pass: drop delimited spans, keep text outside them.

    An unclosed span keeps its content (minus delimiters), since a
    truncated response is more useful than an empty one.
    """
    kept: list[str] = []
    pending: list[str] = []
    depth = 0
    position = 0

    for match in DELIMITER.finditer(text):
        chunk = text[position:match.start()]
        position = match.end()
        if depth == 0:
            kept.append(chunk)
        else:
            pending.append(chunk)

        kind = _kind(match.group(0))
        if kind == "open":
            depth += 1
        elif kind == "close" and depth > 0:
            depth -= 1
            if depth == 0:
                pending.clear()

    tail = text[position:]
    if depth == 0:
        kept.append(tail)
    else:
        kept.extend(pending)
        kept.append(tail)
    return "".join(kept)


def _strip_all(text: str) -> str:
    # Removing a span can splice a new delimiter together ("<thi<think></think>nk>");
    # each pass shortens the text, so this terminates.
    while DELIMITER.search(text):
        text = _scan(text)
    return text.strip()


def _last_closing_end(text: str) -> int | None:
    end = None
    for match in DELIMITER.finditer(text):
        if _kind(match.group(0)) == "close":
            end = match.end()
    return end


def sanitize(text: str | None) -> str:
    """Strip reasoning spans from model output.

    If a closing delimiter is present, the text after the last one is the
    model's final answer and is preferred when non-empty.

    Args:
        text: Raw model output (``None`` is treated as empty)

    Returns:
        Cleaned text with no delimiter substrings, whitespace-trimmed
    """
    if not text:
        return ""

    end = _last_closing_end(text)
    if end is not None:
        final_answer = _strip_all(text[end:])
        if final_answer:
            return final_answer

    return _strip_all(text)


def sanitize_payload(value: Any) -> Any:
    """Sanitize every string inside a JSON-like structure, preserving its shape.

    Strings without a delimiter are returned untouched, whitespace included.
    """
    if isinstance(value, str):
        return sanitize(value) if DELIMITER.search(value) else value
    if isinstance(value, dict):
        return {key: sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_payload(item) for item in value]
    return value
