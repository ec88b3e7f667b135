"""Text helpers for names, file names and markdown output."""

from __future__ import annotations

import re

_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")
_INLINE_TAG = re.compile(r"\{@\w+(?:\s([^{}]*))?\}")


def sanitize_filename(filename: str) -> str:
    """Replace characters that are unsafe on common filesystems and collapse whitespace."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("-", filename)
    return _WHITESPACE.sub(" ", cleaned).strip()


def strip_tags(text: str) -> str:
    """Remove inline ``{@tag ...}`` markup, keeping the first pipe-separated part."""
    previous = None
    while previous != text:
        previous = text
        text = _INLINE_TAG.sub(lambda match: (match.group(1) or "").split("|")[0], text)
    return text


def ordinal(number: int) -> str:
    """Return ``1st``, ``2nd``, ``3rd``, ``11th`` style ordinals."""
    if 10 <= number % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")
    return f"{number}{suffix}"
