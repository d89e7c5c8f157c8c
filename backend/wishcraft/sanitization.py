# Overview: Text sanitization for customer-supplied gift messages.

from __future__ import annotations

import html
import re

# Blocks whose content is dropped entirely, not just their tags
_DANGEROUS_BLOCK_RE = re.compile(
    r"<\s*(script|style|iframe|object|embed|noscript)\b[^>]*>.*?<\s*/\s*\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_TAG_RE = re.compile(r"<[^>]*>")
_UNCLOSED_TAG_RE = re.compile(r"<[a-zA-Z/!][^<]*$")
_SCRIPT_SCHEME_RE = re.compile(r"\b(?:javascript|vbscript|data)\s*:", re.IGNORECASE)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_text(value: str | None, *, max_length: int = 1000) -> str | None:
    """
    Strip HTML/script content and normalize whitespace.

    - None / non-string / blank -> None
    - <script>, <style>, <iframe>, ... blocks are removed with their content
    - remaining tags are removed, entities decoded once, then tags stripped
      again so "&lt;b&gt;" cannot smuggle markup through
    - result truncated to max_length
    """
    if not value or not isinstance(value, str):
        return None

    cleaned = _DANGEROUS_BLOCK_RE.sub("", value)
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = html.unescape(cleaned)
    cleaned = _DANGEROUS_BLOCK_RE.sub("", cleaned)
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = _UNCLOSED_TAG_RE.sub("", cleaned)
    cleaned = _SCRIPT_SCHEME_RE.sub("", cleaned)
    cleaned = _CONTROL_CHARS_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()

    if not cleaned:
        return None
    return cleaned[:max_length]


def sanitize_gift_message(value: str | None, *, max_length: int = 500) -> str | None:
    return sanitize_text(value, max_length=max_length)
