"""Text normalisation helpers shared by extraction, chunking and storage."""

import re

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE_RUN = re.compile(r"\s+")
_NON_ASCII = re.compile(r"[^\x00-\x7f]")


def normalize_whitespace(text: str) -> str:
    """Strip control characters and collapse whitespace runs to one space."""
    if not text:
        return ""
    cleaned = _CONTROL_CHARS.sub(" ", text)
    return _WHITESPACE_RUN.sub(" ", cleaned).strip()


def truncate_utf8(text: str, max_bytes: int) -> str:
    """
    Truncate ``text`` so its UTF-8 encoding is at most ``max_bytes`` long.

    Never splits a multi-byte code point: a partial trailing sequence is
    dropped rather than replaced.
    """
    if max_bytes <= 0:
        return ""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def to_ascii(value: str) -> str:
    """Replace every non-ASCII character with an underscore."""
    return _NON_ASCII.sub("_", value)
