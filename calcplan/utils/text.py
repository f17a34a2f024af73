"""Text normalisation helpers for table names, hints and descriptions."""

import html
import re
from typing import Any

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[·!?！？…\-_—–()（）【】\[\]「」『』《》〈〉“”‘’\"']")


def normalize_prompt_text(value: Any) -> str:
    """Strip markup and collapse whitespace; non-strings become ''."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v) for v in value if v is not None)
    text = html.unescape(_TAG_RE.sub("", str(value)))
    text = text.replace("\\n", " ")
    return _WS_RE.sub(" ", text).strip()


def compact_text(value: Any) -> str:
    """Normalised text without whitespace or decorative punctuation, for pattern tests."""
    return _PUNCT_RE.sub("", _WS_RE.sub("", normalize_prompt_text(value)))


def shorten_text(value: Any, max_len: int) -> str:
    text = normalize_prompt_text(value)
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - 1)].rstrip() + "…"


def strip_table_suffix(table: str) -> str:
    """'Skill DMG2' -> 'Skill DMG' (value tables often carry a trailing 2)."""
    return table[:-1] if table.endswith("2") else table
