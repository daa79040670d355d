"""Shared utility helpers for kryten-streambot."""

from __future__ import annotations

import re
from datetime import datetime, timezone

_TRAILING_PUNCT_RE = re.compile(r"[.,!?…]+$")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_username(value: object) -> str:
    """Lower-case login with surrounding whitespace and a leading '@' removed."""
    if not value:
        return ""
    return str(value).strip().lstrip("@").lower()


def normalize_phrase(value: object) -> str:
    """Collapse whitespace, lower-case and strip trailing punctuation."""
    if not value:
        return ""
    text = _WHITESPACE_RE.sub(" ", str(value)).strip().lower()
    return _TRAILING_PUNCT_RE.sub("", text).strip()


def squeeze_spaces(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def parse_timestamp(ts: str | None) -> datetime | None:
    """Parse SQLite TIMESTAMP / ISO string to timezone-aware datetime, or None."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(str(ts).replace("Z", "+00:00"))
        # SQLite stores naive timestamps as UTC
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        return None


def to_epoch(ts: str | None) -> int:
    """ISO timestamp → epoch seconds; 0 when absent or unparseable."""
    dt = parse_timestamp(ts)
    return int(dt.timestamp()) if dt else 0


def now_utc() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return now_utc().isoformat()


_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.!?…])")


def tidy_reply(value: object) -> str:
    """Single-line reply with no space before punctuation; case is kept."""
    if not value:
        return ""
    text = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text).strip()
