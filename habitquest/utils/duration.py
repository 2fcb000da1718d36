from __future__ import annotations
import re
from functools import lru_cache

_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:h|hr|hrs|hour|hours)(?![a-z])", re.IGNORECASE)
_MINUTES_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:m|min|mins|minute|minutes)(?![a-z])", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"^\s*(\d+)\s*$")


@lru_cache(maxsize=512)
def parse_duration(text: str) -> int:
    """
    Parse a human-readable duration ("15 min", "1hr 30min", "2 hours") into minutes.

    A bare number is read as minutes. Anything unparsable yields 0 rather
    than an error. Results are cached per literal string.
    """
    if not text:
        return 0

    bare = _BARE_NUMBER_RE.match(text)
    if bare:
        return int(bare.group(1))

    hours = sum(float(h) for h in _HOURS_RE.findall(text))
    minutes = sum(float(m) for m in _MINUTES_RE.findall(text))
    return int(round(hours * 60 + minutes))


def format_minutes(minutes: int) -> str:
    """Inverse of parse_duration for display: 55 -> '55 min', 90 -> '1hr 30min'."""
    minutes = max(0, int(minutes))
    if minutes < 60:
        return f"{minutes} min"
    hours, rest = divmod(minutes, 60)
    if rest == 0:
        return f"{hours}hr"
    return f"{hours}hr {rest}min"
