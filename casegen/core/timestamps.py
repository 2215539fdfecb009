"""
ISO-8601 timestamp helpers.

Case artifacts carry timestamps with an explicit UTC offset
(2024-03-14T21:05:00-03:00). These helpers find, parse and compare them.
"""

import re
from datetime import datetime, timedelta
from typing import List, Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Date, time, optional fraction, mandatory offset (Z or +hh:mm)
ISO_WITH_OFFSET = re.compile(
    r"\b\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:\d{2})"
)


_FRACTION = re.compile(r"(?<=:\d{2})\.(\d+)")


def find_timestamps(text: str) -> List[str]:
    """All ISO-8601-with-offset timestamps in text, in order of appearance."""
    if not text:
        return []
    return ISO_WITH_OFFSET.findall(text)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat on 3.10 only takes 3 or 6 fraction digits
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def has_offset(value: Optional[str]) -> bool:
    """True when value is an ISO-8601 timestamp carrying an explicit offset."""
    parsed = parse_iso(value)
    return parsed is not None and parsed.tzinfo is not None


def expected_offset(timezone: str, at: datetime) -> Optional[timedelta]:
    """UTC offset of an IANA zone (or literal '+hh:mm') at the given instant."""
    if not timezone:
        return None
    if timezone.upper() == "UTC":
        return timedelta(0)
    match = re.fullmatch(r"([+-])(\d{2}):(\d{2})", timezone.strip())
    if match:
        sign = -1 if match.group(1) == "-" else 1
        return sign * timedelta(hours=int(match.group(2)), minutes=int(match.group(3)))
    try:
        zone = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return at.astimezone(zone).utcoffset()


def matches_timezone(value: str, timezone: str) -> bool:
    """True when the timestamp's offset is the zone's offset at that instant."""
    parsed = parse_iso(value)
    if parsed is None or parsed.tzinfo is None:
        return False
    expected = expected_offset(timezone, parsed)
    if expected is None:
        return True
    return parsed.utcoffset() == expected
