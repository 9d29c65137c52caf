"""Lenient parsing of mail ``Date:`` header values.

Real-world headers do not always follow RFC 5322. Instead of a full date
grammar, the normalizer knows the handful of layouts actually seen in mail
and tries them in a fixed priority order, most constrained first. Anything
that matches none of them is reported as unknown (``None``), never raised.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta, timezone
from enum import Enum

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# " (CDT)" style annotations after a numeric offset, possibly repeated.
_TZ_COMMENT = re.compile(r"(?<=[+-]\d{4})(?:\s*\([A-Za-z0-9 _/+-]*\))+\s*$")
# Non-standard four-letter weekday such as "Tues, " or "Thur, ".
_LONG_WEEKDAY = re.compile(r"^(?:[A-Za-z]{4}, )+")

_TIME = r"(?P<hour>\d{2}):(?P<minute>\d{2}):(?P<second>\d{2})"
_OFFSET = r"(?P<offset>[+-]\d{4})"
_MON = r"(?P<month>[A-Za-z]{3})"
_WDAY = r"(?P<weekday>[A-Za-z]{3}), "


class DatePattern(Enum):
    """Supported header date layouts, in matching priority order."""

    ISO_OFFSET = (
        "yyyy-MM-dd'T'HH:mm:ssxxx",
        r"(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})T" + _TIME
        + r"(?P<offset>[+-]\d{2}:\d{2})",
    )
    DAY_MON_YEAR = (
        "dd MMM yyyy HH:mm:ss",
        r"(?P<day>\d{2}) " + _MON + r" (?P<year>\d{4}) " + _TIME,
    )
    DAY_MON_YEAR_OFFSET = (
        "dd MMM yyyy HH:mm:ss Z",
        r"(?P<day>\d{2}) " + _MON + r" (?P<year>\d{4}) " + _TIME + " " + _OFFSET,
    )
    SHORT_DAY_MON_YEAR_OFFSET = (
        "d MMM yyyy HH:mm:ss Z",
        r"(?P<day>\d) " + _MON + r" (?P<year>\d{4}) " + _TIME + " " + _OFFSET,
    )
    WEEKDAY_DAY_MON_YEAR_OFFSET = (
        "EEE, dd MMM yyyy HH:mm:ss Z",
        _WDAY + r"(?P<day>\d{2}) " + _MON + r" (?P<year>\d{4}) " + _TIME + " " + _OFFSET,
    )
    WEEKDAY_DAY_NUMERIC_MONTH_YEAR = (
        "EEE, dd MM yyyy HH:mm:ss",
        _WDAY + r"(?P<day>\d{2}) (?P<month>\d{2}) (?P<year>\d{4}) " + _TIME,
    )
    WEEKDAY_SHORT_DAY_MON_YEAR_OFFSET = (
        "EEE, d MMM yyyy HH:mm:ss Z",
        _WDAY + r"(?P<day>\d) " + _MON + r" (?P<year>\d{4}) " + _TIME + " " + _OFFSET,
    )

    def __init__(self, layout: str, regex: str) -> None:
        self.layout = layout
        self.regex = re.compile(regex)


def _parse_offset(text: str) -> timezone:
    sign = -1 if text[0] == "-" else 1
    digits = text[1:].replace(":", "")
    hours, minutes = int(digits[:2]), int(digits[2:])
    if hours > 23 or minutes > 59:
        raise ValueError(f"Offset out of range: {text}")
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def _build(match: re.Match[str]) -> datetime:
    """Turn a pattern match into an aware datetime, raising ValueError if invalid."""
    groups = match.groupdict()
    weekday = groups.get("weekday")
    if weekday is not None and weekday.lower() not in WEEKDAYS:
        raise ValueError(f"Unknown weekday: {weekday}")

    month_text = groups["month"]
    if month_text.isdigit():
        month = int(month_text)
    else:
        month = MONTHS.get(month_text.lower(), 0)
    if month == 0:
        raise ValueError(f"Unknown month: {month_text}")

    offset = groups.get("offset")
    tz = _parse_offset(offset) if offset else UTC
    return datetime(
        int(groups["year"]),
        month,
        int(groups["day"]),
        int(groups["hour"]),
        int(groups["minute"]),
        int(groups["second"]),
        tzinfo=tz,
    )


class DateNormalizer:
    """Classifies and parses header date strings against ``DatePattern``."""

    def __init__(self, patterns: tuple[DatePattern, ...] | None = None) -> None:
        self._patterns = patterns or tuple(DatePattern)

    @staticmethod
    def sanitize(raw: str) -> str:
        """Apply the pre-match rewrites. Sanitizing twice equals sanitizing once."""
        text = raw.strip()
        text = _TZ_COMMENT.sub("", text)
        text = _LONG_WEEKDAY.sub("", text)
        return text.strip()

    def _match(self, raw: object) -> tuple[DatePattern, datetime] | None:
        if not isinstance(raw, str) or not raw.strip():
            return None
        text = self.sanitize(raw)
        for pattern in self._patterns:
            match = pattern.regex.fullmatch(text)
            if match is None:
                continue
            try:
                return pattern, _build(match)
            except ValueError as e:
                # Shape matched but values are impossible (e.g. 31 Feb).
                logger.debug("Rejected %r for %s: %s", raw, pattern.name, e)
        logger.debug("Unparseable date header: %r", raw)
        return None

    def classify(self, raw: str) -> DatePattern | None:
        """Return the first pattern that parses ``raw``, or None."""
        result = self._match(raw)
        return result[0] if result else None

    def parse(self, raw: str) -> datetime | None:
        """Return an aware datetime for ``raw``, or None if no pattern fits."""
        result = self._match(raw)
        return result[1] if result else None

    def year_and_epoch(self, raw: str) -> tuple[int, int] | None:
        """Return ``(year, epoch_seconds)`` for ``raw``, or None."""
        parsed = self.parse(raw)
        if parsed is None:
            return None
        return parsed.year, int(parsed.timestamp())
