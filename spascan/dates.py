"""Date and time normalisation for calendar headers, day tiles and time entries."""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import NamedTuple

logger = logging.getLogger(__name__)

SLOT_DATE_FORMAT = "%B %d, %Y"  # "December 04, 2025", what the front-end feeds to new Date()

_HEADER_FORMATS = ("%B %Y", "%b %Y")

_DAY_LABEL_FORMATS = (
    "%B %d, %Y",
    "%A, %B %d, %Y",
    "%b %d, %Y",
    "%a, %b %d, %Y",
    "%d %B %Y",
    "%Y-%m-%d",
)

_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*(AM|PM)?\s*$", re.IGNORECASE)


class MonthContext(NamedTuple):
    year: int
    month: int
    resolved: bool  # False when the header could not be read and we fell back to today


def parse_header_to_month(header_text: str | None, today: dt.date | None = None) -> MonthContext:
    """Read "November 2025" into (2025, 11).

    Falls back to the current month when the text cannot be parsed.
    """
    today = today or dt.date.today()
    text = " ".join((header_text or "").split())

    for fmt in _HEADER_FORMATS:
        try:
            parsed = dt.datetime.strptime(text, fmt)
        except ValueError:
            continue
        return MonthContext(parsed.year, parsed.month, True)

    logger.warning("Failed to parse calendar header %r, assuming %04d-%02d", header_text, today.year, today.month)
    return MonthContext(today.year, today.month, False)


def _parse_day_label(label: str) -> dt.date | None:
    text = " ".join(label.split())
    for fmt in _DAY_LABEL_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def resolve_day_label(aria_label: str | None, day_text: str | None, year: int, month: int) -> dt.date | None:
    """Work out which calendar date a day tile stands for.

    The accessible label wins when it parses; otherwise the tile's day number is combined
    with the month shown in the header. Returns None when neither gives a real date.
    """
    if aria_label and aria_label.strip():
        parsed = _parse_day_label(aria_label)
        if parsed is not None:
            return parsed

    digits = re.search(r"\d{1,2}", day_text or "")
    if not digits:
        return None
    try:
        return dt.date(year, month, int(digits.group(0)))
    except ValueError:
        return None


def parse_slot_date(value: str) -> dt.date | None:
    return _parse_day_label(value)


def format_slot_date(value: dt.date) -> str:
    return value.strftime(SLOT_DATE_FORMAT)


def is_within_horizon(value: dt.date | str, today: dt.date, horizon_days: int) -> bool:
    if isinstance(value, str):
        parsed = parse_slot_date(value)
        if parsed is None:
            logger.warning("Failed to parse date: %s", value)
            return False
        value = parsed
    return value <= today + dt.timedelta(days=horizon_days)


def parse_clock_time(text: str | None) -> dt.time | None:
    """"1:20 PM" or "13:20" -> time(13, 20)."""
    m = _CLOCK_RE.match(text or "")
    if not m:
        return None

    hour, minute, meridiem = int(m.group(1)), int(m.group(2)), m.group(3)
    if minute > 59:
        return None
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem.upper() == "PM" else 0)
    elif hour > 23:
        return None
    return dt.time(hour, minute)


def format_clock_time(value: dt.time) -> str:
    """time(13, 20) -> "1:20 PM"."""
    return f"{value.hour % 12 or 12}:{value.minute:02d} {'PM' if value.hour >= 12 else 'AM'}"
