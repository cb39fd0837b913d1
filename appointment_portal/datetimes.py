"""Turn the free-text date and time stored on an appointment into a datetime.

Rows come from a chat intake flow, so the date column holds whatever shape the
assistant produced: ``2026-01-19``, ``19 January 2026`` or ``26th Jan`` with no
year at all. Everything here is naive local time.
"""
from __future__ import annotations
import re
from datetime import datetime

from dateutil import parser as dateparser

_ORDINAL = re.compile(r"(\d+)(st|nd|rd|th)", re.IGNORECASE)
_ISO_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_YEAR = re.compile(r"\d{4}")
_SPACES = re.compile(r"\s+")

# a year-less date this many months behind "now" is taken to mean next year
ROLLOVER_MONTHS = 6


def _parse_iso(iso_date: str, time_text: str) -> datetime:
    if ":" not in time_text:
        time_text = f"{time_text}:00"
    combined = f"{iso_date}T{time_text}"
    try:
        return datetime.fromisoformat(combined).replace(tzinfo=None)
    except ValueError:
        # "9:30 AM" and friends
        return dateparser.parse(combined, ignoretz=True)


def resolve(date_text: str | None, time_text: str | None, now: datetime | None = None) -> datetime | None:
    """Return the appointment start, or None when it cannot be worked out.

    Missing or malformed input is expected and never raises. For dates written
    without a year the current year is assumed, and a result more than
    ``ROLLOVER_MONTHS`` months in the past is moved to next year (a booking in
    December for "5 January"). That is a heuristic: a date legitimately booked
    further ahead than that can land in the wrong year.
    """
    if not date_text or not time_text:
        return None
    if now is None:
        now = datetime.now()

    date_clean = _ORDINAL.sub(r"\1", date_text).strip()
    time_clean = _SPACES.sub(" ", time_text).strip()
    if not date_clean or not time_clean:
        return None

    try:
        iso = _ISO_DATE.search(date_clean)
        if iso:
            return _parse_iso(iso.group(0), time_clean)

        default = datetime(now.year, 1, 1)
        resolved = dateparser.parse(f"{date_clean} {time_clean}", default=default, ignoretz=True)
        if _YEAR.search(date_clean):
            return resolved

        if resolved < now and abs(now.month - resolved.month) > ROLLOVER_MONTHS:
            resolved = resolved.replace(year=resolved.year + 1)
        return resolved
    except (ValueError, OverflowError):
        return None
