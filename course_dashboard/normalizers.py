"""Cell-level normalizers shared by every extractor.

Spreadsheet exports encode the same quantity in several ways depending on
the tool version and on how Excel guessed the cell type. Everything here is
total: malformed input degrades to ``0.0``, ``""`` or a verbatim passthrough
instead of raising, so a single dirty cell never rejects a row.
"""
from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta
from typing import Optional

import pandas as pd


STATUS_COMPLETED = "Completed"
STATUS_PUBLISHED = "Published"
STATUS_IN_PROGRESS = "In Progress"

EXCEL_EPOCH = datetime(1899, 12, 30)
# Values below this are Excel fractions of a 24h day, not decimal hours.
DAY_FRACTION_LIMIT = 10.0

_CLOCK_RE = re.compile(r"^(\d+):(\d{2})(?::(\d{2}))?$")
_DATETIME_RE = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(AM|PM)$",
    re.I,
)
_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_LEADING_INT_RE = re.compile(r"^[+-]?\d+")
_COURSES_SUFFIX_RE = re.compile(r"\s*Courses\s*$", re.I)
_YEAR_RE = re.compile(r"(\d{4})")
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_HYPERLINK_RE = re.compile(r'=HYPERLINK\([^,]+,\s*"([^"]+)"\)', re.I)
_YEAR_GROUP_RE = re.compile(r"^\d{4}\s+Courses", re.I)


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def cell_text(value: object) -> str:
    """Return a cell as stripped text; blanks and NaN become ``""``.

    Integral floats lose their ``.0`` so numeric ids and years read the way
    they were typed.
    """
    if _is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def normalize_whitespace(value: object) -> str:
    """Trim and collapse internal whitespace runs to a single space."""
    return " ".join(cell_text(value).split())


def name_key(value: object) -> str:
    """Case-insensitive, whitespace-insensitive identity of a name."""
    return normalize_whitespace(value).casefold()


def _to_number(raw: object) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (datetime, date)):
        return _excel_serial(raw)
    if isinstance(raw, (int, float)):
        number = float(raw)
        return number if math.isfinite(number) else None
    if isinstance(raw, str):
        match = _LEADING_NUMBER_RE.match(raw.strip())
        if not match:
            return None
        number = float(match.group(0))
        return number if math.isfinite(number) else None
    return None


def _clock_hours(hour: int, minute: int, second: int) -> float:
    return hour + minute / 60 + second / 3600


def _datetime_hours(year: int, day: int, hour: int, minute: int, second: int) -> float:
    # Year 1900 marks a duration cell Excel rendered as a date: the day of
    # month counts whole days from the 1900 epoch.
    if year == 1900:
        return max(0, day - 1) * 24 + _clock_hours(hour, minute, second)
    return _clock_hours(hour, minute, second)


def _parse_clock_like(text: str) -> Optional[float]:
    match = _CLOCK_RE.match(text)
    if match:
        return _clock_hours(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))

    match = _DATETIME_RE.match(text)
    if not match:
        return None
    month, day, year, hour, minute = (int(match.group(i)) for i in range(1, 6))
    second = int(match.group(6) or 0)
    meridiem = match.group(7).upper()
    if meridiem == "PM" and hour < 12:
        hour += 12
    if meridiem == "AM" and hour == 12:
        hour = 0

    if year == 1900:
        return _datetime_hours(year, day, hour, minute, second)
    try:
        datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None
    return _clock_hours(hour, minute, second)


def _excel_serial(value: date) -> float:
    """Excel serial number of a typed date cell."""
    if not isinstance(value, datetime):
        value = datetime.combine(value, time())
    serial = (value - EXCEL_EPOCH).total_seconds() / 86400
    # openpyxl moves serials below 60 one day forward to skip Excel's
    # phantom 1900-02-29; undo that.
    if 1 < serial < 61:
        serial -= 1
    return serial


def _native_duration(raw: object) -> Optional[float]:
    """Hours of a typed cell (as produced by openpyxl), or None for the numeric rule.

    A duration cell formatted ``h:mm`` arrives as a 1900 date: it is the
    Excel serial in disguise and goes through the day-fraction rule like
    any other number. Later dates keep only their time of day.
    """
    if isinstance(raw, timedelta):
        return raw.total_seconds() / 3600
    if isinstance(raw, (datetime, date)) and raw.year <= 1900:
        return None
    if isinstance(raw, datetime):
        return _clock_hours(raw.hour, raw.minute, raw.second)
    if isinstance(raw, date):
        return 0.0
    if isinstance(raw, time):
        return _clock_hours(raw.hour, raw.minute, raw.second)
    return None


def normalize_duration(raw: object, day_fractions: bool = True) -> float:
    """Convert a raw duration cell to decimal hours.

    Accepted encodings, first match wins:

    * ``"39:45"`` / ``"39:45:00"`` -> 39.75 (a duration, not a time of day)
    * ``"1/9/1900 3:45:00 PM"`` -> 207.75 (1900 dates are day buckets);
      other years keep only the time of day
    * numbers below 10 are Excel day fractions (``0.5`` -> 12.0); larger
      numbers are decimal hours typed directly; typed 1900 date cells
      (an ``h:mm`` format on a duration) are read back as their serial

    Exports that only ever write decimal hours pass ``day_fractions=False``
    so small numbers are taken as hours.

    Unparseable, blank, negative or non-finite input yields ``0.0``.
    """
    if _is_blank(raw):
        return 0.0

    hours: Optional[float] = None
    if isinstance(raw, str):
        hours = _parse_clock_like(raw.strip())
    else:
        hours = _native_duration(raw)

    if hours is None:
        number = _to_number(raw)
        if number is None:
            return 0.0
        hours = number * 24 if day_fractions and 0 <= number < DAY_FRACTION_LIMIT else number

    if not math.isfinite(hours) or hours < 0:
        return 0.0
    return hours


def strip_hyperlink(raw: object) -> str:
    """Display text of an ``=HYPERLINK(url, "Title")`` formula cell."""
    text = cell_text(raw)
    match = _HYPERLINK_RE.search(text)
    return match.group(1).strip() if match else text


def is_year_grouping_row(text: str) -> bool:
    """Section rows such as ``"2022 Courses (45)"`` that group courses by year."""
    return bool(_YEAR_GROUP_RE.match(text))


def normalize_year(raw: object) -> str:
    """Extract a 4-digit reporting year such as ``"2022 Courses (45)"`` -> ``"2022"``.

    Values without a year come back as the stripped text itself.
    """
    text = _COURSES_SUFFIX_RE.sub("", cell_text(raw)).strip()
    match = _YEAR_RE.search(text)
    return match.group(1) if match else text


def normalize_status(raw: object, fallback: str = STATUS_IN_PROGRESS) -> str:
    """Map free-text statuses onto the canonical set, passing unknown ones through."""
    text = normalize_whitespace(cell_text(raw).replace("*", ""))
    if not text:
        return fallback

    lowered = text.lower()
    if lowered in {"completed", "complete"}:
        return STATUS_COMPLETED
    if lowered == "published":
        return STATUS_PUBLISHED
    if lowered in {"in progress", "in-progress"}:
        return STATUS_IN_PROGRESS
    return text


def is_completed_status(raw: object) -> bool:
    """True for statuses that count as done in completion-rate metrics."""
    return normalize_status(raw, "") in {STATUS_COMPLETED, STATUS_PUBLISHED}


def parse_entry_date(
    raw: object,
    serial_min: float = 30000,
    serial_max: float = 60000,
) -> str:
    """Return an ISO date for a time-spent date cell, or the raw text.

    Excel serials are only honoured strictly inside (serial_min, serial_max)
    so small numbers are never mistaken for dates.
    """
    if _is_blank(raw):
        return ""
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()

    text = cell_text(raw)
    match = _US_DATE_RE.match(text)
    if match:
        month, day, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    if _ISO_PREFIX_RE.match(text):
        return text[:10]

    number = _to_number(raw)
    if number is not None and serial_min < number < serial_max:
        return (EXCEL_EPOCH + timedelta(days=number)).date().isoformat()
    return text


def entry_year(date_text: str) -> Optional[int]:
    """Year of an ISO date string, or None when the date is not a real date."""
    parsed = parse_iso_date(date_text)
    return parsed.year if parsed is not None else None


def parse_iso_date(date_text: str) -> Optional[date]:
    if not date_text or not _ISO_PREFIX_RE.match(date_text):
        return None
    try:
        return date.fromisoformat(date_text[:10])
    except ValueError:
        return None


def parse_interaction_count(raw: object) -> Optional[int]:
    """Leading integer of the cell; blank, unparseable and zero read as unknown."""
    match = _LEADING_INT_RE.match(cell_text(raw))
    if not match:
        return None
    value = int(match.group(0))
    return value or None


__all__ = [
    "STATUS_COMPLETED",
    "STATUS_IN_PROGRESS",
    "STATUS_PUBLISHED",
    "cell_text",
    "entry_year",
    "is_completed_status",
    "is_year_grouping_row",
    "name_key",
    "normalize_duration",
    "normalize_status",
    "normalize_whitespace",
    "normalize_year",
    "parse_entry_date",
    "parse_interaction_count",
    "parse_iso_date",
    "strip_hyperlink",
]
