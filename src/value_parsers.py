"""Cell value parsers for vendor timekeeping exports.

Every parser is total: malformed input degrades to ``None`` instead of
raising, so one bad cell never halts an ingestion.
"""

import math
import numbers
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

import pandas as pd


# Excel's 1900 date system counts 1900-02-29 as a real day
EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_LEAP_BUG_SERIAL = 60

TIME_PATTERN = re.compile(r"(\d+)\s*:\s*(\d+)")
PLAIN_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
NON_NUMERIC = re.compile(r"[^\d.\-]")
NON_INTEGER = re.compile(r"[^\d\-]")
LEADING_INTEGER = re.compile(r"-?\d+")

# Range of the INTEGER column that stores counts
INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    # NaN and NaT are the only values not equal to themselves
    try:
        return bool(value != value)
    except (TypeError, ValueError):
        return False


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Number) and not isinstance(value, bool)


def normalize_label(value: Any) -> str:
    """Lowercase, trim and collapse whitespace in a header cell."""
    if _is_blank(value):
        return ""
    return re.sub(r"\s+", " ", str(value).strip().lower())


def parse_number(value: Any) -> Optional[float]:
    """
    Parse an hours/units cell into a float.

    Handles:
    - Native numbers from Excel cells
    - Durations: "51:15", "51 : 15 Hrs", timedelta and time cells -> decimal hours
    - Decorated numbers: "12.5 hrs", "$1,200" -> digits, dot and minus only

    Args:
        value: Raw cell value

    Returns:
        Parsed float, or None if nothing numeric could be recovered
    """
    if _is_blank(value):
        return None
    if isinstance(value, timedelta):
        return value.total_seconds() / 3600
    if isinstance(value, time):
        return value.hour + value.minute / 60 + value.second / 3600
    if _is_number(value):
        number = float(value)
        return number if math.isfinite(number) else None

    text = str(value).strip()

    match = TIME_PATTERN.search(text)
    if match:
        return int(match.group(1)) + int(match.group(2)) / 60

    # Keeps str(float) output such as "1e-05" parseable to the same value
    if PLAIN_NUMBER.match(text):
        number = float(text)
        return number if math.isfinite(number) else None

    cleaned = NON_NUMERIC.sub("", text)
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_int_safe(value: Any) -> Optional[int]:
    """Parse an appointment count such as "12 appts" into an int. Out-of-range values are None."""
    if _is_blank(value):
        return None
    if _is_number(value):
        number = float(value)
        if not math.isfinite(number):
            return None
        result = int(number)
    else:
        cleaned = NON_INTEGER.sub("", str(value))
        match = LEADING_INTEGER.match(cleaned)
        if not match:
            return None
        result = int(match.group(0))
    return result if INT32_MIN <= result <= INT32_MAX else None


def excel_serial_to_date(serial: float) -> Optional[date]:
    """Convert a spreadsheet serial day number to a calendar date."""
    if not math.isfinite(serial) or serial < 1:
        return None
    days = int(serial)
    if days <= EXCEL_LEAP_BUG_SERIAL:
        days += 1
    try:
        return EXCEL_EPOCH + timedelta(days=days)
    except OverflowError:
        return None


def parse_date(value: Any) -> Optional[str]:
    """
    Resolve a service date cell to "YYYY-MM-DD".

    Numbers are treated as spreadsheet serial dates. Strings go through
    pandas' generic date parser; timezone-aware values are read in UTC.

    Args:
        value: Raw cell value

    Returns:
        ISO calendar date string, or None if the value is not a date
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if _is_number(value):
        resolved = excel_serial_to_date(float(value))
        return resolved.isoformat() if resolved else None

    try:
        stamp = pd.to_datetime(str(value).strip(), errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if stamp is None or pd.isna(stamp):
        return None
    if stamp.tzinfo is not None:
        stamp = stamp.tz_convert("UTC")
    return stamp.date().isoformat()
