from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Optional


# Ledger business dates (stock-in / stock-out days) are always DD-MM-YYYY.
LEDGER_DATE_FORMAT = "%d-%m-%Y"
_LEDGER_DATE_RE = re.compile(r"^\d{2}-\d{2}-\d{4}$")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def is_valid_ledger_date(value: Optional[str]) -> bool:
    """True when value is DD-MM-YYYY and names a real calendar day."""
    if not value or not _LEDGER_DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, LEDGER_DATE_FORMAT)
    except ValueError:
        return False
    return True


def parse_ledger_date(value: str) -> date:
    return datetime.strptime(value, LEDGER_DATE_FORMAT).date()


def format_ledger_date(value: Optional[date] = None) -> str:
    """Format a date (today in UTC by default) as DD-MM-YYYY."""
    if value is None:
        value = utcnow().date()
    return value.strftime(LEDGER_DATE_FORMAT)
