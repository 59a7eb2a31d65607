import re
from datetime import date, datetime
from typing import Optional, Tuple, Union


MONTH_NAMES = [
    "JANUARY",
    "FEBRUARY",
    "MARCH",
    "APRIL",
    "MAY",
    "JUNE",
    "JULY",
    "AUGUST",
    "SEPTEMBER",
    "OCTOBER",
    "NOVEMBER",
    "DECEMBER",
]

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")

DateLike = Union[str, date, datetime, None]


def split_month(month_key: str) -> Tuple[int, int]:
    """Split `YYYY-MM` into (year, month). Raises ValueError on bad input."""
    m = _MONTH_RE.match(month_key or "")
    if not m:
        raise ValueError(f"month must be YYYY-MM, got {month_key!r}")
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range in {month_key!r}")
    return year, month


def validate_month(month_key: str) -> str:
    split_month(month_key)
    return month_key


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def _to_datetime(value: DateLike) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def current_month(today: Optional[date] = None) -> str:
    today = today or date.today()
    return month_key(today.year, today.month)


def previous_month(today: Optional[date] = None) -> str:
    today = today or date.today()
    if today.month == 1:
        return month_key(today.year - 1, 12)
    return month_key(today.year, today.month - 1)


def get_bill_month(created: DateLike = None, modified: DateLike = None, today: Optional[date] = None) -> str:
    """Bill month of a file from its own dates.

    Creation date wins, then modification date. When neither parses, the
    previous calendar month is used.
    """
    for value in (created, modified):
        dt = _to_datetime(value)
        if dt is not None:
            return month_key(dt.year, dt.month)
    return previous_month(today)


def financial_year(value: DateLike) -> Optional[str]:
    """Financial year (April to March) in `YYYY-YY` form."""
    dt = _to_datetime(value)
    if dt is None:
        return None
    start = dt.year if dt.month >= 4 else dt.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


def month_name(month_key_value: str) -> str:
    _, month = split_month(month_key_value)
    return MONTH_NAMES[month - 1]


def month_number(name: str) -> int:
    try:
        return MONTH_NAMES.index(name.strip().upper()) + 1
    except ValueError:
        raise ValueError(f"unknown month name {name!r}")


def format_bill_month(month_key_value: Optional[str]) -> str:
    if not month_key_value:
        return "-"
    try:
        year, _ = split_month(month_key_value)
    except ValueError:
        return month_key_value
    return f"{month_name(month_key_value)} {year}"


def is_overdue(bill_month: Optional[str], today: Optional[date] = None) -> bool:
    """Bills are due by the 15th of the month after the bill month."""
    if not bill_month:
        return False
    year, month = split_month(bill_month)
    if month == 12:
        deadline = date(year + 1, 1, 15)
    else:
        deadline = date(year, month + 1, 15)
    return (today or date.today()) > deadline
