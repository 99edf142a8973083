from datetime import date, datetime
from typing import Optional, Union

DateLike = Union[date, datetime, str, None]


def _parse(value: DateLike) -> Optional[datetime]:
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


def _day(value: DateLike) -> Optional[date]:
    parsed = _parse(value)
    return parsed.date() if parsed else None


def format_date(value: DateLike, include_time: bool = False) -> str:
    """dd/mm/yyyy, optionally followed by HH:MM; empty for missing or bad input"""
    parsed = _parse(value)
    if parsed is None:
        return ""
    if include_time:
        return parsed.strftime("%d/%m/%Y %H:%M")
    return parsed.strftime("%d/%m/%Y")


def get_relative_time(value: DateLike, today: Optional[date] = None) -> str:
    day = _day(value)
    if day is None:
        return ""
    diff = (day - (today or date.today())).days
    if diff == 0:
        return "Today"
    if diff == 1:
        return "Tomorrow"
    if diff == -1:
        return "Yesterday"
    if diff > 0:
        return f"In {diff} days"
    return f"{abs(diff)} days ago"


def is_expired(value: DateLike, today: Optional[date] = None) -> bool:
    day = _day(value)
    if day is None:
        return False
    return day < (today or date.today())


def is_expiring_soon(value: DateLike, days: int = 30, today: Optional[date] = None) -> bool:
    day = _day(value)
    if day is None:
        return False
    remaining = (day - (today or date.today())).days
    return 0 <= remaining <= days


def get_days_until_expiry(value: DateLike, today: Optional[date] = None) -> int:
    day = _day(value)
    if day is None:
        return 0
    return (day - (today or date.today())).days
