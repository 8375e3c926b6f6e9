"""Shared parsing helpers for filter values.

parse_date:    returns None on bad input
parse_integer: returns None on bad input
parse_boolean: True / False for oui-non and true-false spellings, else None
like_pattern:  escaped ``%value%`` pattern for case-insensitive substring matches
"""
from datetime import date, datetime


def parse_date(value):
    """Parse a filter value to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY and DD.MM.YYYY (French formats)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    value = str(value).strip()
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    for fmt in ("%d/%m/%Y", "%d.%m.%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_integer(value):
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


_TRUE_VALUES = ("true", "oui", "1")
_FALSE_VALUES = ("false", "non", "0")


def parse_boolean(value):
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def like_pattern(value):
    escaped = (
        str(value).strip()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"%{escaped}%"
