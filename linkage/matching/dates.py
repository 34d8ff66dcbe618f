"""
Date parsing and birth-date comparison.
"""

import re
from datetime import date, datetime
from typing import Any, Optional

_ISO = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_YEAR_FIRST = re.compile(r"^(\d{4})[/.](\d{1,2})[/.](\d{1,2})$")
_MONTH_FIRST = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$")


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date from a date object or a common textual form.

    Accepts ISO ``YYYY-MM-DD`` (optionally followed by a time),
    ``YYYY/MM/DD`` and US ``MM/DD/YYYY``.

    Returns:
        The parsed date, or None when the value is not a valid date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    for pattern, order in ((_ISO, "ymd"), (_YEAR_FIRST, "ymd"), (_MONTH_FIRST, "mdy")):
        match = pattern.match(text)
        if not match:
            continue
        parts = [int(part) for part in match.groups()]
        if order == "mdy":
            month, day, year = parts
        else:
            year, month, day = parts
        try:
            return date(year, month, day)
        except ValueError:
            return None
    return None


def date_similarity(a: Any, b: Any) -> float:
    """
    Partial-credit birth-date similarity.

    Year, month and day are compared independently (0.4 / 0.3 / 0.3), so a
    swapped day and month still earns the year's share.

    Raises:
        ValueError: If either side is not a parseable date
    """
    first = parse_date(a)
    second = parse_date(b)
    if first is None or second is None:
        raise ValueError(f"Unparseable date: {a!r} / {b!r}")

    score = 0.0
    if first.year == second.year:
        score += 0.4
    if first.month == second.month:
        score += 0.3
    if first.day == second.day:
        score += 0.3
    return score
