# SPDX-License-Identifier: MIT
# src/alert_bridge/news/date_window.py
"""
Date handling for scraped announcements: parsing the listing date, the
[today, today + N days] window, and the planned-execution instant embedded in
the announcement text.
"""
from __future__ import annotations
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Pattern, Union
from zoneinfo import ZoneInfo

from dateutil import parser as dateparser

from ..errors import MalformedInputError

# Russian listings print genitive month names ("15 марта 2025"); dateutil
# only knows English ones.
_RU_MONTHS = {
    "января": 1, "февраля": 2, "марта": 3, "апреля": 4, "мая": 5, "июня": 6,
    "июля": 7, "августа": 8, "сентября": 9, "октября": 10, "ноября": 11, "декабря": 12,
}
_RU_DATE = re.compile(r"(\d{1,2})\s+(" + "|".join(_RU_MONTHS) + r")\s+(\d{4})", re.IGNORECASE)


def parse_news_date(raw: str) -> date:
    """
    Parse a listing date such as "15.03.2025", "15 марта 2025" or
    "March 15, 2025" into a calendar date (day-first when ambiguous).

    Raises:
        MalformedInputError: nothing date-like in ``raw``
    """
    text = (raw or "").strip()
    if not text:
        raise MalformedInputError("Empty news date")

    m = _RU_DATE.search(text)
    if m:
        try:
            return date(int(m.group(3)), _RU_MONTHS[m.group(2).lower()], int(m.group(1)))
        except ValueError as e:
            raise MalformedInputError(f"Bad news date {raw!r}: {e}") from e

    try:
        return dateparser.parse(text, dayfirst=True, fuzzy=True).date()
    except (ValueError, OverflowError) as e:
        raise MalformedInputError(f"Bad news date {raw!r}: {e}") from e


def in_window(item_date: date, today: date, days: int = 3) -> bool:
    """Inclusive window [today, today + days]."""
    return today <= item_date <= today + timedelta(days=days)


def _parse_clock(value: str) -> time:
    hours, minutes = re.split(r"[:.]", value, maxsplit=1)
    return time(int(hours), int(minutes))


def extract_planned_instant(
    content: str,
    pattern: Union[str, Pattern[str]],
    tz_name: str,
) -> Optional[datetime]:
    """
    Find the start of the planned time range in ``content``.

    ``pattern`` must define named groups ``start`` (HH:MM) and ``date``
    (DD.MM.YYYY); ``end`` is optional and unused. Times are read in
    ``tz_name`` and returned in UTC.

    Returns:
        The UTC instant, or None when the text has no usable time range
    """
    regex = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
    m = regex.search(content or "")
    if not m:
        return None
    try:
        day = datetime.strptime(m.group("date"), "%d.%m.%Y").date()
        start = _parse_clock(m.group("start"))
    except (ValueError, IndexError):
        return None
    local = datetime.combine(day, start, tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc)
