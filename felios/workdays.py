from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional, Union

from dateutil import parser as dateparser
from dateutil.rrule import DAILY, FR, MO, TH, TU, WE, rrule

DATE_FMT = "%Y-%m-%d"

WORKING_WEEKDAYS = (MO, TU, WE, TH, FR)


def is_working_day(value: date) -> bool:
    return value.weekday() < 5


def working_days(start: date, end: date) -> List[date]:
    """Monday to Friday dates in ``[start, end]``, ascending."""
    if start > end:
        return []
    rule = rrule(DAILY, dtstart=start, until=end, byweekday=WORKING_WEEKDAYS)
    return [moment.date() for moment in rule]


def calendar_days(start: date, end: date) -> List[date]:
    if start > end:
        return []
    return [moment.date() for moment in rrule(DAILY, dtstart=start, until=end)]


def parse_date(value: Union[str, date, datetime], field_name: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return dateparser.isoparse(str(value).strip()).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def parse_optional_date(value: object, field_name: str = "date") -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    return parse_date(value, field_name)  # type: ignore[arg-type]


def format_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(DATE_FMT)
