from __future__ import annotations

import sqlite3
from datetime import date
from typing import Dict, List, Union

import pandas as pd

from . import store
from .workdays import DATE_FMT, calendar_days, parse_date

CAPACITY_COLUMNS = ["date", "capacity", "assigned"]

_SHIFT_CAPACITY_SQL = """
SELECT es.date AS date, SUM(s.daily_capacity) AS capacity
FROM employee_shift es
JOIN shift s ON es.shift_id = s.id
WHERE es.employee_id IN (
    SELECT employee_id FROM employee_qualification WHERE resource_id = ?
)
  AND es.date >= ? AND es.date <= ?
GROUP BY es.date
"""

_ASSIGNED_SQL = """
SELECT oa.date AS date, SUM(oa.assigned_capacity) AS assigned
FROM operation_assignment oa
JOIN operation o ON oa.operation_id = o.id
WHERE o.resource_id = ?
  AND oa.date >= ? AND oa.date <= ?
GROUP BY oa.date
"""


def _empty_series(days: List[str]) -> pd.DataFrame:
    return pd.DataFrame(
        {"date": days, "capacity": [0] * len(days), "assigned": [0] * len(days)},
        columns=CAPACITY_COLUMNS,
    )


def resource_capacity(
    con: sqlite3.Connection,
    resource_id: int,
    start_date: Union[str, date],
    end_date: Union[str, date],
) -> pd.DataFrame:
    """Daily shift capacity of qualified employees against hours already assigned.

    One row per calendar day in ``[start_date, end_date]``, weekends included.
    ``assigned`` counts every assignment on an operation using the resource,
    whoever holds it; without any qualified employee the series is all zero.
    """
    start = parse_date(start_date, "startDate")
    end = parse_date(end_date, "endDate")
    days = [day.strftime(DATE_FMT) for day in calendar_days(start, end)]
    series = _empty_series(days)
    if not days or not store.qualified_employee_ids(con, resource_id):
        return series

    params = (resource_id, days[0], days[-1])
    capacity = pd.read_sql_query(_SHIFT_CAPACITY_SQL, con, params=params).set_index("date")["capacity"]
    assigned = pd.read_sql_query(_ASSIGNED_SQL, con, params=params).set_index("date")["assigned"]

    series = series.set_index("date")
    series["capacity"] = pd.to_numeric(capacity.reindex(series.index), errors="coerce").fillna(0).astype(int)
    series["assigned"] = pd.to_numeric(assigned.reindex(series.index), errors="coerce").fillna(0).astype(int)
    return series.reset_index()[CAPACITY_COLUMNS]


def capacity_records(frame: pd.DataFrame) -> List[Dict[str, object]]:
    return [
        {"date": str(row.date), "capacity": int(row.capacity), "assigned": int(row.assigned)}
        for row in frame.itertuples(index=False)
    ]
