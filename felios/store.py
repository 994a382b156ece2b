from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .models import (
    Employee,
    EmployeeShift,
    Milestone,
    Network,
    Operation,
    OperationAssignment,
    Project,
    Resource,
    Shift,
)
from .workdays import format_date, parse_date, parse_optional_date

logger = logging.getLogger(__name__)

# Drop order: dependents before their parents.
TABLES: Tuple[str, ...] = (
    "operation_assignment",
    "employee_shift",
    "employee_qualification",
    "operation_dependency",
    "operation",
    "milestone",
    "network",
    "project",
    "shift",
    "employee",
    "resource",
)

SCHEMA = """
CREATE TABLE project (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  color_code TEXT NOT NULL DEFAULT '#90A4AE'
);

CREATE TABLE network (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  project_id INTEGER,
  parent_network_id INTEGER,
  name TEXT NOT NULL,
  FOREIGN KEY(project_id) REFERENCES project(id),
  FOREIGN KEY(parent_network_id) REFERENCES network(id)
);

CREATE TABLE milestone (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  project_id INTEGER,
  name TEXT NOT NULL,
  due_date TEXT,
  FOREIGN KEY(project_id) REFERENCES project(id)
);

CREATE TABLE resource (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL
);

CREATE TABLE operation (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  network_id INTEGER,
  name TEXT NOT NULL,
  time_capacity_demand INTEGER NOT NULL,
  resource_id INTEGER NOT NULL,
  start_date TEXT,
  end_date TEXT,
  FOREIGN KEY(network_id) REFERENCES network(id),
  FOREIGN KEY(resource_id) REFERENCES resource(id)
);

CREATE TABLE operation_dependency (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  operation_id INTEGER NOT NULL,
  depends_on_operation_id INTEGER NOT NULL,
  FOREIGN KEY(operation_id) REFERENCES operation(id),
  FOREIGN KEY(depends_on_operation_id) REFERENCES operation(id)
);

CREATE TABLE employee (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL
);

CREATE TABLE shift (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  daily_capacity INTEGER NOT NULL,
  color_code TEXT NOT NULL
);

CREATE TABLE employee_qualification (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  employee_id INTEGER NOT NULL,
  resource_id INTEGER NOT NULL,
  FOREIGN KEY(employee_id) REFERENCES employee(id),
  FOREIGN KEY(resource_id) REFERENCES resource(id)
);

CREATE TABLE operation_assignment (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  operation_id INTEGER NOT NULL,
  employee_id INTEGER NOT NULL,
  date TEXT NOT NULL,
  assigned_capacity INTEGER NOT NULL,
  FOREIGN KEY(operation_id) REFERENCES operation(id),
  FOREIGN KEY(employee_id) REFERENCES employee(id)
);

CREATE TABLE employee_shift (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  employee_id INTEGER NOT NULL,
  shift_id INTEGER NOT NULL,
  date TEXT NOT NULL,
  FOREIGN KEY(employee_id) REFERENCES employee(id),
  FOREIGN KEY(shift_id) REFERENCES shift(id)
);

CREATE UNIQUE INDEX idx_employee_shift_employee_date ON employee_shift(employee_id, date);
CREATE INDEX idx_operation_assignment_date ON operation_assignment(date);
"""


class DependencyOrderError(ValueError):
    """Raised when a dependency edge or window change breaks temporal order."""

    def __init__(self, operation_id: int, depends_on_id: int, reason: str) -> None:
        super().__init__(
            f"Operation {operation_id} cannot depend on operation {depends_on_id}: {reason}"
        )
        self.operation_id = operation_id
        self.depends_on_id = depends_on_id
        self.reason = reason


# -----------------------------
# Connection helpers
# -----------------------------
def connect(path: Union[str, Path] = ":memory:") -> sqlite3.Connection:
    con = sqlite3.connect(str(path))
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys=ON;")
    return con


def _fetchall(con: sqlite3.Connection, sql: str, params: Sequence[object] = ()) -> List[sqlite3.Row]:
    return con.execute(sql, tuple(params)).fetchall()


def _placeholders(values: Sequence[object]) -> str:
    return ",".join("?" for _ in values)


def reset_schema(con: sqlite3.Connection) -> None:
    """Drop every Felios table and create the schema from scratch."""
    con.commit()
    con.execute("PRAGMA foreign_keys=OFF;")
    for table in TABLES:
        con.execute(f"DROP TABLE IF EXISTS {table}")
    con.executescript(SCHEMA)
    con.execute("PRAGMA foreign_keys=ON;")
    con.commit()
    logger.debug("schema recreated (%d tables)", len(TABLES))


def clear_allocations(con: sqlite3.Connection) -> None:
    con.execute("DELETE FROM operation_assignment")
    con.execute("DELETE FROM employee_shift")
    con.commit()


# -----------------------------
# Inserts
# -----------------------------
def insert_project(con: sqlite3.Connection, name: str, color_code: str) -> int:
    cur = con.execute("INSERT INTO project (name, color_code) VALUES (?, ?)", (name, color_code))
    return int(cur.lastrowid)


def insert_network(
    con: sqlite3.Connection,
    project_id: int,
    name: str,
    parent_network_id: Optional[int] = None,
) -> int:
    cur = con.execute(
        "INSERT INTO network (project_id, parent_network_id, name) VALUES (?, ?, ?)",
        (project_id, parent_network_id, name),
    )
    return int(cur.lastrowid)


def insert_milestone(
    con: sqlite3.Connection, project_id: int, name: str, due_date: Optional[date] = None
) -> int:
    cur = con.execute(
        "INSERT INTO milestone (project_id, name, due_date) VALUES (?, ?, ?)",
        (project_id, name, format_date(due_date)),
    )
    return int(cur.lastrowid)


def insert_resource(con: sqlite3.Connection, name: str) -> int:
    return int(con.execute("INSERT INTO resource (name) VALUES (?)", (name,)).lastrowid)


def insert_employee(con: sqlite3.Connection, name: str) -> int:
    return int(con.execute("INSERT INTO employee (name) VALUES (?)", (name,)).lastrowid)


def insert_shift(con: sqlite3.Connection, name: str, daily_capacity: int, color_code: str) -> int:
    cur = con.execute(
        "INSERT INTO shift (name, daily_capacity, color_code) VALUES (?, ?, ?)",
        (name, int(daily_capacity), color_code),
    )
    return int(cur.lastrowid)


def insert_qualification(con: sqlite3.Connection, employee_id: int, resource_id: int) -> int:
    cur = con.execute(
        "INSERT INTO employee_qualification (employee_id, resource_id) VALUES (?, ?)",
        (employee_id, resource_id),
    )
    return int(cur.lastrowid)


def _check_window(start_date: Optional[date], end_date: Optional[date]) -> None:
    if start_date and end_date and start_date > end_date:
        raise ValueError(
            f"operation window start {format_date(start_date)} is after end {format_date(end_date)}"
        )


def insert_operation(
    con: sqlite3.Connection,
    network_id: int,
    name: str,
    capacity_demand: int,
    resource_id: int,
    start_date: Optional[date],
    end_date: Optional[date],
) -> int:
    if capacity_demand < 0:
        raise ValueError("time_capacity_demand must not be negative")
    _check_window(start_date, end_date)
    cur = con.execute(
        "INSERT INTO operation (network_id, name, time_capacity_demand, resource_id, start_date, end_date) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (
            network_id,
            name,
            int(capacity_demand),
            resource_id,
            format_date(start_date),
            format_date(end_date),
        ),
    )
    return int(cur.lastrowid)


def _precedes(predecessor: Operation, successor: Operation) -> bool:
    if predecessor.end_date is None or successor.start_date is None:
        return False
    return predecessor.end_date < successor.start_date


def add_dependency(con: sqlite3.Connection, operation_id: int, depends_on_id: int) -> int:
    """Record that ``operation_id`` needs ``depends_on_id`` finished first.

    The predecessor must end strictly before the successor starts; edges that
    cannot be checked because a date is missing are rejected as well.
    """
    if operation_id == depends_on_id:
        raise DependencyOrderError(operation_id, depends_on_id, "an operation cannot depend on itself")
    successor = get_operation(con, operation_id)
    predecessor = get_operation(con, depends_on_id)
    if successor is None or predecessor is None:
        missing = operation_id if successor is None else depends_on_id
        raise DependencyOrderError(operation_id, depends_on_id, f"operation {missing} not found")
    if not _precedes(predecessor, successor):
        raise DependencyOrderError(
            operation_id,
            depends_on_id,
            f"predecessor ends {format_date(predecessor.end_date)}, "
            f"successor starts {format_date(successor.start_date)}",
        )
    cur = con.execute(
        "INSERT INTO operation_dependency (operation_id, depends_on_operation_id) VALUES (?, ?)",
        (operation_id, depends_on_id),
    )
    return int(cur.lastrowid)


def update_operation_window(
    con: sqlite3.Connection,
    operation_id: int,
    start_date: Optional[date],
    end_date: Optional[date],
) -> None:
    """Move an operation's window, refusing moves that break dependency order."""
    _check_window(start_date, end_date)
    current = get_operation(con, operation_id)
    if current is None:
        raise ValueError(f"operation {operation_id} not found")
    moved = Operation(
        id=current.id,
        network_id=current.network_id,
        name=current.name,
        resource_id=current.resource_id,
        capacity_demand=current.capacity_demand,
        start_date=start_date,
        end_date=end_date,
    )
    for predecessor_id in dependencies_of(con, operation_id):
        predecessor = get_operation(con, predecessor_id)
        if predecessor is not None and not _precedes(predecessor, moved):
            raise DependencyOrderError(operation_id, predecessor_id, "new start is not after predecessor end")
    for successor_id in dependents_of(con, operation_id):
        successor = get_operation(con, successor_id)
        if successor is not None and not _precedes(moved, successor):
            raise DependencyOrderError(successor_id, operation_id, "new end is not before successor start")
    con.execute(
        "UPDATE operation SET start_date = ?, end_date = ? WHERE id = ?",
        (format_date(start_date), format_date(end_date), operation_id),
    )


def insert_employee_shifts(con: sqlite3.Connection, records: Iterable[EmployeeShift]) -> int:
    rows = [(rec.employee_id, rec.shift_id, format_date(rec.day)) for rec in records]
    con.executemany("INSERT INTO employee_shift (employee_id, shift_id, date) VALUES (?, ?, ?)", rows)
    return len(rows)


def insert_operation_assignments(con: sqlite3.Connection, records: Iterable[OperationAssignment]) -> int:
    rows = [(rec.operation_id, rec.employee_id, format_date(rec.day), int(rec.hours)) for rec in records]
    con.executemany(
        "INSERT INTO operation_assignment (operation_id, employee_id, date, assigned_capacity) "
        "VALUES (?, ?, ?, ?)",
        rows,
    )
    return len(rows)


# -----------------------------
# Loaders
# -----------------------------
def _operation_from_row(row: sqlite3.Row) -> Operation:
    return Operation(
        id=int(row["id"]),
        network_id=row["network_id"],
        name=row["name"],
        resource_id=int(row["resource_id"]),
        capacity_demand=int(row["time_capacity_demand"]),
        start_date=parse_optional_date(row["start_date"], "start_date"),
        end_date=parse_optional_date(row["end_date"], "end_date"),
    )


def get_operation(con: sqlite3.Connection, operation_id: int) -> Optional[Operation]:
    row = con.execute(
        "SELECT id, network_id, name, resource_id, time_capacity_demand, start_date, end_date "
        "FROM operation WHERE id = ?",
        (operation_id,),
    ).fetchone()
    return _operation_from_row(row) if row else None


def load_operations(con: sqlite3.Connection) -> List[Operation]:
    rows = _fetchall(
        con,
        "SELECT id, network_id, name, resource_id, time_capacity_demand, start_date, end_date "
        "FROM operation ORDER BY id",
    )
    return [_operation_from_row(row) for row in rows]


def load_projects(con: sqlite3.Connection) -> List[Project]:
    rows = _fetchall(con, "SELECT id, name, color_code FROM project ORDER BY id")
    return [Project(id=int(r["id"]), name=r["name"], color_code=r["color_code"]) for r in rows]


def load_networks(con: sqlite3.Connection) -> List[Network]:
    rows = _fetchall(con, "SELECT id, project_id, parent_network_id, name FROM network ORDER BY id")
    return [
        Network(
            id=int(r["id"]),
            project_id=r["project_id"],
            name=r["name"],
            parent_network_id=r["parent_network_id"],
        )
        for r in rows
    ]


def load_milestones(con: sqlite3.Connection) -> List[Milestone]:
    rows = _fetchall(con, "SELECT id, project_id, name, due_date FROM milestone ORDER BY id")
    return [
        Milestone(
            id=int(r["id"]),
            project_id=r["project_id"],
            name=r["name"],
            due_date=parse_optional_date(r["due_date"], "due_date"),
        )
        for r in rows
    ]


def load_resources(con: sqlite3.Connection) -> List[Resource]:
    return [Resource(id=int(r["id"]), name=r["name"]) for r in _fetchall(con, "SELECT id, name FROM resource ORDER BY id")]


def load_employees(con: sqlite3.Connection) -> List[Employee]:
    return [Employee(id=int(r["id"]), name=r["name"]) for r in _fetchall(con, "SELECT id, name FROM employee ORDER BY id")]


def load_shifts(con: sqlite3.Connection) -> List[Shift]:
    rows = _fetchall(con, "SELECT id, name, daily_capacity, color_code FROM shift ORDER BY id")
    return [
        Shift(
            id=int(r["id"]),
            name=r["name"],
            daily_capacity=int(r["daily_capacity"]),
            color_code=r["color_code"],
        )
        for r in rows
    ]


def load_qualifications(con: sqlite3.Connection) -> Dict[int, Set[int]]:
    """Map employee id to the set of resource ids they may operate."""
    qualifications: Dict[int, Set[int]] = defaultdict(set)
    for row in _fetchall(con, "SELECT employee_id, resource_id FROM employee_qualification"):
        qualifications[int(row["employee_id"])].add(int(row["resource_id"]))
    return dict(qualifications)


def qualified_employee_ids(con: sqlite3.Connection, resource_id: int) -> List[int]:
    rows = _fetchall(
        con,
        "SELECT DISTINCT employee_id FROM employee_qualification WHERE resource_id = ? ORDER BY employee_id",
        (resource_id,),
    )
    return [int(r["employee_id"]) for r in rows]


def load_employee_shifts(con: sqlite3.Connection) -> List[EmployeeShift]:
    rows = _fetchall(con, "SELECT employee_id, shift_id, date FROM employee_shift ORDER BY employee_id, date")
    return [
        EmployeeShift(employee_id=int(r["employee_id"]), shift_id=int(r["shift_id"]), day=parse_date(r["date"]))
        for r in rows
    ]


def load_operation_assignments(con: sqlite3.Connection) -> List[OperationAssignment]:
    rows = _fetchall(
        con,
        "SELECT operation_id, employee_id, date, assigned_capacity FROM operation_assignment "
        "ORDER BY operation_id, date, employee_id",
    )
    return [
        OperationAssignment(
            operation_id=int(r["operation_id"]),
            employee_id=int(r["employee_id"]),
            day=parse_date(r["date"]),
            hours=int(r["assigned_capacity"]),
        )
        for r in rows
    ]


def dependencies_of(con: sqlite3.Connection, operation_id: int) -> List[int]:
    rows = _fetchall(
        con,
        "SELECT depends_on_operation_id FROM operation_dependency WHERE operation_id = ? ORDER BY id",
        (operation_id,),
    )
    return [int(r["depends_on_operation_id"]) for r in rows]


def dependents_of(con: sqlite3.Connection, operation_id: int) -> List[int]:
    rows = _fetchall(
        con,
        "SELECT operation_id FROM operation_dependency WHERE depends_on_operation_id = ? ORDER BY id",
        (operation_id,),
    )
    return [int(r["operation_id"]) for r in rows]


def dependencies_for(con: sqlite3.Connection, operation_ids: Sequence[int]) -> Dict[int, List[int]]:
    if not operation_ids:
        return {}
    rows = _fetchall(
        con,
        "SELECT operation_id, depends_on_operation_id FROM operation_dependency "
        f"WHERE operation_id IN ({_placeholders(operation_ids)}) ORDER BY id",
        operation_ids,
    )
    result: Dict[int, List[int]] = defaultdict(list)
    for row in rows:
        result[int(row["operation_id"])].append(int(row["depends_on_operation_id"]))
    return dict(result)


def table_counts(con: sqlite3.Connection) -> Dict[str, int]:
    return {table: int(con.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]) for table in TABLES}
