"""Plain-data projections and edits consumed by the chat and viewer tools.

Every function takes an open connection and returns a JSON-ready dict. Invalid
input and storage errors come back inside the payload instead of being raised.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Sequence

from pandas.errors import DatabaseError

from . import store
from .capacity import capacity_records, resource_capacity
from .workdays import format_date, is_working_day, parse_date

logger = logging.getLogger(__name__)

READ_ONLY_PREFIX = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)

SCHEMA_DESCRIPTION = """Felios project database

project(id, name, color_code)
network(id, project_id -> project, parent_network_id -> network (nullable), name)
milestone(id, project_id -> project, name, due_date YYYY-MM-DD)
operation(id, network_id -> network, name, time_capacity_demand hours,
          resource_id -> resource, start_date, end_date YYYY-MM-DD)
operation_dependency(id, operation_id -> operation, depends_on_operation_id -> operation)
resource(id, name)
employee(id, name)
employee_qualification(id, employee_id -> employee, resource_id -> resource)
shift(id, name, daily_capacity hours, color_code)
employee_shift(id, employee_id -> employee, shift_id -> shift, date YYYY-MM-DD)
operation_assignment(id, operation_id -> operation, employee_id -> employee,
                     date YYYY-MM-DD, assigned_capacity hours)

Rules:
- Employees are only assigned to operations whose resource they are qualified for.
- An employee's assigned hours per day never exceed their shift's daily_capacity.
- A shift with daily_capacity 0 means the employee is absent.
- A dependency's predecessor ends before its successor starts.
- Shifts and assignments exist on weekdays only.
- Projects contain networks, networks contain operations; milestones belong to projects.
"""


def _rows(cursor: sqlite3.Cursor) -> List[Dict[str, object]]:
    columns = [col[0] for col in cursor.description or ()]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _placeholders(values: Sequence[object]) -> str:
    return ",".join("?" for _ in values)


def database_schema_description() -> Dict[str, str]:
    return {"description": SCHEMA_DESCRIPTION}


def current_time() -> Dict[str, str]:
    return {"currentTime": datetime.now(timezone.utc).isoformat()}


def run_sql_query(con: sqlite3.Connection, query: str) -> Dict[str, object]:
    """Run a read-only query; anything that is not SELECT/WITH is refused unexecuted."""
    text = (query or "").strip()
    if not READ_ONLY_PREFIX.match(text):
        return {
            "query": text,
            "result": "Only SELECT queries are allowed for security reasons.",
            "valid": False,
        }
    con.execute("PRAGMA query_only = ON")
    try:
        result: object = _rows(con.execute(text))
        valid = True
    except (sqlite3.Error, sqlite3.Warning) as exc:
        logger.error("Error executing SQL query: %s", exc)
        result = f"Error executing SQL query: {exc}"
        valid = False
    finally:
        con.execute("PRAGMA query_only = OFF")
    return {"query": text, "result": result, "valid": valid}


def _assignment_rows(con: sqlite3.Connection, ids: List[int]) -> List[Dict[str, object]]:
    cursor = con.execute(
        f"""
        SELECT
            oa.employee_id AS employeeId,
            e.name AS employeeName,
            oa.operation_id AS operationId,
            o.name AS operationName,
            o.start_date AS operation_startDate,
            o.end_date AS operation_endDate,
            p.color_code AS operation_colorCode,
            oa.assigned_capacity AS duration,
            oa.date AS date,
            o.time_capacity_demand AS operation_capacityDemand
        FROM operation_assignment oa
        JOIN employee e ON oa.employee_id = e.id
        JOIN operation o ON oa.operation_id = o.id
        JOIN network n ON o.network_id = n.id
        JOIN project p ON n.project_id = p.id
        WHERE oa.operation_id IN ({_placeholders(ids)})
        ORDER BY oa.employee_id, oa.date
        """,
        ids,
    )
    assignments = _rows(cursor)
    for row in assignments:
        row["employeeId"] = str(row["employeeId"])
        row["operationId"] = str(row["operationId"])
    return assignments


def assignment_view(con: sqlite3.Connection, operation_ids: Sequence[int]) -> Dict[str, object]:
    try:
        ids = [int(value) for value in operation_ids]
        if not ids:
            return {"assignments": []}
        assignments = _assignment_rows(con, ids)
    except (ValueError, TypeError, sqlite3.Error) as exc:
        logger.error("Error fetching assignments: %s", exc)
        return {"assignments": [], "error": str(exc)}
    return {"assignments": assignments}


def _gantt_tree(con: sqlite3.Connection, ids: List[int]) -> List[Dict[str, object]]:
    marks = _placeholders(ids)
    projects = _rows(con.execute(f"SELECT id, name, color_code FROM project WHERE id IN ({marks}) ORDER BY id", ids))
    networks = _rows(
        con.execute(f"SELECT id, name, project_id FROM network WHERE project_id IN ({marks}) ORDER BY id", ids)
    )
    milestones = _rows(
        con.execute(
            f"SELECT id, name, due_date, project_id FROM milestone WHERE project_id IN ({marks}) ORDER BY id",
            ids,
        )
    )
    network_ids = [row["id"] for row in networks]
    operations: List[Dict[str, object]] = []
    if network_ids:
        operations = _rows(
            con.execute(
                "SELECT id, name, start_date, end_date, time_capacity_demand, resource_id, network_id "
                f"FROM operation WHERE network_id IN ({_placeholders(network_ids)}) ORDER BY id",
                network_ids,
            )
        )
    op_ids = [int(row["id"]) for row in operations]
    employees_by_op: Dict[int, List[Dict[str, object]]] = defaultdict(list)
    if op_ids:
        cursor = con.execute(
            f"""
            SELECT oa.operation_id AS opId, e.id AS id, e.name AS name,
                   SUM(oa.assigned_capacity) AS assignedCapacity
            FROM operation_assignment oa
            JOIN employee e ON oa.employee_id = e.id
            WHERE oa.operation_id IN ({_placeholders(op_ids)})
            GROUP BY oa.operation_id, e.id
            ORDER BY oa.operation_id, e.id
            """,
            op_ids,
        )
        for row in _rows(cursor):
            employees_by_op[int(row.pop("opId"))].append(row)
    dependencies = store.dependencies_for(con, op_ids)

    tree: List[Dict[str, object]] = []
    for project in projects:
        project_networks = []
        for network in (nw for nw in networks if nw["project_id"] == project["id"]):
            project_networks.append(
                {
                    "id": network["id"],
                    "name": network["name"],
                    "operations": [
                        {
                            "id": op["id"],
                            "name": op["name"],
                            "startDate": op["start_date"],
                            "endDate": op["end_date"],
                            "timeCapacityDemand": op["time_capacity_demand"],
                            "resourceId": op["resource_id"],
                            "employees": employees_by_op.get(int(op["id"]), []),
                            "dependencies": dependencies.get(int(op["id"]), []),
                        }
                        for op in operations
                        if op["network_id"] == network["id"]
                    ],
                }
            )
        tree.append(
            {
                "id": project["id"],
                "name": project["name"],
                "colorCode": project["color_code"],
                "milestones": [
                    {"id": ms["id"], "name": ms["name"], "dueDate": ms["due_date"]}
                    for ms in milestones
                    if ms["project_id"] == project["id"]
                ],
                "networks": project_networks,
            }
        )
    return tree


def gantt_view(con: sqlite3.Connection, project_ids: Sequence[int]) -> Dict[str, object]:
    """Project -> network -> operation tree with assigned employees and dependencies."""
    try:
        ids = [int(value) for value in project_ids]
        if not ids:
            return {"projects": []}
        tree = _gantt_tree(con, ids)
    except (ValueError, TypeError, sqlite3.Error) as exc:
        logger.error("Error building gantt view: %s", exc)
        return {"projects": [], "error": str(exc)}
    return {"projects": tree}


def shift_view(
    con: sqlite3.Connection,
    start_date: str,
    end_date: str,
    employee_ids: Sequence[int],
) -> Dict[str, object]:
    try:
        ids = [int(value) for value in employee_ids]
        if not ids:
            return {"shifts": []}
        start = format_date(parse_date(start_date, "startDate"))
        end = format_date(parse_date(end_date, "endDate"))
        cursor = con.execute(
            f"""
            SELECT es.employee_id AS employeeId, e.name AS employeeName, s.name AS shiftName,
                   es.date AS date, s.color_code AS colorCode, s.daily_capacity AS duration
            FROM employee_shift es
            JOIN shift s ON es.shift_id = s.id
            JOIN employee e ON es.employee_id = e.id
            WHERE es.employee_id IN ({_placeholders(ids)})
              AND es.date >= ? AND es.date <= ?
            ORDER BY es.employee_id, es.date
            """,
            [*ids, start, end],
        )
        shifts = _rows(cursor)
    except (ValueError, TypeError, sqlite3.Error) as exc:
        logger.error("Error fetching shifts: %s", exc)
        return {"shifts": [], "error": str(exc)}
    for row in shifts:
        row["employeeId"] = str(row["employeeId"])
    return {"shifts": shifts}


def resource_capacity_view(
    con: sqlite3.Connection,
    resource_id: int,
    start_date: str,
    end_date: str,
) -> Dict[str, object]:
    try:
        frame = resource_capacity(con, resource_id, start_date, end_date)
    except (ValueError, sqlite3.Error, DatabaseError) as exc:
        logger.error("Error computing capacity for resource %s: %s", resource_id, exc)
        return {"data": [], "error": str(exc)}
    return {"data": capacity_records(frame)}


def upsert_employee_shift(
    con: sqlite3.Connection,
    employee_id: int,
    shift_id: int,
    date: str,
) -> Dict[str, object]:
    """Replace the employee's shift on ``date`` (delete, then insert)."""
    try:
        day = parse_date(date)
    except ValueError as exc:
        return {"success": False, "message": f"Error: {exc}"}
    if not is_working_day(day):
        return {"success": False, "message": f"Error: {format_date(day)} is not a working day"}
    try:
        con.execute(
            "DELETE FROM employee_shift WHERE employee_id = ? AND date = ?",
            (employee_id, format_date(day)),
        )
        con.commit()
        con.execute(
            "INSERT INTO employee_shift (employee_id, shift_id, date) VALUES (?, ?, ?)",
            (employee_id, shift_id, format_date(day)),
        )
        con.commit()
        _warn_if_overbooked(con, employee_id, shift_id, format_date(day))
    except sqlite3.Error as exc:
        logger.error("Error upserting shift for employee %s on %s: %s", employee_id, date, exc)
        return {"success": False, "message": f"Error: {exc}"}
    return {"success": True, "message": "Upsert successful."}


def _warn_if_overbooked(con: sqlite3.Connection, employee_id: int, shift_id: int, day: str) -> None:
    # Existing assignments are kept; the new shift may not cover them.
    capacity = con.execute("SELECT daily_capacity FROM shift WHERE id = ?", (shift_id,)).fetchone()
    assigned = con.execute(
        "SELECT COALESCE(SUM(assigned_capacity), 0) FROM operation_assignment WHERE employee_id = ? AND date = ?",
        (employee_id, day),
    ).fetchone()
    if capacity is not None and int(assigned[0]) > int(capacity[0]):
        logger.warning(
            "employee %s has %sh assigned on %s but shift %s only provides %sh",
            employee_id,
            assigned[0],
            day,
            shift_id,
            capacity[0],
        )


def delete_employee_shift(con: sqlite3.Connection, employee_id: int, date: str) -> Dict[str, object]:
    try:
        day = parse_date(date)
    except ValueError as exc:
        return {"success": False, "message": f"Error: {exc}"}
    try:
        con.execute(
            "DELETE FROM employee_shift WHERE employee_id = ? AND date = ?",
            (employee_id, format_date(day)),
        )
        con.commit()
    except sqlite3.Error as exc:
        logger.error("Error deleting shift for employee %s on %s: %s", employee_id, date, exc)
        return {"success": False, "message": f"Error: {exc}"}
    return {"success": True, "message": "Delete successful."}
