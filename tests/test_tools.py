import logging
from datetime import date, datetime

import pytest

from felios import store, tools
from felios.models import EmployeeShift, OperationAssignment


@pytest.fixture
def workshop(con, shift_ids, network_id):
    resource_id = store.insert_resource(con, "Montageband")
    worker = store.insert_employee(con, "Jonas Hoffmann")
    store.insert_qualification(con, worker, resource_id)
    first = store.insert_operation(con, network_id, "Montage 1", 8, resource_id, date(2025, 1, 6), date(2025, 1, 7))
    second = store.insert_operation(con, network_id, "Montage 2", 8, resource_id, date(2025, 1, 8), date(2025, 1, 9))
    store.add_dependency(con, second, first)
    store.insert_milestone(con, 1, "Abnahme 1", date(2025, 1, 31))
    store.insert_employee_shifts(
        con,
        [
            EmployeeShift(worker, shift_ids["early"], date(2025, 1, 6)),
            EmployeeShift(worker, shift_ids["late"], date(2025, 1, 7)),
        ],
    )
    store.insert_operation_assignments(
        con,
        [
            OperationAssignment(first, worker, date(2025, 1, 6), 5),
            OperationAssignment(first, worker, date(2025, 1, 7), 3),
        ],
    )
    con.commit()
    return {"resource": resource_id, "worker": worker, "first": first, "second": second}


def test_schema_description_and_clock():
    description = tools.database_schema_description()["description"]
    assert "operation_assignment" in description
    assert "daily_capacity 0" in description
    stamp = tools.current_time()["currentTime"]
    assert datetime.fromisoformat(stamp).tzinfo is not None


@pytest.mark.parametrize(
    "query",
    [
        "DELETE FROM employee",
        "drop table shift",
        "  UPDATE employee SET name = 'x'",
        "",
    ],
)
def test_sql_tool_refuses_writes(con, workshop, query):
    payload = tools.run_sql_query(con, query)
    assert payload["valid"] is False
    assert payload["result"] == "Only SELECT queries are allowed for security reasons."
    assert store.table_counts(con)["employee"] == 1


def test_sql_tool_returns_rows(con, workshop):
    payload = tools.run_sql_query(con, "select id, name from employee order by id")
    assert payload["valid"] is True
    assert payload["result"] == [{"id": workshop["worker"], "name": "Jonas Hoffmann"}]


def test_sql_tool_reports_errors_in_payload(con, workshop):
    payload = tools.run_sql_query(con, "SELECT * FROM nowhere")
    assert payload["valid"] is False
    assert payload["result"].startswith("Error executing SQL query")


def test_sql_tool_blocks_writes_behind_with(con, workshop):
    payload = tools.run_sql_query(con, "WITH doomed AS (SELECT 1) DELETE FROM operation_assignment")
    assert payload["valid"] is False
    assert store.table_counts(con)["operation_assignment"] == 2
    # writes work again once the query is done
    store.insert_resource(con, "Prüfstand")
    con.commit()


def test_assignment_view(con, workshop):
    rows = tools.assignment_view(con, [workshop["first"]])["assignments"]
    assert [row["duration"] for row in rows] == [5, 3]
    first = rows[0]
    assert first["employeeId"] == str(workshop["worker"])
    assert first["operationId"] == str(workshop["first"])
    assert first["operation_colorCode"] == "#1E88E5"
    assert first["operation_capacityDemand"] == 8
    assert tools.assignment_view(con, [])["assignments"] == []


def test_gantt_view_tree(con, workshop):
    projects = tools.gantt_view(con, [1])["projects"]
    assert len(projects) == 1
    project = projects[0]
    assert project["colorCode"] == "#1E88E5"
    assert project["milestones"] == [{"id": 1, "name": "Abnahme 1", "dueDate": "2025-01-31"}]
    operations = project["networks"][0]["operations"]
    by_id = {op["id"]: op for op in operations}
    assert by_id[workshop["first"]]["employees"] == [
        {"id": workshop["worker"], "name": "Jonas Hoffmann", "assignedCapacity": 8}
    ]
    assert by_id[workshop["second"]]["employees"] == []
    assert by_id[workshop["second"]]["dependencies"] == [workshop["first"]]
    assert tools.gantt_view(con, [])["projects"] == []


def test_shift_view(con, workshop):
    shifts = tools.shift_view(con, "2025-01-06", "2025-01-06", [workshop["worker"]])["shifts"]
    assert shifts == [
        {
            "employeeId": str(workshop["worker"]),
            "employeeName": "Jonas Hoffmann",
            "shiftName": "Frühschicht",
            "date": "2025-01-06",
            "colorCode": "#B0BEC5",
            "duration": 8,
        }
    ]
    garbled = tools.shift_view(con, "garbage", "2025-01-06", [workshop["worker"]])
    assert garbled["shifts"] == []
    assert "startDate" in garbled["error"]


def test_resource_capacity_view(con, workshop):
    data = tools.resource_capacity_view(con, workshop["resource"], "2025-01-06", "2025-01-07")["data"]
    assert data == [
        {"date": "2025-01-06", "capacity": 8, "assigned": 5},
        {"date": "2025-01-07", "capacity": 8, "assigned": 3},
    ]
    failed = tools.resource_capacity_view(con, workshop["resource"], "not-a-date", "2025-01-07")
    assert failed["data"] == []
    assert "startDate" in failed["error"]


@pytest.fixture
def bare_con():
    connection = store.connect(":memory:")
    yield connection
    connection.close()


@pytest.mark.parametrize(
    "call, key",
    [
        (lambda c: tools.assignment_view(c, [1]), "assignments"),
        (lambda c: tools.gantt_view(c, [1]), "projects"),
        (lambda c: tools.shift_view(c, "2025-01-06", "2025-01-10", [1]), "shifts"),
    ],
)
def test_views_report_storage_errors(bare_con, call, key):
    payload = call(bare_con)
    assert payload[key] == []
    assert "no such table" in payload["error"]


@pytest.mark.parametrize(
    "call, key",
    [
        (lambda c: tools.assignment_view(c, ["abc"]), "assignments"),
        (lambda c: tools.gantt_view(c, ["abc"]), "projects"),
        (lambda c: tools.shift_view(c, "2025-01-06", "2025-01-10", ["abc"]), "shifts"),
    ],
)
def test_views_report_bad_ids(con, workshop, call, key):
    payload = call(con)
    assert payload[key] == []
    assert "abc" in payload["error"]


def test_upsert_replaces_existing_shift(con, shift_ids, workshop, caplog):
    with caplog.at_level(logging.WARNING, logger="felios.tools"):
        payload = tools.upsert_employee_shift(con, workshop["worker"], shift_ids["absent"], "2025-01-06")
    assert payload == {"success": True, "message": "Upsert successful."}
    rows = [rec for rec in store.load_employee_shifts(con) if rec.day == date(2025, 1, 6)]
    assert [rec.shift_id for rec in rows] == [shift_ids["absent"]]
    assert "5h assigned on 2025-01-06" in caplog.text


def test_upsert_within_capacity_does_not_warn(con, shift_ids, workshop, caplog):
    with caplog.at_level(logging.WARNING, logger="felios.tools"):
        payload = tools.upsert_employee_shift(con, workshop["worker"], shift_ids["late"], "2025-01-06")
    assert payload["success"] is True
    assert caplog.records == []


def test_upsert_rejects_bad_input(con, shift_ids, workshop):
    weekend = tools.upsert_employee_shift(con, workshop["worker"], shift_ids["early"], "2025-01-11")
    assert weekend["success"] is False
    assert "not a working day" in weekend["message"]
    garbled = tools.upsert_employee_shift(con, workshop["worker"], shift_ids["early"], "tomorrow-ish")
    assert garbled["success"] is False
    unknown = tools.upsert_employee_shift(con, workshop["worker"], 999, "2025-01-08")
    assert unknown["success"] is False
    assert unknown["message"].startswith("Error:")


def test_delete_shift(con, workshop):
    payload = tools.delete_employee_shift(con, workshop["worker"], "2025-01-07")
    assert payload == {"success": True, "message": "Delete successful."}
    assert [rec.day for rec in store.load_employee_shifts(con)] == [date(2025, 1, 6)]
    assert tools.delete_employee_shift(con, workshop["worker"], "??")["success"] is False
