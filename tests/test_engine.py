import random
from collections import defaultdict
from dataclasses import replace
from datetime import date

import pytest

from felios import store
from felios.engine import (
    allocate,
    allocate_by_employee,
    allocate_by_operation,
    describe_unfilled,
    generate,
    make_rng,
)
from felios.ledger import CapacityLedger, assignable_hours
from felios.models import Employee, EmployeeShift, Operation, Shift
from felios.workdays import working_days

EIGHT = Shift(id=1, name="Frühschicht", daily_capacity=8, color_code="#B0BEC5")
HORIZON = (date(2025, 1, 6), date(2025, 1, 17))
DAYS = working_days(*HORIZON)


def _operation(op_id, start, end, demand, resource_id=1):
    return Operation(
        id=op_id,
        network_id=1,
        name=f"Fräsen {op_id}",
        resource_id=resource_id,
        capacity_demand=demand,
        start_date=start,
        end_date=end,
    )


def _ledger(employee_ids, operations):
    records = [EmployeeShift(employee_id=emp, shift_id=EIGHT.id, day=day) for emp in employee_ids for day in DAYS]
    return CapacityLedger.build(records, [EIGHT], operations, HORIZON)


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_single_employee_fills_operation(seed):
    employee = Employee(id=1, name="Lukas Müller")
    operation = _operation(1, date(2025, 1, 6), date(2025, 1, 10), demand=40)
    ledger = _ledger([1], [operation])
    assert ledger.remaining_budget(1) == 64

    assignments = allocate_by_employee([employee], [operation], {1: {1}}, ledger, random.Random(seed))

    assert sum(a.hours for a in assignments) == 40
    assert {a.day for a in assignments} == set(working_days(date(2025, 1, 6), date(2025, 1, 10)))
    assert all(a.hours == 8 for a in assignments)
    assert ledger.remaining_budget(1) == 24


@pytest.mark.parametrize("seed", range(6))
def test_contended_day_goes_to_one_operation(seed):
    employee = Employee(id=1, name="Anna Schmidt")
    day = date(2025, 1, 8)
    ops = [_operation(1, day, day, demand=8), _operation(2, day, day, demand=8)]
    ledger = _ledger([1], ops)

    assignments = allocate_by_employee([employee], ops, {1: {1}}, ledger, random.Random(seed))

    assert len(assignments) == 1
    assert assignments[0].hours == 8
    assert assignments[0].operation_id in {1, 2}


def test_budget_caps_total_hours():
    employee = Employee(id=1, name="Finn Weber")
    ops = [_operation(op_id, DAYS[0], DAYS[-1], demand=16) for op_id in (1, 2, 3)]
    ledger = _ledger([1], ops)
    assignments = allocate_by_employee([employee], ops, {1: {1}}, ledger, random.Random(9))
    assert sum(a.hours for a in assignments) == assignable_hours(80)
    assert ledger.remaining_budget(1) == 0


def test_unqualified_employee_gets_nothing():
    ops = [_operation(1, DAYS[0], DAYS[4], demand=8, resource_id=2)]
    ledger = _ledger([1], ops)
    assignments = allocate_by_employee([Employee(id=1, name="Mia Koch")], ops, {1: {1}}, ledger, random.Random(0))
    assert assignments == []
    unfilled = describe_unfilled(ops, assignments, {1: {1}}, ledger)
    assert [item["reason_code"] for item in unfilled] == ["no_qualified_employee"]


def test_empty_window_is_reported_not_raised():
    ops = [_operation(1, date(2025, 1, 11), date(2025, 1, 12), demand=8), _operation(2, None, None, demand=8)]
    ledger = _ledger([1], ops)
    assignments = allocate_by_employee([Employee(id=1, name="Ben Wolf")], ops, {1: {1}}, ledger, random.Random(0))
    assert assignments == []
    assert {item["reason_code"] for item in describe_unfilled(ops, assignments, {1: {1}}, ledger)} == {"empty_window"}


def test_lower_ids_win_when_capacity_is_short():
    employees = [Employee(id=1, name="Paul Braun"), Employee(id=2, name="Lea Klein")]
    ops = [_operation(1, DAYS[0], DAYS[0], demand=8)]
    ledger = _ledger([1, 2], ops)
    assignments = allocate_by_employee(employees, ops, {1: {1}, 2: {1}}, ledger, random.Random(0))
    assert [(a.employee_id, a.hours) for a in assignments] == [(1, 8)]


def test_same_seed_is_reproducible():
    employees = [Employee(id=idx, name=str(idx)) for idx in range(1, 4)]
    ops = [_operation(idx, DAYS[idx % 5], DAYS[idx % 5 + 3], demand=6 + idx) for idx in range(1, 8)]
    quals = {1: {1}, 2: {1}, 3: {1}}
    first = allocate_by_employee(employees, ops, quals, _ledger([1, 2, 3], ops), make_rng(11))
    second = allocate_by_employee(employees, ops, quals, _ledger([1, 2, 3], ops), make_rng(11))
    assert first == second


def test_operation_strategy_is_all_or_nothing():
    employees = [Employee(id=1, name="Noah Lange"), Employee(id=2, name="Emma Kaiser")]
    ops = [
        _operation(1, DAYS[0], DAYS[2], demand=6),
        _operation(2, DAYS[0], DAYS[2], demand=6),
        _operation(3, DAYS[0], DAYS[0], demand=9),
    ]
    ledger = _ledger([1, 2], ops)
    assignments = allocate_by_operation(employees, ops, {1: {1}, 2: {1}}, ledger, random.Random(0), operation_coverage=1.0)

    by_op = defaultdict(list)
    for a in assignments:
        by_op[a.operation_id].append(a)
    assert {a.employee_id for a in by_op[1]} == {1}
    assert {a.employee_id for a in by_op[2]} == {2}
    assert len(by_op[1]) == len(by_op[2]) == 3
    assert 3 not in by_op
    assert all(a.hours == 6 for a in assignments)


def test_operation_strategy_coverage_zero_assigns_nothing():
    ops = [_operation(1, DAYS[0], DAYS[2], demand=4)]
    ledger = _ledger([1], ops)
    assert allocate_by_operation([Employee(id=1, name="x")], ops, {1: {1}}, ledger, random.Random(0), operation_coverage=0.0) == []


def test_unknown_strategy_raises():
    with pytest.raises(ValueError, match="unknown strategy"):
        allocate("round-robin", [], [], {}, CapacityLedger(), random.Random(0))


def _check_invariants(con, utilization_cap=0.8):
    shift_capacity = {s.id: s.daily_capacity for s in store.load_shifts(con)}
    shift_hours = {(r.employee_id, r.day): shift_capacity[r.shift_id] for r in store.load_employee_shifts(con)}
    operations = {op.id: op for op in store.load_operations(con)}
    qualifications = store.load_qualifications(con)
    assignments = store.load_operation_assignments(con)

    per_employee_day = defaultdict(int)
    per_operation_day = defaultdict(int)
    per_employee = defaultdict(int)
    for a in assignments:
        op = operations[a.operation_id]
        assert op.resource_id in qualifications.get(a.employee_id, set())
        assert a.day.weekday() < 5
        assert op.start_date <= a.day <= op.end_date
        per_employee_day[(a.employee_id, a.day)] += a.hours
        per_operation_day[(a.operation_id, a.day)] += a.hours
        per_employee[a.employee_id] += a.hours

    for key, hours in per_employee_day.items():
        assert hours <= shift_hours.get(key, 0)
    for (op_id, _), hours in per_operation_day.items():
        assert hours <= operations[op_id].capacity_demand
    totals = defaultdict(int)
    for (emp_id, _), hours in shift_hours.items():
        totals[emp_id] += hours
    for emp_id, hours in per_employee.items():
        assert hours <= assignable_hours(totals[emp_id], utilization_cap)
    assert all(day.weekday() < 5 for (_, day) in shift_hours)
    return assignments


@pytest.mark.parametrize("strategy", ["employee", "operation"])
@pytest.mark.parametrize("seed", [1, 2, 3])
def test_generation_pass_keeps_invariants(con, small_config, strategy, seed):
    cfg = replace(small_config, strategy=strategy, random_seed=seed)
    result = generate(con, cfg)
    assignments = _check_invariants(con)
    assert len(assignments) == len(result.assignments) > 0
    assert len(result.shift_records) == result.employees * result.working_days


def test_keep_catalog_regenerates_allocations_only(con, small_config):
    generate(con, small_config)
    operations_before = store.load_operations(con)
    shifts_before = store.table_counts(con)["employee_shift"]
    result = generate(con, small_config, make_rng(99), keep_catalog=True)
    assert store.load_operations(con) == operations_before
    assert store.table_counts(con)["employee_shift"] == shifts_before
    assert store.table_counts(con)["operation_assignment"] == len(result.assignments)
    _check_invariants(con)


def test_result_frames(con, small_config):
    result = generate(con, small_config)
    frame = result.assignments_frame()
    assert list(frame.columns) == ["operation_id", "employee_id", "date", "assigned_capacity"]
    assert int(frame["assigned_capacity"].sum()) == result.assigned_hours
    assert len(result.shifts_frame()) == len(result.shift_records)
