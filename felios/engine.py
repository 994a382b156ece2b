from __future__ import annotations

import logging
import random
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pandas as pd

from . import store
from .ledger import CapacityLedger
from .models import (
    STRATEGIES,
    Employee,
    EmployeeShift,
    GenerationConfig,
    Operation,
    OperationAssignment,
)
from .seed import seed_catalog
from .shifts import allocate_shifts
from .workdays import DATE_FMT, working_days

logger = logging.getLogger(__name__)

ASSIGNMENT_COLUMNS = ["operation_id", "employee_id", "date", "assigned_capacity"]
SHIFT_COLUMNS = ["employee_id", "shift_id", "date"]


def make_rng(seed: Optional[int] = None) -> random.Random:
    """Seeded generator for reproducible runs; ``None`` draws on system entropy."""
    return random.Random(seed)


def _operations_by_resource(operations: Sequence[Operation]) -> Dict[int, List[Operation]]:
    grouped: Dict[int, List[Operation]] = defaultdict(list)
    for operation in sorted(operations, key=lambda op: op.id):
        grouped[operation.resource_id].append(operation)
    return grouped


def _candidate_slots(
    resource_ids: Set[int],
    ops_by_resource: Dict[int, List[Operation]],
    ledger: CapacityLedger,
) -> List[Tuple[Operation, date]]:
    slots: List[Tuple[Operation, date]] = []
    for operation in sorted(
        (op for rid in resource_ids for op in ops_by_resource.get(rid, ())),
        key=lambda op: op.id,
    ):
        for day in ledger.operation_days(operation.id):
            slots.append((operation, day))
    return slots


def allocate_by_employee(
    employees: Sequence[Employee],
    operations: Sequence[Operation],
    qualifications: Dict[int, Set[int]],
    ledger: CapacityLedger,
    rng: random.Random,
) -> List[OperationAssignment]:
    """Budget-first greedy allocation, one employee at a time.

    Each employee walks a freshly shuffled list of the (operation, day) slots
    they are qualified for and takes ``min(operation-day demand, employee-day
    capacity, annual budget)`` hours from each, until the budget runs out.
    """
    ops_by_resource = _operations_by_resource(operations)
    assignments: List[OperationAssignment] = []
    for employee in sorted(employees, key=lambda emp: emp.id):
        if ledger.remaining_budget(employee.id) <= 0:
            continue
        candidates = _candidate_slots(qualifications.get(employee.id, set()), ops_by_resource, ledger)
        rng.shuffle(candidates)
        booked = 0
        for operation, day in candidates:
            budget = ledger.remaining_budget(employee.id)
            if budget <= 0:
                break
            amount = min(
                ledger.remaining_operation(operation.id, day),
                ledger.remaining_employee(employee.id, day),
                budget,
            )
            if amount <= 0:
                continue
            ledger.book(operation.id, employee.id, day, amount)
            assignments.append(
                OperationAssignment(operation_id=operation.id, employee_id=employee.id, day=day, hours=amount)
            )
            booked += amount
        logger.debug(
            "employee %s: %d candidate slots, %dh booked, %dh budget left",
            employee.id,
            len(candidates),
            booked,
            ledger.remaining_budget(employee.id),
        )
    return assignments


def _covers_operation(
    employee_id: int,
    operation: Operation,
    days: Sequence[date],
    ledger: CapacityLedger,
) -> bool:
    demand = operation.capacity_demand
    if ledger.remaining_budget(employee_id) < demand * len(days):
        return False
    for day in days:
        if ledger.remaining_employee(employee_id, day) < demand:
            return False
        if ledger.remaining_operation(operation.id, day) < demand:
            return False
    return True


def allocate_by_operation(
    employees: Sequence[Employee],
    operations: Sequence[Operation],
    qualifications: Dict[int, Set[int]],
    ledger: CapacityLedger,
    rng: random.Random,
    operation_coverage: float = 0.8,
) -> List[OperationAssignment]:
    """Whole-operation allocation: one employee takes the full demand on every day.

    Operations are visited by id and each is attempted with probability
    ``operation_coverage``; the first qualified employee (by id) able to carry
    the demand on all active days gets it, otherwise the operation stays open.
    """
    qualified_by_resource: Dict[int, List[int]] = defaultdict(list)
    for employee in sorted(employees, key=lambda emp: emp.id):
        for resource_id in qualifications.get(employee.id, ()):
            qualified_by_resource[resource_id].append(employee.id)
    assignments: List[OperationAssignment] = []
    for operation in sorted(operations, key=lambda op: op.id):
        if rng.random() > operation_coverage:
            continue
        days = ledger.operation_days(operation.id)
        if not days or operation.capacity_demand <= 0:
            continue
        for employee_id in qualified_by_resource.get(operation.resource_id, ()):
            if not _covers_operation(employee_id, operation, days, ledger):
                continue
            for day in days:
                ledger.book(operation.id, employee_id, day, operation.capacity_demand)
                assignments.append(
                    OperationAssignment(
                        operation_id=operation.id,
                        employee_id=employee_id,
                        day=day,
                        hours=operation.capacity_demand,
                    )
                )
            break
    return assignments


def allocate(
    strategy: str,
    employees: Sequence[Employee],
    operations: Sequence[Operation],
    qualifications: Dict[int, Set[int]],
    ledger: CapacityLedger,
    rng: random.Random,
    *,
    operation_coverage: float = 0.8,
) -> List[OperationAssignment]:
    if strategy == "employee":
        return allocate_by_employee(employees, operations, qualifications, ledger, rng)
    if strategy == "operation":
        return allocate_by_operation(
            employees, operations, qualifications, ledger, rng, operation_coverage=operation_coverage
        )
    raise ValueError(f"unknown strategy '{strategy}' (expected one of: {', '.join(STRATEGIES)})")


def describe_unfilled(
    operations: Sequence[Operation],
    assignments: Sequence[OperationAssignment],
    qualifications: Dict[int, Set[int]],
    ledger: CapacityLedger,
) -> List[Dict[str, object]]:
    """Operations that ended the pass without a single assigned hour."""
    assigned_ops = {assignment.operation_id for assignment in assignments}
    qualified_resources = {rid for resources in qualifications.values() for rid in resources}
    unfilled: List[Dict[str, object]] = []
    for operation in sorted(operations, key=lambda op: op.id):
        if operation.id in assigned_ops:
            continue
        if operation.capacity_demand <= 0:
            continue
        days = ledger.operation_days(operation.id)
        if not days:
            reason_code = "empty_window"
            reason = "no working day inside the operation window"
        elif operation.resource_id not in qualified_resources:
            reason_code = "no_qualified_employee"
            reason = f"no employee is qualified for resource {operation.resource_id}"
        else:
            reason_code = "capacity_exhausted"
            reason = "qualified employees had no capacity left on the active days"
        unfilled.append(
            {
                "id": operation.id,
                "name": operation.name,
                "resource_id": operation.resource_id,
                "demand": operation.capacity_demand,
                "active_days": len(days),
                "reason_code": reason_code,
                "reason": reason,
            }
        )
    return unfilled


@dataclass
class GenerationResult:
    strategy: str
    working_days: int
    employees: int
    operations: int
    shift_records: List[EmployeeShift] = field(default_factory=list)
    assignments: List[OperationAssignment] = field(default_factory=list)
    unfilled: List[Dict[str, object]] = field(default_factory=list)

    @property
    def assigned_hours(self) -> int:
        return sum(assignment.hours for assignment in self.assignments)

    def assignments_frame(self) -> pd.DataFrame:
        rows = [
            {
                "operation_id": rec.operation_id,
                "employee_id": rec.employee_id,
                "date": rec.day.strftime(DATE_FMT),
                "assigned_capacity": rec.hours,
            }
            for rec in self.assignments
        ]
        return pd.DataFrame(rows, columns=ASSIGNMENT_COLUMNS)

    def shifts_frame(self) -> pd.DataFrame:
        rows = [
            {"employee_id": rec.employee_id, "shift_id": rec.shift_id, "date": rec.day.strftime(DATE_FMT)}
            for rec in self.shift_records
        ]
        return pd.DataFrame(rows, columns=SHIFT_COLUMNS)


def generate(
    con: sqlite3.Connection,
    cfg: GenerationConfig,
    rng: Optional[random.Random] = None,
    *,
    keep_catalog: bool = False,
) -> GenerationResult:
    """Run one full generation pass against ``con``.

    Each stage commits on its own; an interrupted pass needs a full reseed.
    """
    if cfg.strategy not in STRATEGIES:
        raise ValueError(f"unknown strategy '{cfg.strategy}'")
    rng = rng if rng is not None else make_rng(cfg.random_seed)
    if keep_catalog:
        store.clear_allocations(con)
        logger.info("reusing existing catalog; shifts and assignments cleared")
    else:
        seed_catalog(con, cfg, rng)

    employees = store.load_employees(con)
    shifts = store.load_shifts(con)
    operations = store.load_operations(con)
    qualifications = store.load_qualifications(con)
    days = working_days(cfg.horizon_start, cfg.horizon_end)

    shift_records = allocate_shifts(employees, shifts, days, rng, cfg.absence_probability)
    store.insert_employee_shifts(con, shift_records)
    con.commit()

    ledger = CapacityLedger.build(
        shift_records,
        shifts,
        operations,
        (cfg.horizon_start, cfg.horizon_end),
        cfg.utilization_cap,
    )
    assignments = allocate(
        cfg.strategy,
        employees,
        operations,
        qualifications,
        ledger,
        rng,
        operation_coverage=cfg.operation_coverage,
    )
    store.insert_operation_assignments(con, assignments)
    con.commit()

    result = GenerationResult(
        strategy=cfg.strategy,
        working_days=len(days),
        employees=len(employees),
        operations=len(operations),
        shift_records=shift_records,
        assignments=assignments,
        unfilled=describe_unfilled(operations, assignments, qualifications, ledger),
    )
    logger.info(
        "strategy=%s: %d assignments (%dh) across %d operations, %d operations unfilled",
        cfg.strategy,
        len(assignments),
        result.assigned_hours,
        len({rec.operation_id for rec in assignments}),
        len(result.unfilled),
    )
    return result
