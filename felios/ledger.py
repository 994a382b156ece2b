from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import EmployeeShift, Operation, Shift
from .workdays import working_days

EPSILON = 1e-6
DEFAULT_UTILIZATION_CAP = 0.8


def assignable_hours(total_shift_hours: int, utilization_cap: float = DEFAULT_UTILIZATION_CAP) -> int:
    """Annual budget: floor of ``total_shift_hours * utilization_cap``."""
    return int(math.floor(total_shift_hours * utilization_cap + EPSILON))


@dataclass
class CapacityLedger:
    """Remaining hours per employee-day, per operation-day and per employee."""

    employee_day: Dict[Tuple[int, date], int] = field(default_factory=dict)
    operation_day: Dict[Tuple[int, date], int] = field(default_factory=dict)
    employee_budget: Dict[int, int] = field(default_factory=dict)
    active_days: Dict[int, List[date]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        shift_records: Iterable[EmployeeShift],
        shifts: Sequence[Shift],
        operations: Iterable[Operation],
        horizon: Tuple[date, date],
        utilization_cap: float = DEFAULT_UTILIZATION_CAP,
    ) -> "CapacityLedger":
        capacity_by_shift = {shift.id: shift.daily_capacity for shift in shifts}
        horizon_start, horizon_end = horizon
        ledger = cls()
        totals: Dict[int, int] = defaultdict(int)
        for record in shift_records:
            if not horizon_start <= record.day <= horizon_end:
                continue
            hours = max(0, capacity_by_shift.get(record.shift_id, 0))
            ledger.employee_day[(record.employee_id, record.day)] = hours
            totals[record.employee_id] += hours
        for employee_id, total in totals.items():
            ledger.employee_budget[employee_id] = assignable_hours(total, utilization_cap)
        for operation in operations:
            ledger.open_operation(operation, horizon)
        return ledger

    def open_operation(self, operation: Operation, horizon: Tuple[date, date]) -> List[date]:
        """Register an operation's demand on each working day of its window."""
        days: List[date] = []
        if operation.has_window():
            start = max(operation.start_date, horizon[0])  # type: ignore[type-var]
            end = min(operation.end_date, horizon[1])  # type: ignore[type-var]
            days = working_days(start, end)
        for day in days:
            self.operation_day[(operation.id, day)] = operation.capacity_demand
        self.active_days[operation.id] = days
        return days

    def operation_days(self, operation_id: int) -> List[date]:
        return list(self.active_days.get(operation_id, ()))

    def remaining_employee(self, employee_id: int, day: date) -> int:
        return self.employee_day.get((employee_id, day), 0)

    def remaining_operation(self, operation_id: int, day: date) -> int:
        return self.operation_day.get((operation_id, day), 0)

    def remaining_budget(self, employee_id: int) -> int:
        return self.employee_budget.get(employee_id, 0)

    def consume_employee(self, employee_id: int, day: date, hours: int) -> None:
        key = (employee_id, day)
        self.employee_day[key] = _debit(self.employee_day.get(key, 0), hours, "employee-day capacity")

    def consume_operation(self, operation_id: int, day: date, hours: int) -> None:
        key = (operation_id, day)
        self.operation_day[key] = _debit(self.operation_day.get(key, 0), hours, "operation-day demand")

    def consume_budget(self, employee_id: int, hours: int) -> None:
        self.employee_budget[employee_id] = _debit(
            self.employee_budget.get(employee_id, 0), hours, "employee annual budget"
        )

    def book(self, operation_id: int, employee_id: int, day: date, hours: int) -> None:
        """Consume all three counters for one assignment."""
        self.consume_operation(operation_id, day, hours)
        self.consume_employee(employee_id, day, hours)
        self.consume_budget(employee_id, hours)


def _debit(remaining: int, hours: int, label: str) -> int:
    if hours < 0:
        raise ValueError(f"cannot consume negative hours from {label}")
    if hours > remaining:
        raise ValueError(f"allocation of {hours}h exceeds remaining {label} ({remaining}h)")
    return remaining - hours
