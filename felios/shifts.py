from __future__ import annotations

import logging
import random
from datetime import date
from typing import List, Optional, Sequence

from .models import Employee, EmployeeShift, Shift

logger = logging.getLogger(__name__)

DEFAULT_ABSENCE_PROBABILITY = 0.05


def absence_shift(shifts: Sequence[Shift]) -> Optional[Shift]:
    """First zero-capacity shift in catalog order, if the catalog has one."""
    for shift in shifts:
        if shift.is_absence:
            return shift
    return None


def allocate_shifts(
    employees: Sequence[Employee],
    shifts: Sequence[Shift],
    days: Sequence[date],
    rng: random.Random,
    absence_probability: float = DEFAULT_ABSENCE_PROBABILITY,
) -> List[EmployeeShift]:
    """Give every employee one shift per working day.

    Work shifts rotate by ``(employee position + day index)``; each pair is then
    independently turned into an absence with ``absence_probability``.
    """
    if not shifts:
        return []
    absence = absence_shift(shifts)
    work_shifts = [shift for shift in shifts if not shift.is_absence]
    records: List[EmployeeShift] = []
    for emp_idx, employee in enumerate(employees):
        for day_idx, day in enumerate(days):
            if work_shifts:
                chosen = work_shifts[(emp_idx + day_idx) % len(work_shifts)]
            else:
                chosen = absence
            if absence is not None and rng.random() < absence_probability:
                chosen = absence
            records.append(EmployeeShift(employee_id=employee.id, shift_id=chosen.id, day=day))
    logger.info(
        "allocated %d shifts for %d employees over %d working days",
        len(records),
        len(employees),
        len(days),
    )
    return records
