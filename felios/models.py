from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple


STRATEGIES: Tuple[str, ...] = ("employee", "operation")


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    color_code: str


@dataclass(frozen=True)
class Network:
    id: int
    project_id: int
    name: str
    parent_network_id: Optional[int] = None


@dataclass(frozen=True)
class Milestone:
    id: int
    project_id: int
    name: str
    due_date: Optional[date] = None


@dataclass(frozen=True)
class Operation:
    """Unit of work needing ``capacity_demand`` hours of one resource."""

    id: int
    network_id: int
    name: str
    resource_id: int
    capacity_demand: int
    start_date: Optional[date]
    end_date: Optional[date]

    def has_window(self) -> bool:
        return self.start_date is not None and self.end_date is not None


@dataclass(frozen=True)
class Resource:
    id: int
    name: str


@dataclass(frozen=True)
class Employee:
    id: int
    name: str


@dataclass(frozen=True)
class Shift:
    """Daily capacity template; zero capacity marks absence."""

    id: int
    name: str
    daily_capacity: int
    color_code: str

    @property
    def is_absence(self) -> bool:
        return self.daily_capacity <= 0


@dataclass(frozen=True)
class EmployeeShift:
    employee_id: int
    shift_id: int
    day: date


@dataclass(frozen=True)
class OperationAssignment:
    operation_id: int
    employee_id: int
    day: date
    hours: int


@dataclass(frozen=True)
class GenerationConfig:
    horizon_start: date
    horizon_end: date
    random_seed: Optional[int] = None
    strategy: str = "employee"
    absence_probability: float = 0.05
    utilization_cap: float = 0.8
    operation_coverage: float = 0.8
    num_projects: int = 50
    num_employees: int = 80
    networks_per_project: Tuple[int, int] = (2, 3)
    operations_per_network: Tuple[int, int] = (4, 10)
    milestones_per_project: Tuple[int, int] = (2, 4)
    demand_hours: Tuple[int, int] = (4, 16)
    operation_span_days: Tuple[int, int] = (1, 5)
    second_qualification_probability: float = 0.25
    dependency_probability: float = 0.7
    logging_level: str = "INFO"

    def horizon_days(self) -> int:
        return (self.horizon_end - self.horizon_start).days + 1
