from __future__ import annotations

import logging
import random
import sqlite3
from datetime import timedelta
from typing import Dict, List, Sequence, Tuple

from . import store
from .models import GenerationConfig

logger = logging.getLogger(__name__)

PROJECT_NAMES: Tuple[str, ...] = (
    "Hydraulikpresse", "Montagelinie", "Roboterzelle", "Fräsmaschine", "Drehmaschine",
    "Förderband", "Lackieranlage", "Schweißroboter", "Montageautomat", "Prüfstand",
    "Verpackungsstraße", "CNC-Bearbeitung", "Blechumformung", "Gießerei", "Bohrwerk",
    "Laserstation", "Stanzautomat", "Montageinsel", "Palettierer", "Sortieranlage",
    "Automatisierungslinie", "Qualitätskontrolle", "Materialfluss", "Werkzeugwechsel", "Kühlanlage",
)

NETWORK_NAMES: Tuple[str, ...] = (
    "Vormontage", "Endmontage", "Qualitätsprüfung", "Logistik", "Materialbereitstellung",
    "Fertigung", "Verpackung", "Lackierung", "Schweißen", "Montage", "Prüfung", "Transport",
)

OPERATION_NAMES: Tuple[str, ...] = (
    "Bohren", "Fräsen", "Drehen", "Montieren", "Schweißen", "Lackieren", "Prüfen", "Verpacken",
    "Transportieren", "Justieren", "Reinigen", "Entgraten", "Schrauben", "Palettieren", "Sortieren",
    "Einlagern", "Auslagern", "Beschriften", "Kalibrieren", "Testen",
)

MILESTONE_NAMES: Tuple[str, ...] = (
    "Konstruktionsfreigabe", "Materialeingang", "Fertigungsstart", "Montagebeginn", "Erste Prüfung",
    "Endabnahme", "Auslieferung", "Projektabschluss", "Zwischenabnahme", "Serienstart",
)

RESOURCE_NAMES: Tuple[str, ...] = (
    "CNC-Fräse", "Industrieroboter", "Montageband", "Schweißgerät", "Lackierkabine", "Prüfstand",
)

FIRST_NAMES: Tuple[str, ...] = (
    "Lukas", "Leon", "Finn", "Paul", "Jonas", "Elias", "Noah", "Ben", "Luis", "Felix",
    "Anna", "Lea", "Mia", "Emma", "Lina", "Marie", "Sophie", "Hannah", "Laura", "Clara",
    "Maximilian", "Moritz", "Julian", "Tim", "David", "Fabian", "Simon", "Tom", "Jan", "Philipp",
)

LAST_NAMES: Tuple[str, ...] = (
    "Müller", "Schmidt", "Schneider", "Fischer", "Weber", "Meyer", "Wagner", "Becker", "Hoffmann", "Schulz",
    "Koch", "Bauer", "Richter", "Klein", "Wolf", "Schröder", "Neumann", "Schwarz", "Zimmermann", "Braun",
)

# (name, daily_capacity, color_code); the zero-capacity entry is the absence shift.
SHIFT_MODELS: Tuple[Tuple[str, int, str], ...] = (
    ("Frühschicht", 8, "#B0BEC5"),
    ("Spätschicht", 8, "#90A4AE"),
    ("Nachtschicht", 8, "#78909C"),
    ("Abwesend", 0, "#CFD8DC"),
)

PROJECT_COLORS: Tuple[str, ...] = (
    "#1E88E5", "#43A047", "#FB8C00", "#8E24AA", "#E53935",
    "#00897B", "#3949AB", "#C0CA33", "#6D4C41", "#D81B60",
)

MAX_EMPLOYEES = len(FIRST_NAMES) * len(LAST_NAMES)


def _randint(rng: random.Random, bounds: Sequence[int]) -> int:
    low, high = bounds
    return rng.randint(low, high)


def _unique_names(rng: random.Random, count: int) -> List[str]:
    if count > MAX_EMPLOYEES:
        raise ValueError(f"cannot generate {count} unique employee names (max {MAX_EMPLOYEES})")
    used: set = set()
    names: List[str] = []
    while len(names) < count:
        full = f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}"
        if full not in used:
            used.add(full)
            names.append(full)
    return names


def _seed_qualifications(
    con: sqlite3.Connection,
    rng: random.Random,
    employee_ids: Sequence[int],
    resource_ids: Sequence[int],
    second_probability: float,
) -> int:
    count = 0
    for idx, employee_id in enumerate(employee_ids):
        primary = resource_ids[idx % len(resource_ids)]
        store.insert_qualification(con, employee_id, primary)
        count += 1
        if len(resource_ids) > 1 and rng.random() < second_probability:
            others = [rid for rid in resource_ids if rid != primary]
            store.insert_qualification(con, employee_id, rng.choice(others))
            count += 1
    return count


def _seed_project(
    con: sqlite3.Connection,
    rng: random.Random,
    cfg: GenerationConfig,
    index: int,
    resource_ids: Sequence[int],
    counts: Dict[str, int],
) -> None:
    project_id = store.insert_project(
        con,
        f"{PROJECT_NAMES[index % len(PROJECT_NAMES)]} {index + 1}",
        PROJECT_COLORS[index % len(PROJECT_COLORS)],
    )
    counts["project"] += 1
    horizon_days = cfg.horizon_days()
    for n in range(_randint(rng, cfg.networks_per_project)):
        network_id = store.insert_network(con, project_id, f"{rng.choice(NETWORK_NAMES)} {n + 1}")
        counts["network"] += 1
        operation_ids: List[int] = []
        for o in range(_randint(rng, cfg.operations_per_network)):
            start = cfg.horizon_start + timedelta(days=rng.randrange(horizon_days))
            end = min(start + timedelta(days=_randint(rng, cfg.operation_span_days)), cfg.horizon_end)
            operation_ids.append(
                store.insert_operation(
                    con,
                    network_id,
                    f"{rng.choice(OPERATION_NAMES)} {o + 1}",
                    _randint(rng, cfg.demand_hours),
                    resource_ids[(o + n) % len(resource_ids)],
                    start,
                    end,
                )
            )
        counts["operation"] += len(operation_ids)
        for prev_id, op_id in zip(operation_ids, operation_ids[1:]):
            if rng.random() >= cfg.dependency_probability:
                continue
            try:
                store.add_dependency(con, op_id, prev_id)
            except store.DependencyOrderError:
                continue
            counts["operation_dependency"] += 1
    for m in range(_randint(rng, cfg.milestones_per_project)):
        due = cfg.horizon_start + timedelta(days=rng.randrange(horizon_days))
        store.insert_milestone(con, project_id, f"{rng.choice(MILESTONE_NAMES)} {m + 1}", due)
        counts["milestone"] += 1


def seed_catalog(con: sqlite3.Connection, cfg: GenerationConfig, rng: random.Random) -> Dict[str, int]:
    """Recreate the schema and fill the master data (no shifts, no assignments)."""
    store.reset_schema(con)
    counts: Dict[str, int] = {
        "resource": 0,
        "shift": 0,
        "employee": 0,
        "employee_qualification": 0,
        "project": 0,
        "network": 0,
        "operation": 0,
        "operation_dependency": 0,
        "milestone": 0,
    }
    resource_ids = [store.insert_resource(con, name) for name in RESOURCE_NAMES]
    counts["resource"] = len(resource_ids)
    for name, capacity, color in SHIFT_MODELS:
        store.insert_shift(con, name, capacity, color)
    counts["shift"] = len(SHIFT_MODELS)
    employee_ids = [store.insert_employee(con, name) for name in _unique_names(rng, cfg.num_employees)]
    counts["employee"] = len(employee_ids)
    counts["employee_qualification"] = _seed_qualifications(
        con, rng, employee_ids, resource_ids, cfg.second_qualification_probability
    )
    for index in range(cfg.num_projects):
        _seed_project(con, rng, cfg, index, resource_ids, counts)
    con.commit()
    logger.info(
        "catalog seeded: %s",
        ", ".join(f"{table}={count}" for table, count in counts.items()),
    )
    return counts
