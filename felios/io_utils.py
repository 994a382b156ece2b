from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import STRATEGIES, GenerationConfig

DEFAULT_HORIZON = (date(2025, 1, 1), date(2025, 12, 31))

_PROBABILITY_FIELDS = (
    "absence_probability",
    "utilization_cap",
    "operation_coverage",
    "second_qualification_probability",
    "dependency_probability",
)

_RANGE_FIELDS = (
    "networks_per_project",
    "operations_per_network",
    "milestones_per_project",
    "demand_hours",
    "operation_span_days",
)

_COUNT_FIELDS = ("num_projects", "num_employees")


def _parse_iso_date(value: object, field_name: str) -> date:
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"{field_name} must be a valid ISO date string") from exc


def _parse_probability(value: object, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number")
    result = float(value)
    if not (0 <= result <= 1):
        raise ValueError(f"{field_name} must be in [0, 1]")
    return result


def _parse_range(value: object, field_name: str) -> Tuple[int, int]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError(f"{field_name} must be a [min, max] pair")
    low, high = value
    if not all(isinstance(item, int) and not isinstance(item, bool) for item in (low, high)):
        raise ValueError(f"{field_name} bounds must be integers")
    if low < 0 or low > high:
        raise ValueError(f"{field_name} must satisfy 0 <= min <= max")
    return int(low), int(high)


def _parse_count(value: object, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{field_name} must be a non-negative integer")
    return int(value)


def config_from_dict(data: Dict[str, Any]) -> GenerationConfig:
    if not isinstance(data, dict):
        raise ValueError("configuration must be a JSON object")
    horizon_start = _parse_iso_date(data.get("horizon_start", DEFAULT_HORIZON[0].isoformat()), "horizon_start")
    horizon_end = _parse_iso_date(data.get("horizon_end", DEFAULT_HORIZON[1].isoformat()), "horizon_end")
    if horizon_end < horizon_start:
        raise ValueError("horizon_end must not be earlier than horizon_start")

    random_seed = data.get("random_seed")
    if random_seed is not None and (isinstance(random_seed, bool) or not isinstance(random_seed, int)):
        raise ValueError("random_seed must be an integer if provided")

    strategy = data.get("strategy", "employee")
    if strategy not in STRATEGIES:
        raise ValueError(f"strategy must be one of: {', '.join(STRATEGIES)}")

    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")

    options: Dict[str, Any] = {}
    for name in _PROBABILITY_FIELDS:
        if name in data:
            options[name] = _parse_probability(data[name], name)
    for name in _RANGE_FIELDS:
        if name in data:
            options[name] = _parse_range(data[name], name)
    for name in _COUNT_FIELDS:
        if name in data:
            options[name] = _parse_count(data[name], name)

    return GenerationConfig(
        horizon_start=horizon_start,
        horizon_end=horizon_end,
        random_seed=random_seed,
        strategy=strategy,
        logging_level=logging_level,
        **options,
    )


def default_config() -> GenerationConfig:
    return config_from_dict({})


def load_config(path: str | Path) -> GenerationConfig:
    try:
        data = json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"config file is not valid JSON: {exc}") from exc
    return config_from_dict(data)


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
