from __future__ import annotations

from datetime import date
from typing import Dict

import pytest

from felios import store
from felios.models import GenerationConfig

MONDAY = date(2025, 1, 6)
FRIDAY = date(2025, 1, 10)
NEXT_FRIDAY = date(2025, 1, 17)


@pytest.fixture
def con():
    connection = store.connect(":memory:")
    store.reset_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def shift_ids(con) -> Dict[str, int]:
    ids = {
        "early": store.insert_shift(con, "Frühschicht", 8, "#B0BEC5"),
        "late": store.insert_shift(con, "Spätschicht", 8, "#90A4AE"),
        "absent": store.insert_shift(con, "Abwesend", 0, "#CFD8DC"),
    }
    con.commit()
    return ids


@pytest.fixture
def network_id(con) -> int:
    project_id = store.insert_project(con, "Hydraulikpresse 1", "#1E88E5")
    nid = store.insert_network(con, project_id, "Vormontage 1")
    con.commit()
    return nid


@pytest.fixture
def small_config() -> GenerationConfig:
    return GenerationConfig(
        horizon_start=date(2025, 1, 1),
        horizon_end=date(2025, 3, 31),
        random_seed=7,
        num_projects=6,
        num_employees=12,
    )
