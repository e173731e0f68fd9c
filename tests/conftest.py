from __future__ import annotations

from typing import Any

import pytest

from memorybilliards.config import SimulationConfig


def make_config(**sections: dict[str, Any]) -> SimulationConfig:
    """Small, fast configuration; keyword arguments override whole-section keys."""
    data: dict[str, dict[str, Any]] = {
        "table": {"preset": "unit-square"},
        "memory": {"resolution": 32},
        "integrator": {"step_size": 0.01, "max_steps": 1000},
        "trap": {"enabled": False},
        "accumulator": {"width": 64, "height": 64},
        "run": {"trajectories": 1, "seed": 0, "workers": 1},
        "output": {"path": None},
    }
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    return SimulationConfig.from_dict(data)


@pytest.fixture
def config_factory():
    return make_config
