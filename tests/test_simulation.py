import math

import numpy as np
import pytest

from conftest import make_config
from memorybilliards.config import StartConfig
from memorybilliards.errors import BoundaryError, GeometryError
from memorybilliards.model.boundary import build_boundary
from memorybilliards.model.tables import TABLE_CATALOG
from memorybilliards.solvers import simulation
from memorybilliards.solvers.integrator import Integrator, TrajectoryState
from memorybilliards.solvers.simulation import initial_particle, run_simulation


def _random_start_config(**overrides):
    sections = {
        "memory": {"decay_rate": 1.0, "resolution": 32},
        "integrator": {"step_size": 0.01, "bias": 0.2, "max_steps": 1500},
        "run": {"trajectories": 4, "seed": 11},
    }
    for name, values in overrides.items():
        sections.setdefault(name, {}).update(values)
    return make_config(**sections)


def test_fixed_seed_is_deterministic():
    config = _random_start_config()
    first = run_simulation(config, workers=1)
    second = run_simulation(config, workers=1)

    assert np.array_equal(first.accumulator.snapshot(), second.accumulator.snapshot())
    assert [r.particle for r in first.trajectories] == [r.particle for r in second.trajectories]
    assert first.failed == 0
    assert first.accumulator.records == 4 * 1500


def test_different_seeds_differ():
    a = run_simulation(_random_start_config(run={"seed": 1}), workers=1)
    b = run_simulation(_random_start_config(run={"seed": 2}), workers=1)
    assert not np.array_equal(a.accumulator.snapshot(), b.accumulator.snapshot())


def test_worker_chunks_merge_to_the_same_map():
    config = _random_start_config(run={"trajectories": 3})
    inline = run_simulation(config, workers=1)
    pooled = run_simulation(config, workers=2)

    assert [r.index for r in pooled.trajectories] == [0, 1, 2]
    assert [r.steps for r in pooled.trajectories] == [r.steps for r in inline.trajectories]
    assert np.allclose(pooled.accumulator.snapshot(), inline.accumulator.snapshot(), rtol=1e-12, atol=0.0)
    assert not pooled.interrupted


def test_failed_trajectory_is_isolated_and_discarded(monkeypatch):
    original_run = Integrator.run

    def flaky_run(self, particle, index=0):
        if index == 1:
            self.context.accumulator.record(particle.position, 1000.0)
            raise GeometryError("boom", last_state=particle, step=3)
        return original_run(self, particle, index)

    monkeypatch.setattr(Integrator, "run", flaky_run)
    result = run_simulation(_random_start_config(run={"trajectories": 3}), workers=1)

    assert len(result.trajectories) == 3
    assert result.failed == 1
    failed = result.trajectories[1]
    assert failed.outcome is None
    assert "boom" in failed.error
    assert failed.steps == 3
    assert failed.particle is not None

    # Only the two successful trajectories contribute
    successful_steps = sum(r.steps for r in result.trajectories if not r.failed)
    assert result.accumulator.total_weight == pytest.approx(successful_steps)


def test_unsampleable_start_does_not_stop_siblings(monkeypatch):
    calls = []
    original_initial_particle = simulation.initial_particle

    def flaky_initial_particle(boundary, start, rng):
        calls.append(1)
        if len(calls) == 2:
            raise BoundaryError("Could not sample an interior point in 0 attempts.")
        return original_initial_particle(boundary, start, rng)

    monkeypatch.setattr(simulation, "initial_particle", flaky_initial_particle)
    result = run_simulation(_random_start_config(run={"trajectories": 3}), workers=1)

    assert len(result.trajectories) == 3
    assert result.failed == 1
    failed = result.trajectories[1]
    assert "sample" in failed.error
    assert failed.steps == 0
    assert failed.particle is None
    assert result.accumulator.records == 2 * 1500


def test_shared_memory_field_is_restored_after_failure(monkeypatch):
    totals = []
    original_run = Integrator.run

    def flaky_run(self, particle, index=0):
        totals.append(self.context.field.total())
        if index == 1:
            self.context.field.deposit(particle.position, 1e6)
            raise GeometryError("boom", last_state=particle, step=0)
        return original_run(self, particle, index)

    monkeypatch.setattr(Integrator, "run", flaky_run)
    config = _random_start_config(
        memory={"mode": "shared", "decay_rate": 0.0},
        run={"trajectories": 3},
    )
    run_simulation(config, workers=1)

    # Trajectory 2 sees the field left by trajectory 0, not the failed deposit
    assert totals[0] == 0.0
    assert totals[2] == pytest.approx(totals[1])
    assert totals[2] < 1e6


def test_interrupt_returns_partial_result(monkeypatch):
    original_run = Integrator.run

    def interrupted_run(self, particle, index=0):
        if index == 2:
            raise KeyboardInterrupt
        return original_run(self, particle, index)

    monkeypatch.setattr(Integrator, "run", interrupted_run)
    result = run_simulation(_random_start_config(run={"trajectories": 4}), workers=1)

    assert result.interrupted
    assert len(result.trajectories) == 2
    assert result.accumulator.records == 2 * 1500


def test_trap_rate():
    result = simulation.SimulationResult(accumulator=None)
    assert math.isnan(result.trap_rate)

    config = make_config(
        table={"preset": None, "shape": "corridor", "dimensions": [10.0, 0.2]},
        memory={"kernel": "point", "resolution": 100},
        integrator={"step_size": 0.01, "bias": 0.0, "max_steps": 3000},
        trap={"enabled": True, "window": 800, "radius": 0.5, "check_interval": 50},
        accumulator={"width": 100, "height": 4, "margin": 0.0},
        run={"trajectories": 2, "start": {"position": [5.0, 0.1], "angle_deg": 90.0}},
    )
    result = run_simulation(config, workers=1)
    assert result.trap_rate == 1.0
    assert all(r.outcome == TrajectoryState.TRAPPED for r in result.trajectories)


def test_initial_particle():
    boundary = build_boundary(TABLE_CATALOG["bunimovich-stadium"])
    rng = np.random.default_rng(5)

    fixed = initial_particle(boundary, StartConfig(position=[0.5, 0.25], angle_deg=90.0), rng)
    assert fixed.position == (0.5, 0.25)
    assert fixed.direction == pytest.approx((0.0, 1.0))

    for _ in range(20):
        p = initial_particle(boundary, StartConfig(), rng)
        assert boundary.contains(p.position)
        assert math.hypot(p.dx, p.dy) == pytest.approx(1.0)


def test_build_context_grids():
    config = make_config(table={"preset": "bunimovich-stadium"}, memory={"resolution": 40})
    ctx = simulation.build_context(config)
    assert ctx.accumulator.grid.shape == (64, 64)
    # One padding cell on every side of the 40-cell table extent
    assert ctx.field.grid.nx == 42
    xmin, ymin, xmax, ymax = ctx.field.grid.bounds
    assert xmin < -2.0 and xmax > 2.0 and ymin < -1.0 and ymax > 1.0
