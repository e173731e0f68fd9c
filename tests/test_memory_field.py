import math

import numpy as np
import pytest

from memorybilliards.model.grid import GridSpec
from memorybilliards.model.memory_field import MemoryField


@pytest.fixture
def grid():
    return GridSpec(origin_x=0.0, origin_y=0.0, cell_size=0.1, nx=20, ny=20)


def test_gaussian_deposit_conserves_mass(grid):
    field = MemoryField(grid, kernel="gaussian", kernel_radius=1.5)
    field.deposit((1.03, 0.97), 2.0)
    assert field.total() == pytest.approx(2.0, rel=1e-12)
    assert np.all(field.values >= 0.0)
    row, col = grid.cell_index(1.03, 0.97)
    assert field.values[row, col] == pytest.approx(field.max())


def test_gaussian_deposit_at_grid_edge_conserves_mass(grid):
    field = MemoryField(grid, kernel="gaussian", kernel_radius=2.0)
    field.deposit((0.01, 0.01), 1.0)
    assert field.total() == pytest.approx(1.0, rel=1e-12)


def test_point_deposit_hits_one_cell(grid):
    field = MemoryField(grid, kernel="point")
    field.deposit((0.55, 0.25), 3.0)
    values = field.values
    assert values[2, 5] == 3.0
    assert np.count_nonzero(values) == 1


def test_deposit_rejects_negative_amount(grid):
    field = MemoryField(grid)
    with pytest.raises(ValueError):
        field.deposit((1.0, 1.0), -1.0)
    with pytest.raises(ValueError):
        field.deposit((1.0, 1.0), math.nan)


def test_decay_is_monotone_and_converges(grid):
    field = MemoryField(grid, kernel="gaussian")
    field.deposit((1.0, 1.0), 5.0)
    field.deposit((0.4, 1.6), 1.0)

    previous = field.values
    for _ in range(100):
        field.decay(rate=1.0, dt=0.1)
        current = field.values
        assert np.all(current <= previous)
        assert np.all(current >= 0.0)
        previous = current

    assert field.total() == pytest.approx(6.0 * math.exp(-10.0), rel=1e-9)

    # Long decays go through the renormalization of the raw grid
    field.decay(rate=1.0, dt=300.0)
    field.decay(rate=1.0, dt=300.0)
    assert 0.0 <= field.max() < 1e-250
    field.decay(rate=1.0, dt=1e4)
    assert field.max() == 0.0


def test_decay_rejects_negative_rate(grid):
    with pytest.raises(ValueError):
        MemoryField(grid).decay(rate=-1.0, dt=1.0)


def test_deposit_after_renormalization_has_full_weight(grid):
    field = MemoryField(grid, kernel="point")
    field.deposit((1.0, 1.0), 1.0)
    for _ in range(4):
        field.decay(rate=1.0, dt=100.0)
    field.deposit((0.15, 0.15), 1.0)
    assert field.values[1, 1] == pytest.approx(1.0)


def test_step_order(grid):
    half_life = math.log(2.0)

    field = MemoryField(grid, kernel="point", order="decay_then_deposit")
    field.step((0.05, 0.05), 1.0, rate=half_life, dt=1.0)
    field.step((0.05, 0.05), 1.0, rate=half_life, dt=1.0)
    assert field.values[0, 0] == pytest.approx(1.5)

    field = MemoryField(grid, kernel="point", order="deposit_then_decay")
    field.step((0.05, 0.05), 1.0, rate=half_life, dt=1.0)
    field.step((0.05, 0.05), 1.0, rate=half_life, dt=1.0)
    assert field.values[0, 0] == pytest.approx(0.75)


def test_zero_field_has_zero_gradient(grid):
    field = MemoryField(grid)
    for p in [(1.0, 1.0), (0.0, 0.0), (1.99, 0.01), (-3.0, 5.0)]:
        assert field.gradient(p) == (0.0, 0.0)


def test_gradient_points_towards_deposit(grid):
    field = MemoryField(grid, kernel="gaussian", kernel_radius=1.5)
    field.deposit((1.0, 1.0), 1.0)

    gx, gy = field.gradient((1.25, 1.0))
    assert gx < 0.0
    assert abs(gy) < 1e-9 * abs(gx) + 1e-12

    gx, gy = field.gradient((1.0, 0.75))
    assert gy > 0.0


def test_gradient_is_clamped_outside_grid(grid):
    field = MemoryField(grid, kernel="gaussian")
    field.deposit((0.05, 0.05), 1.0)
    gx, gy = field.gradient((-5.0, -5.0))
    assert math.isfinite(gx) and math.isfinite(gy)
    assert (gx, gy) == field.gradient((0.0, 0.0))


def test_gradient_scales_with_decay(grid):
    field = MemoryField(grid, kernel="gaussian")
    field.deposit((1.0, 1.0), 1.0)
    before = field.gradient((1.2, 1.1))
    field.decay(rate=2.0, dt=0.5)
    after = field.gradient((1.2, 1.1))
    assert after[0] == pytest.approx(before[0] * math.exp(-1.0))
    assert after[1] == pytest.approx(before[1] * math.exp(-1.0))


def test_copy_and_restore(grid):
    field = MemoryField(grid, kernel="point")
    field.deposit((1.0, 1.0), 1.0)
    saved = field.copy()
    field.deposit((1.0, 1.0), 4.0)
    field.decay(1.0, 1.0)
    assert saved.total() == pytest.approx(1.0)

    field.restore(saved)
    assert np.array_equal(field.values, saved.values)

    field.reset()
    assert field.total() == 0.0
