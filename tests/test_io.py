import numpy as np
import pytest

from conftest import make_config
from memorybilliards.model.accumulator import Accumulator
from memorybilliards.model.grid import GridSpec
from memorybilliards.model.io import IOManager, load_checkpoint, merge_checkpoints, save_checkpoint
from memorybilliards.solvers.simulation import run_simulation


@pytest.fixture
def grid():
    return GridSpec(origin_x=-1.0, origin_y=-0.5, cell_size=0.25, nx=8, ny=4)


def _filled(grid, positions, splat="nearest"):
    acc = Accumulator(grid, splat=splat)
    for position, weight in positions:
        acc.record(position, weight)
    return acc


def test_checkpoint_round_trip(tmp_path):
    config = make_config(run={"trajectories": 2}, integrator={"max_steps": 200})
    result = run_simulation(config, workers=1)
    path = tmp_path / "run.h5"

    save_checkpoint(path, result.accumulator, result=result, config=config)
    checkpoint = load_checkpoint(path)

    assert checkpoint.accumulator.grid == result.accumulator.grid
    assert checkpoint.accumulator.records == 400
    assert np.array_equal(checkpoint.accumulator.snapshot(), result.accumulator.snapshot())

    assert checkpoint.config == config.to_dict()
    assert checkpoint.metadata["failed"] == 0
    assert checkpoint.metadata["interrupted"] is False
    assert list(checkpoint.metadata["trajectories"]["steps"]) == [200, 200]
    assert list(checkpoint.metadata["trajectories"]["index"]) == [0, 1]


def test_checkpoint_without_result(tmp_path, grid):
    acc = _filled(grid, [((0.1, 0.1), 2.0)], splat="bilinear")
    path = tmp_path / "bare.h5"
    IOManager.save_checkpoint(path, acc)

    checkpoint = IOManager.load_checkpoint(path)
    assert checkpoint.config is None
    assert "trajectories" not in checkpoint.metadata
    assert checkpoint.accumulator.splat == "bilinear"
    assert checkpoint.accumulator.total_weight == pytest.approx(2.0)


def test_merge_checkpoints(tmp_path, grid):
    first = tmp_path / "a.h5"
    second = tmp_path / "b.h5"
    save_checkpoint(first, _filled(grid, [((0.1, 0.1), 1.0), ((0.9, 0.4), 2.0)]))
    save_checkpoint(second, _filled(grid, [((0.1, 0.1), 3.0)]))

    merged = merge_checkpoints([first, second])
    snap = merged.snapshot()
    row, col = grid.cell_index(0.1, 0.1)
    assert snap[row, col] == 4.0
    assert merged.records == 3
    assert merged.total_weight == pytest.approx(6.0)


def test_merge_rejects_mismatched_grids(tmp_path, grid):
    other = GridSpec(origin_x=-1.0, origin_y=-0.5, cell_size=0.25, nx=4, ny=4)
    save_checkpoint(tmp_path / "a.h5", Accumulator(grid))
    save_checkpoint(tmp_path / "b.h5", Accumulator(other))
    with pytest.raises(ValueError):
        merge_checkpoints([tmp_path / "a.h5", tmp_path / "b.h5"])


def test_merge_needs_files():
    with pytest.raises(ValueError):
        merge_checkpoints([])


def test_load_rejects_non_hdf5(tmp_path):
    path = tmp_path / "notes.h5"
    path.write_text("not a checkpoint")
    with pytest.raises(ValueError, match="HDF5"):
        load_checkpoint(path)
