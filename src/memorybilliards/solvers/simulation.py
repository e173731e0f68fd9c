"""
Simulation Runner
=================
Runs many independent trajectories and merges their density maps.

Everything a trajectory touches lives in a SimulationContext that is passed
explicitly, so several runs can coexist in one process.

Trajectory indices are split into contiguous chunks, one per worker. Every
chunk owns its own memory field and accumulator; chunk accumulators are merged
in chunk order once all workers finish. Each trajectory records into a scratch
accumulator that is merged into the chunk only if the trajectory succeeds, so
a failed trajectory contributes nothing.
"""
from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
import math
import time
from typing import Optional, Sequence

import numpy as np

from memorybilliards.config import SimulationConfig, StartConfig
from memorybilliards.errors import SimulationError
from memorybilliards.model.accumulator import Accumulator
from memorybilliards.model.boundary import Boundary, build_boundary
from memorybilliards.model.geometry_utils import deg2rad
from memorybilliards.model.grid import GridSpec
from memorybilliards.model.memory_field import MemoryField
from memorybilliards.solvers.integrator import Integrator, Particle, TrajectoryResult
from memorybilliards.utils import format_count, timer

logger = logging.getLogger(__name__)


@dataclass
class SimulationContext:
    config: SimulationConfig
    boundary: Boundary
    field: MemoryField
    accumulator: Accumulator


@dataclass
class SimulationResult:
    accumulator: Accumulator
    trajectories: list[TrajectoryResult] = field(default_factory=list)
    interrupted: bool = False
    wall_seconds: float = 0.0

    @property
    def failed(self) -> int:
        return sum(1 for r in self.trajectories if r.failed)

    @property
    def completed(self) -> int:
        return len(self.trajectories) - self.failed

    @property
    def trap_rate(self) -> float:
        """Fraction of completed trajectories that ended trapped (NaN if none completed)."""
        if self.completed == 0:
            return math.nan
        return sum(1 for r in self.trajectories if r.trapped) / self.completed


def memory_grid(boundary: Boundary, config: SimulationConfig) -> GridSpec:
    # One padding cell so the border gradient still sees the wall cells
    return GridSpec.fit_resolution(boundary.bounds, config.memory.resolution, pad_cells=1)


def accumulator_grid(boundary: Boundary, config: SimulationConfig) -> GridSpec:
    acfg = config.accumulator
    return GridSpec.fit(boundary.bounds, acfg.width, acfg.height, margin=acfg.margin)


def build_context(config: SimulationConfig, boundary: Optional[Boundary] = None) -> SimulationContext:
    """Boundary, memory field and accumulator for one run (or one worker)."""
    if boundary is None:
        boundary = build_boundary(config.table_outline())

    mcfg = config.memory
    step_size = config.integrator.step_size
    if step_size > 0.5 * boundary.min_feature_size:
        logger.warning(
            f"Step size {step_size} is large compared to the smallest boundary feature "
            f"({boundary.min_feature_size:.3g})."
        )

    memory = MemoryField(
        memory_grid(boundary, config),
        kernel=mcfg.kernel,
        kernel_radius=mcfg.kernel_radius,
        order=mcfg.order,
    )
    accumulator = Accumulator(accumulator_grid(boundary, config), splat=config.accumulator.splat)
    return SimulationContext(config=config, boundary=boundary, field=memory, accumulator=accumulator)


def initial_particle(boundary: Boundary, start: StartConfig, rng: np.random.Generator) -> Particle:
    """
    Starting state of a trajectory.

    A configured position or angle is used as is. Otherwise the position is
    drawn uniformly inside the table first, then the angle uniformly in
    [0, 2*pi).
    """
    if start.position is None:
        position = boundary.sample_interior(rng)
    else:
        position = (float(start.position[0]), float(start.position[1]))

    if start.angle_deg is None:
        angle = float(rng.uniform(0.0, 2.0 * math.pi))
    else:
        angle = deg2rad(start.angle_deg)
    return Particle.from_angle(position, angle)


@dataclass
class ChunkResult:
    chunk: int
    accumulator: Accumulator
    trajectories: list[TrajectoryResult]
    interrupted: bool = False


def run_chunk(
    config: SimulationConfig,
    chunk: int,
    indices: Sequence[int],
    seeds: Sequence[np.random.SeedSequence],
) -> ChunkResult:
    """
    Run a contiguous block of trajectories with one field/accumulator pair.

    Module-level so it can be sent to worker processes.
    """
    ctx = build_context(config)
    shared_memory = config.memory.mode == "shared"
    chunk_accumulator = ctx.accumulator
    scratch = Accumulator(chunk_accumulator.grid, splat=chunk_accumulator.splat)
    ctx.accumulator = scratch
    integrator = Integrator(ctx)

    results: list[TrajectoryResult] = []
    interrupted = False
    for index, seed in zip(indices, seeds):
        rng = np.random.default_rng(seed)
        saved_field = ctx.field.copy() if shared_memory else None
        if not shared_memory:
            ctx.field.reset()
        try:
            particle = initial_particle(ctx.boundary, config.run.start, rng)
            result = integrator.run(particle, index=index)
        except (SimulationError, ValueError) as e:
            # ValueError covers a start that cannot be sampled or is invalid
            logger.error(f"Trajectory {index} failed: {e}")
            result = TrajectoryResult(
                index=index,
                outcome=None,
                steps=getattr(e, "step", None) or 0,
                particle=getattr(e, "last_state", None),
                error=str(e),
            )
            if saved_field is not None:
                ctx.field.restore(saved_field)
        except KeyboardInterrupt:
            logger.warning(f"Interrupted during trajectory {index}; keeping {len(results)} finished trajectories.")
            interrupted = True
            break
        else:
            chunk_accumulator.merge(scratch)
        finally:
            scratch.reset()
        results.append(result)

    return ChunkResult(chunk=chunk, accumulator=chunk_accumulator, trajectories=results, interrupted=interrupted)


def _split(n: int, parts: int) -> list[list[int]]:
    return [[int(i) for i in block] for block in np.array_split(np.arange(n), parts) if len(block)]


@timer
def run_simulation(config: SimulationConfig, workers: Optional[int] = None) -> SimulationResult:
    """
    Run every configured trajectory and merge the density maps.

    Args:
        config: Validated run configuration.
        workers: Number of worker processes; defaults to `config.run.workers`.
            One worker runs inline in this process.

    Returns:
        The merged accumulator with per-trajectory results. On Ctrl+C the
        finished part of the run is returned with `interrupted` set.
    """
    config.validate()
    n = config.run.trajectories
    workers = max(1, min(workers or config.run.workers, n))

    seeds = np.random.SeedSequence(config.run.seed).spawn(n)
    chunks = _split(n, workers)

    boundary = build_boundary(config.table_outline())
    merged = Accumulator(accumulator_grid(boundary, config), splat=config.accumulator.splat)
    logger.info(
        f"Running {n} trajectories on {len(chunks)} worker(s): {boundary!r}, "
        f"step {config.integrator.step_size}, bias {config.integrator.bias}."
    )

    wall_start = time.perf_counter()
    chunk_results: list[ChunkResult] = []
    interrupted = False
    if len(chunks) == 1:
        chunk_results.append(run_chunk(config, 0, chunks[0], seeds))
    else:
        executor = ProcessPoolExecutor(max_workers=len(chunks))
        finished = False
        try:
            futures = {
                executor.submit(run_chunk, config, k, indices, [seeds[i] for i in indices]): k
                for k, indices in enumerate(chunks)
            }
            for future in as_completed(futures):
                chunk_result = future.result()
                chunk_results.append(chunk_result)
                logger.info(
                    f"Chunk {futures[future]} finished ({len(chunk_result.trajectories)} trajectories)."
                )
            finished = True
        except KeyboardInterrupt:
            logger.warning("Interrupted; merging the chunks that already finished.")
            interrupted = True
        finally:
            executor.shutdown(wait=finished, cancel_futures=not finished)

    trajectories: list[TrajectoryResult] = []
    for chunk_result in sorted(chunk_results, key=lambda c: c.chunk):
        merged.merge(chunk_result.accumulator)
        trajectories.extend(chunk_result.trajectories)
        interrupted = interrupted or chunk_result.interrupted

    result = SimulationResult(
        accumulator=merged,
        trajectories=trajectories,
        interrupted=interrupted,
        wall_seconds=time.perf_counter() - wall_start,
    )
    logger.info(
        f"Finished {len(trajectories)}/{n} trajectories ({format_count(merged.records)} recorded steps): "
        f"trap rate {result.trap_rate:.3f}, {result.failed} failed."
    )
    return result
