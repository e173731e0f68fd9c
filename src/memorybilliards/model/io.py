"""
Input/Output Manager (HDF5)
Saves and loads density-map checkpoints to .h5 files.

Layout:
    /density                 float64 (ny, nx), gzip
    /density.attrs           grid (origin, cell size, shape), splat, records
    /trajectories/*          per-trajectory steps, collisions, outcome flags
    /.attrs                  version, config_json, summary numbers
"""
from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
from importlib.metadata import version, PackageNotFoundError
from typing import Any, Dict, Optional, Sequence, TYPE_CHECKING

import h5py
import numpy as np

from memorybilliards.model.accumulator import Accumulator
from memorybilliards.model.grid import GridSpec

if TYPE_CHECKING:
    from memorybilliards.config import SimulationConfig
    from memorybilliards.solvers.simulation import SimulationResult

logger = logging.getLogger(__name__)

try:
    APP_VERSION = version("memorybilliards")
except PackageNotFoundError:
    APP_VERSION = "0.0.0-dev"


@dataclass
class Checkpoint:
    accumulator: Accumulator
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def config(self) -> Optional[Dict[str, Any]]:
        return self.metadata.get("config")


class IOManager:

    @staticmethod
    def save_checkpoint(
        filepath: str | os.PathLike,
        accumulator: Accumulator,
        result: Optional[SimulationResult] = None,
        config: Optional[SimulationConfig] = None,
    ) -> None:
        logger.info(f"Saving checkpoint to: {filepath}")
        try:
            with h5py.File(filepath, "w") as f:
                f.attrs["version"] = APP_VERSION

                dset = f.create_dataset("density", data=np.asarray(accumulator.snapshot()), compression="gzip")
                for key, val in accumulator.grid.to_attrs().items():
                    dset.attrs[key] = val
                dset.attrs["splat"] = str(accumulator.splat)
                dset.attrs["records"] = accumulator.records

                if config is not None:
                    f.attrs["config_json"] = json.dumps(config.to_dict())

                if result is not None:
                    f.attrs["interrupted"] = result.interrupted
                    f.attrs["failed"] = result.failed
                    f.attrs["trap_rate"] = result.trap_rate
                    f.attrs["wall_seconds"] = result.wall_seconds

                    trajectories = result.trajectories
                    grp = f.create_group("trajectories")
                    grp.create_dataset("index", data=np.array([r.index for r in trajectories], dtype=np.int64))
                    grp.create_dataset("steps", data=np.array([r.steps for r in trajectories], dtype=np.int64))
                    grp.create_dataset("collisions", data=np.array([r.collisions for r in trajectories], dtype=np.int64))
                    grp.create_dataset("trapped", data=np.array([r.trapped for r in trajectories], dtype=bool))
                    grp.create_dataset("failed", data=np.array([r.failed for r in trajectories], dtype=bool))

            logger.info(f"Checkpoint saved ({accumulator.records} records).")

        except Exception as e:
            logger.exception(f"Failed to save checkpoint: {e}")
            raise

    @staticmethod
    def load_checkpoint(filepath: str | os.PathLike) -> Checkpoint:
        logger.info(f"Loading checkpoint from: {filepath}")
        if not h5py.is_hdf5(filepath):
            msg = f"File '{filepath}' is not a valid HDF5 file."
            logger.error(msg)
            raise ValueError(msg)

        with h5py.File(filepath, "r") as f:
            if "density" not in f:
                raise ValueError(f"File '{filepath}' has no density map.")
            dset = f["density"]
            grid = GridSpec.from_attrs(dset.attrs)
            splat = dset.attrs.get("splat", "nearest")
            if isinstance(splat, bytes):
                splat = splat.decode("utf-8")
            accumulator = Accumulator.from_array(
                grid, dset[()], splat=str(splat), records=int(dset.attrs.get("records", 0))
            )

            metadata: Dict[str, Any] = {}
            for key, val in f.attrs.items():
                # HDF5 often saves as numpy types, convert to native python
                if isinstance(val, bytes):
                    val = val.decode("utf-8")
                elif hasattr(val, "item"):
                    val = val.item()
                metadata[key] = val
            if "config_json" in metadata:
                metadata["config"] = json.loads(metadata.pop("config_json"))
            if "trajectories" in f:
                metadata["trajectories"] = {name: f["trajectories"][name][()] for name in f["trajectories"]}

        logger.debug(f"Loaded {grid.nx} x {grid.ny} density map with {accumulator.records} records.")
        return Checkpoint(accumulator=accumulator, metadata=metadata)

    @staticmethod
    def merge_checkpoints(filepaths: Sequence[str | os.PathLike]) -> Accumulator:
        """Sum the density maps of several checkpoints taken on the same grid."""
        if not filepaths:
            raise ValueError("No checkpoints to merge.")
        merged: Optional[Accumulator] = None
        for path in filepaths:
            acc = IOManager.load_checkpoint(path).accumulator
            if merged is None:
                merged = acc
            else:
                merged.merge(acc)
        logger.info(f"Merged {len(filepaths)} checkpoints ({merged.records} records).")
        return merged


save_checkpoint = IOManager.save_checkpoint
load_checkpoint = IOManager.load_checkpoint
merge_checkpoints = IOManager.merge_checkpoints
