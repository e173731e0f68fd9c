"""Command-line interface."""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from memorybilliards import __version__
from memorybilliards.config import OutputConfig, SimulationConfig
from memorybilliards.logging_config import setup_logging
from memorybilliards.model.io import merge_checkpoints, save_checkpoint
from memorybilliards.model.tables import TABLE_CATALOG
from memorybilliards.solvers.simulation import run_simulation
from memorybilliards.view.renderer import render_density

logger = logging.getLogger("memorybilliards")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memorybilliards",
        description="Self-avoiding billiards: simulate memory-biased trajectories and render the density map.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")
    parser.add_argument("--log-file", help="Also write the log to this file.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a simulation from a JSON configuration.")
    run.add_argument("config", nargs="?", help="JSON configuration file. Defaults are used if omitted.")
    run.add_argument("--output", "-o", help="TIFF output path (overrides output.path).")
    run.add_argument("--checkpoint", help="HDF5 checkpoint path (overrides output.checkpoint).")
    run.add_argument("--preview", help="PNG preview path (overrides output.preview).")
    run.add_argument("--workers", type=int, help="Worker processes (overrides run.workers).")
    run.add_argument("--seed", type=int, help="Random seed (overrides run.seed).")
    run.add_argument("--trajectories", type=int, help="Number of trajectories (overrides run.trajectories).")
    run.add_argument("--table", help="Catalog table preset (overrides table).")

    merge = sub.add_parser("merge", help="Merge HDF5 checkpoints into one density map.")
    merge.add_argument("checkpoints", nargs="+", help="Checkpoint files taken on the same grid.")
    merge.add_argument("--output", "-o", required=True, help="TIFF output path.")
    merge.add_argument("--scale", choices=("log", "sqrt", "linear"), default="log")
    merge.add_argument("--smooth-sigma", type=float, default=0.0)
    merge.add_argument("--preview", help="PNG preview path.")
    merge.add_argument("--checkpoint", help="Save the merged map as a new checkpoint.")

    sub.add_parser("tables", help="List the table presets.")
    return parser


def _load_config(args: argparse.Namespace) -> SimulationConfig:
    config = SimulationConfig.from_json(args.config) if args.config else SimulationConfig()
    if args.table is not None:
        config.table.preset = args.table
        config.table.shape = None
    if args.output is not None:
        config.output.path = args.output
    if args.checkpoint is not None:
        config.output.checkpoint = args.checkpoint
    if args.preview is not None:
        config.output.preview = args.preview
    if args.workers is not None:
        config.run.workers = args.workers
    if args.seed is not None:
        config.run.seed = args.seed
    if args.trajectories is not None:
        config.run.trajectories = args.trajectories
    config.validate()
    return config


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_config(args)
    result = run_simulation(config)
    if result.interrupted:
        logger.warning("Run was interrupted; writing the partial density map.")

    if config.output.checkpoint:
        save_checkpoint(config.output.checkpoint, result.accumulator, result=result, config=config)
    render_density(result.accumulator.snapshot(), config.output)
    return 130 if result.interrupted else 0


def _cmd_merge(args: argparse.Namespace) -> int:
    merged = merge_checkpoints(args.checkpoints)
    if args.checkpoint:
        save_checkpoint(args.checkpoint, merged)
    output = OutputConfig(path=args.output, scale=args.scale, smooth_sigma=args.smooth_sigma, preview=args.preview)
    output.validate()
    render_density(merged.snapshot(), output)
    return 0


def _cmd_tables(args: argparse.Namespace) -> int:
    for name, outline in TABLE_CATALOG.items():
        params = list(outline.dimensions) if outline.vertices is None else f"{len(outline.vertices)} vertices"
        print(f"{name:<20} {outline.shape:<16} {params}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    match args.command:
        case "run":
            handler = _cmd_run
        case "merge":
            handler = _cmd_merge
        case _:
            handler = _cmd_tables

    try:
        return handler(args)
    except (ValueError, OSError) as e:
        logger.error(f"{e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
