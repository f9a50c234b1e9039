#!/usr/bin/env python

import argparse
import logging
import sys
import tomllib
from collections import Counter

from tqdm import tqdm

from hudisim.config import (
    ConfigurationError,
    build_simulation_config,
    compute_config_hash,
)
from hudisim.simulation import Simulation
from hudisim.views import export_parquet

logger = logging.getLogger(__name__)


def print_summary(sim: Simulation) -> None:
    """Print table state after a run."""
    table = sim.table
    by_type = Counter(i.type.value for i in table.list_timeline())
    print("[Timeline]")
    for kind, count in sorted(by_type.items()):
        print(f"  {kind:<12} {count}")
    print("[File groups]")
    for group in table.list_file_groups():
        print(f"  {group.id:<6} {group.partition:<20} "
              f"base={len(group.base_files)} (rows {group.base_rows}) "
              f"delta={len(group.delta_files)} (rows {group.delta_rows})")
    print("[Reads]")
    print(f"  write mode     {table.write_mode.value}")
    print(f"  snapshot rows  {table.read_snapshot()}")
    print(f"  total rows     {table.total_rows()}")
    print(f"  buffered rows  {table.buffered}")


def cli():
    """CLI entry point for the table simulator."""
    parser = argparse.ArgumentParser(
        description="Copy-on-write / merge-on-read table simulator with timeline and time travel"
    )
    parser.add_argument(
        "config",
        nargs="?",
        default="sim.toml",
        help="Path to TOML configuration file (default: sim.toml)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all logging except errors"
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bar"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override simulation.seed"
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        help="Directory prefix for parquet output (samples, slices, timeline)"
    )
    args = parser.parse_args()

    # Setup logging
    if args.quiet:
        logging.basicConfig(level=logging.ERROR, format='%(levelname)s: %(message)s')
    elif args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO, format='%(message)s')

    with open(args.config, "rb") as f:
        raw = tomllib.load(f)

    try:
        config = build_simulation_config(raw, seed_override=args.seed)
    except ConfigurationError as e:
        print("Configuration validation failed:")
        for error in e.errors:
            print(f"  ✗ {error}")
        sys.exit(1)

    logger.info(f"Config hash: {compute_config_hash(raw)}")
    logger.info(f"Seed: {config.seed if config.seed is not None else 'random'}")

    sim = Simulation(config)
    show_progress = not args.no_progress and not args.verbose and not args.quiet
    if show_progress:
        with tqdm(total=config.duration_ms, unit='ms', unit_scale=True,
                  desc="Simulating", bar_format='{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]') as pbar:
            stats = sim.run(progress=pbar.update)
    else:
        stats = sim.run()

    if not args.quiet:
        print_summary(sim)

    if args.output:
        stats.export_parquet(f"{args.output}samples.parquet")
        export_parquet(sim.table, f"{args.output}slices.parquet",
                       f"{args.output}timeline.parquet")
        logger.info(f"Results exported with prefix {args.output}")


if __name__ == "__main__":
    cli()
