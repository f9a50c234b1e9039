"""Configuration parsing and validation for the table simulator.

This module contains:
- load_simulation_config(): the single entry point for TOML configuration
- validate_config(): collects errors and warnings from a raw config dict
- compute_config_hash(): deterministic hash of config + simulator code
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import numpy as np
import tomllib

from hudisim.clock import RandomIdGenerator
from hudisim.dataset import DATASETS
from hudisim.simulation import DEFAULT_EPOCH, SimulationClock, SimulationConfig
from hudisim.table import DEFAULT_PARTITIONS, Table
from hudisim.writer import OperationKind, WriteMode

logger = logging.getLogger(__name__)

# numpy RandomState accepts seeds in [0, 2**32)
_SEED_LIMIT = 2**32


# ---------------------------------------------------------------------------
# Configuration error
# ---------------------------------------------------------------------------

class ConfigurationError(Exception):
    """Fatal configuration error(s)."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("\n".join(errors))


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_simulation_config(
    config_path: str,
    *,
    seed_override: int | None = None,
) -> SimulationConfig:
    """Load simulation configuration from a TOML file.

    All parameters are validated before anything is constructed.

    Args:
        config_path: Path to TOML configuration file.
        seed_override: If provided, overrides the seed in the config file.

    Returns:
        SimulationConfig with a freshly built Table.

    Raises:
        ConfigurationError: If validation finds any errors.
    """
    with open(config_path, "rb") as f:
        raw = tomllib.load(f)
    return build_simulation_config(raw, seed_override=seed_override)


def build_simulation_config(
    raw: dict,
    *,
    seed_override: int | None = None,
) -> SimulationConfig:
    """Validate a parsed config dict and build the SimulationConfig."""
    if seed_override is not None:
        raw = dict(raw)
        raw["simulation"] = dict(raw.get("simulation", {}), seed=seed_override)

    errors, warnings = validate_config(raw)
    if errors:
        raise ConfigurationError(errors)
    for warning in warnings:
        logger.warning(warning)

    sim_cfg = raw.get("simulation", {})
    table_cfg = raw.get("table", {})
    ingest_cfg = raw.get("ingest", {})
    services_cfg = raw.get("services", {})

    seed = sim_cfg.get("seed")
    rng = np.random.RandomState(seed) if seed is not None else np.random.RandomState()
    id_rng = np.random.RandomState((seed + 1) % _SEED_LIMIT) if seed is not None else None
    clock = SimulationClock(_parse_epoch(sim_cfg.get("epoch")))

    table = Table(
        dataset=table_cfg.get("dataset", "nycTaxi"),
        write_mode=table_cfg.get("write_mode", "mor"),
        initial_partitions=tuple(table_cfg.get("initial_partitions", DEFAULT_PARTITIONS)),
        clock=clock,
        ids=RandomIdGenerator(id_rng),
        rng=rng,
    )

    return SimulationConfig(
        duration_ms=float(sim_cfg.get("duration_ms", 60_000)),
        seed=seed,
        table=table,
        clock=clock,
        auto_ingest=ingest_cfg.get("auto", True),
        ingest_rate=ingest_cfg.get("rate", 2),
        tick_ms=float(ingest_cfg.get("tick_ms", 1000)),
        commit_interval_ms=float(ingest_cfg.get("commit_interval_ms", 5000)),
        operation=OperationKind.parse(ingest_cfg.get("operation", "upsert")),
        compaction_schedule_interval_ms=float(
            services_cfg.get("compaction_schedule_interval_ms", 0)),
        compaction_run_interval_ms=float(
            services_cfg.get("compaction_run_interval_ms", 0)),
        clean_interval_ms=float(services_cfg.get("clean_interval_ms", 0)),
        clean_keep=services_cfg.get("clean_keep", 1),
    )


def _parse_epoch(value) -> datetime:
    if value is None:
        return DEFAULT_EPOCH
    if isinstance(value, datetime):
        epoch = value
    else:
        epoch = datetime.fromisoformat(str(value))
    if epoch.tzinfo is None:
        epoch = epoch.replace(tzinfo=timezone.utc)
    return epoch


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def compute_config_hash(config: dict) -> str:
    """Compute deterministic hash of config + simulator code.

    The seed is excluded so that runs differing only by seed share a
    hash; any change to hudisim/*.py changes it.

    Returns:
        8-character hex hash string
    """
    config_for_hash = dict(config)
    if "seed" in config_for_hash.get("simulation", {}):
        config_for_hash["simulation"] = dict(config_for_hash["simulation"])
        del config_for_hash["simulation"]["seed"]

    config_str = json.dumps(config_for_hash, sort_keys=True, default=str)

    code_hash = hashlib.sha256()
    for py_file in sorted(Path(__file__).parent.glob("*.py")):
        with open(py_file, "rb") as f:
            code_hash.update(f.read())

    combined = hashlib.sha256()
    combined.update(config_str.encode("utf-8"))
    combined.update(code_hash.digest())
    return combined.hexdigest()[:8]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: dict) -> tuple[list[str], list[str]]:
    """Validate configuration and return errors/warnings.

    Returns:
        (errors, warnings) where:
        - errors: List of fatal configuration errors
        - warnings: List of non-fatal warnings
    """
    errors = []
    warnings = []

    # Simulation section
    sim = config.get("simulation", {})
    duration = sim.get("duration_ms", 60_000)
    if not _is_number(duration) or duration <= 0:
        errors.append(f"simulation.duration_ms must be > 0, got {duration!r}")
    seed = sim.get("seed")
    if seed is not None and (not isinstance(seed, int) or isinstance(seed, bool)
                             or not 0 <= seed < _SEED_LIMIT):
        errors.append(f"simulation.seed must be an integer in [0, 2**32), got {seed!r}")
    epoch = sim.get("epoch")
    if epoch is not None and not isinstance(epoch, datetime):
        try:
            datetime.fromisoformat(str(epoch))
        except ValueError:
            errors.append(f"simulation.epoch must be an ISO-8601 datetime, got {epoch!r}")

    # Table section
    table = config.get("table", {})
    dataset = table.get("dataset", "nycTaxi")
    if dataset not in DATASETS:
        errors.append(f"table.dataset must be one of {sorted(DATASETS)}, got '{dataset}'")
    write_mode = table.get("write_mode", "mor")
    valid_modes = [m.value for m in WriteMode]
    if str(write_mode).lower() not in valid_modes:
        errors.append(f"table.write_mode must be one of {valid_modes}, got '{write_mode}'")
    partitions = table.get("initial_partitions", list(DEFAULT_PARTITIONS))
    if not isinstance(partitions, list) or not all(
        isinstance(p, str) and p for p in partitions
    ):
        errors.append("table.initial_partitions must be a list of non-empty strings")
    elif len(set(partitions)) != len(partitions):
        errors.append(f"table.initial_partitions has duplicates: {partitions}")

    # Ingest section
    ingest = config.get("ingest", {})
    rate = ingest.get("rate", 2)
    if not isinstance(rate, int) or isinstance(rate, bool) or rate < 0:
        errors.append(f"ingest.rate must be an integer >= 0, got {rate!r}")
    tick = ingest.get("tick_ms", 1000)
    if not _is_number(tick) or tick <= 0:
        errors.append(f"ingest.tick_ms must be > 0, got {tick!r}")
    commit_interval = ingest.get("commit_interval_ms", 5000)
    if not _is_number(commit_interval) or commit_interval < 0:
        errors.append(f"ingest.commit_interval_ms must be >= 0, got {commit_interval!r}")
    operation = ingest.get("operation", "upsert")
    valid_ops = [o.value for o in OperationKind]
    if str(operation).lower() not in valid_ops:
        errors.append(f"ingest.operation must be one of {valid_ops}, got '{operation}'")
    if ingest.get("auto", True) and commit_interval == 0:
        warnings.append("ingest.commit_interval_ms = 0: rows will be buffered but never committed")

    # Services section
    services = config.get("services", {})
    for key in ("compaction_schedule_interval_ms", "compaction_run_interval_ms",
                "clean_interval_ms"):
        value = services.get(key, 0)
        if not _is_number(value) or value < 0:
            errors.append(f"services.{key} must be >= 0, got {value!r}")
    keep = services.get("clean_keep", 1)
    if not isinstance(keep, int) or isinstance(keep, bool) or keep < 0:
        errors.append(f"services.clean_keep must be an integer >= 0, got {keep!r}")
    elif keep == 0 and services.get("clean_interval_ms", 0):
        warnings.append("services.clean_keep = 0 discards every base file on each clean")

    compacting = (services.get("compaction_schedule_interval_ms", 0)
                  or services.get("compaction_run_interval_ms", 0))
    if compacting and str(write_mode).lower() == WriteMode.COPY_ON_WRITE.value:
        warnings.append("compaction intervals are ignored for copy-on-write tables")
    if (services.get("compaction_schedule_interval_ms", 0)
            and not services.get("compaction_run_interval_ms", 0)):
        warnings.append("compactions are scheduled but never run (compaction_run_interval_ms = 0)")

    return errors, warnings
