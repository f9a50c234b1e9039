"""Auto-ingestion simulation using SimPy.

Drives a Table the way a live demo would: a heartbeat buffers generated
rows, a committer periodically commits the buffer, and table services
run on their own intervals. Simulated time feeds the table's clock, so
instant times follow simulated wall-clock time and a seeded run is
reproducible.

Key types:
- SimulationClock: Clock reading epoch + SimPy env.now
- SimulationConfig: Complete simulation configuration (frozen)
- Statistics: Counters (via table observer) and periodic samples
- Simulation: Main runner

The simulation runner is the ONLY place SimPy is used. The table itself
is synchronous: every process step calls one table operation, which
runs to completion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import simpy

from hudisim.clock import Clock
from hudisim.table import Table, TableEvent
from hudisim.writer import OperationKind

logger = logging.getLogger(__name__)

DEFAULT_EPOCH = datetime(2025, 8, 10, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class SimulationClock(Clock):
    """Wall clock derived from simulated time.

    Before a SimPy environment is attached the clock reads ``epoch``.
    """

    def __init__(self, epoch: datetime = DEFAULT_EPOCH):
        if epoch.tzinfo is None:
            epoch = epoch.replace(tzinfo=timezone.utc)
        self._epoch = epoch
        self._env: Optional[simpy.Environment] = None

    @property
    def epoch(self) -> datetime:
        return self._epoch

    def attach(self, env: simpy.Environment) -> None:
        self._env = env

    def now(self) -> datetime:
        elapsed = self._env.now if self._env is not None else 0.0
        return self._epoch + timedelta(milliseconds=elapsed)


# ---------------------------------------------------------------------------
# SimulationConfig
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SimulationConfig:
    """Complete simulation configuration.

    The table is fully constructed (with a SimulationClock) before the
    simulation starts. Intervals of 0 disable the corresponding process.
    """
    duration_ms: float
    seed: Optional[int]
    table: Table
    clock: SimulationClock

    # Ingestion
    auto_ingest: bool = True
    ingest_rate: int = 2
    tick_ms: float = 1000.0
    commit_interval_ms: float = 5000.0
    operation: OperationKind = OperationKind.UPSERT

    # Table services
    compaction_schedule_interval_ms: float = 0.0
    compaction_run_interval_ms: float = 0.0
    clean_interval_ms: float = 0.0
    clean_keep: int = 1


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

_SAMPLE_SCHEMA = pa.schema([
    ("sim_time_ms", pa.float64()),
    ("buffered", pa.int64()),
    ("snapshot_rows", pa.int64()),
    ("total_rows", pa.int64()),
    ("instants", pa.int64()),
    ("file_groups", pa.int64()),
])


class Statistics:
    """Collected simulation statistics.

    Counters are maintained from table events; samples are taken on
    every heartbeat tick.
    """

    def __init__(self, table: Table):
        self._table = table
        self.samples: list[dict] = []

        self.commits: int = 0
        self.rows_committed: int = 0
        self.compactions_scheduled: int = 0
        self.compaction_runs: int = 0
        self.cleans: int = 0
        self.partitions_added: int = 0

    def on_event(self, event: TableEvent) -> None:
        """Table observer callback."""
        if event.kind == "commit":
            self.commits += 1
            self.rows_committed += self._table.get_instant(event.instant_time).record_count
        elif event.kind == "schedule_compaction":
            self.compactions_scheduled += 1
        elif event.kind == "compaction":
            self.compaction_runs += 1
        elif event.kind == "clean":
            self.cleans += 1
        elif event.kind == "add_partition":
            self.partitions_added += 1

    def sample(self, sim_time_ms: float) -> None:
        self.samples.append({
            "sim_time_ms": float(sim_time_ms),
            "buffered": self._table.buffered,
            "snapshot_rows": self._table.read_snapshot(),
            "total_rows": self._table.total_rows(),
            "instants": len(self._table.list_timeline()),
            "file_groups": len(self._table.list_file_groups()),
        })

    def _to_arrow(self) -> pa.Table:
        arrays = {}
        for field in _SAMPLE_SCHEMA:
            arrays[field.name] = pa.array(
                [row[field.name] for row in self.samples],
                type=field.type,
            )
        return pa.table(arrays, schema=_SAMPLE_SCHEMA)

    def to_dataframe(self) -> pd.DataFrame:
        """Export samples to DataFrame for analysis."""
        if not self.samples:
            return pd.DataFrame()
        return self._to_arrow().to_pandas()

    def export_parquet(self, path: str) -> None:
        """Write samples to a parquet file (empty file with schema if none)."""
        pq.write_table(self._to_arrow(), path, compression="snappy")


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

class Simulation:
    """Main simulation runner.

    Usage:
        config = load_simulation_config("sim.toml")
        sim = Simulation(config)
        stats = sim.run()
        stats.export_parquet("samples.parquet")
    """

    def __init__(self, config: SimulationConfig):
        self._config = config
        self._table = config.table
        self._stats = Statistics(config.table)
        self._env: Optional[simpy.Environment] = None

    @property
    def table(self) -> Table:
        return self._table

    def run(
        self,
        progress: Optional[Callable[[float], None]] = None,
        steps: int = 100,
    ) -> Statistics:
        """Run the simulation and return collected statistics.

        Args:
            progress: Called with the simulated milliseconds advanced after
                each chunk of the run (for progress bars).
            steps: Number of chunks the run is split into.
        """
        cfg = self._config
        if cfg.duration_ms <= 0:
            return self._stats

        env = simpy.Environment()
        self._env = env
        cfg.clock.attach(env)
        unsubscribe = self._table.subscribe(self._stats.on_event)

        env.process(self._heartbeat(env))
        if cfg.commit_interval_ms > 0:
            env.process(self._periodic(env, cfg.commit_interval_ms, self._commit))
        if cfg.compaction_schedule_interval_ms > 0:
            env.process(self._periodic(env, cfg.compaction_schedule_interval_ms,
                                       self._table.schedule_compaction))
        if cfg.compaction_run_interval_ms > 0:
            env.process(self._periodic(env, cfg.compaction_run_interval_ms,
                                       self._table.run_scheduled_compactions))
        if cfg.clean_interval_ms > 0:
            env.process(self._periodic(env, cfg.clean_interval_ms, self._clean))

        try:
            chunk = max(cfg.duration_ms / max(steps, 1), 1.0)
            last = 0.0
            while last < cfg.duration_ms:
                until = min(last + chunk, cfg.duration_ms)
                env.run(until=until)
                if progress is not None:
                    progress(until - last)
                last = until
        finally:
            unsubscribe()

        logger.info(
            f"Simulated {cfg.duration_ms:.0f}ms: {self._stats.commits} commits, "
            f"{self._stats.rows_committed} rows, {self._stats.compaction_runs} compactions, "
            f"{self._stats.cleans} cleans"
        )
        return self._stats

    def _heartbeat(self, env: simpy.Environment) -> Generator:
        """Buffer generated rows every tick, then sample statistics."""
        while True:
            yield env.timeout(self._config.tick_ms)
            if self._config.auto_ingest and self._config.ingest_rate > 0:
                self._table.buffer_generate(self._config.ingest_rate)
            self._stats.sample(env.now)

    @staticmethod
    def _periodic(
        env: simpy.Environment,
        interval_ms: float,
        action: Callable[[], object],
    ) -> Generator:
        while True:
            yield env.timeout(interval_ms)
            action()

    def _commit(self) -> None:
        result = self._table.commit_buffered(self._config.operation)
        if result is not None:
            logger.debug(
                f"{self._env.now:.0f}ms commit {result.instant_time} "
                f"({result.instant.record_count} rows)"
            )

    def _clean(self) -> None:
        self._table.clean_older_versions(self._config.clean_keep)
