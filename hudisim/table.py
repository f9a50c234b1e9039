"""Table facade: the in-process boundary of the engine.

Table wires a FileGroupStore, Timeline, PartitionRouter, WriteEngine,
TableServices and ReadResolver together and is the only object callers
need. All public operations take a single table-level lock, and every
mutating operation runs to completion before returning.

Inbound:
- commit(batch, op), commit_buffered(op), buffer_rows(), buffer_generate()
- schedule_compaction(), run_scheduled_compactions()
- clean_older_versions(keep), add_partition()
- set_write_mode(), set_dataset()

Outbound (read-only):
- list_file_groups(), list_timeline(limit), list_completed(), get_instant()
- read_snapshot(as_of), read_incremental(as_of), read(as_of), total_rows()
- preview_records(), check_consistency()

Observers registered with subscribe() receive a TableEvent after each
mutating operation that changed the table.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from hudisim.clock import (
    Clock,
    IdGenerator,
    InstantTimeGenerator,
    RandomIdGenerator,
    SystemClock,
)
from hudisim.dataset import Dataset, create_dataset
from hudisim.filegroup import FileGroup, FileGroupStore
from hudisim.reader import ReadResolver, ReadResult
from hudisim.router import PartitionRouter
from hudisim.services import CleanResult, CompactionResult, TableServices
from hudisim.timeline import Instant, InstantType, Row, Timeline
from hudisim.writer import CommitResult, OperationKind, WriteEngine, WriteMode

logger = logging.getLogger(__name__)

DEFAULT_PARTITIONS = ("p0", "p1")


@dataclass(frozen=True)
class TableEvent:
    """Notification sent to observers after a table change."""
    kind: str                          # commit | schedule_compaction | compaction | clean | add_partition | write_mode | dataset
    instant_time: Optional[str] = None


Listener = Callable[[TableEvent], None]


class IngestBuffer:
    """Rows waiting to be committed.

    Owned by the table's caller side: filling it never touches file
    groups or the timeline.
    """

    def __init__(self):
        self._rows: List[Row] = []

    def __len__(self) -> int:
        return len(self._rows)

    def extend(self, rows: Iterable[Row]) -> None:
        self._rows.extend(rows)

    def drain(self) -> List[Row]:
        """Remove and return every buffered row."""
        rows, self._rows = self._rows, []
        return rows

    def peek(self) -> Tuple[Row, ...]:
        return tuple(self._rows)


class Table:
    """A simulated CoW/MoR table.

    Usage:
        table = Table(dataset="retail", write_mode="mor")
        table.buffer_generate(25)
        table.commit_buffered(op="insert")
        table.schedule_compaction()
        table.run_scheduled_compactions()
        rows = table.read_snapshot()
    """

    def __init__(
        self,
        dataset: str | Dataset = "nycTaxi",
        write_mode: str | WriteMode = WriteMode.MERGE_ON_READ,
        initial_partitions: Sequence[str] = DEFAULT_PARTITIONS,
        clock: Optional[Clock] = None,
        ids: Optional[IdGenerator] = None,
        rng: Optional[np.random.RandomState] = None,
    ):
        self._lock = threading.RLock()
        self._clock = clock if clock is not None else SystemClock()
        self._rng = rng if rng is not None else np.random.RandomState()
        self._ids = ids if ids is not None else RandomIdGenerator(self._rng)
        self._mode = WriteMode.parse(write_mode)
        self._dataset = self._make_dataset(dataset)

        self._instant_times = InstantTimeGenerator(self._clock)
        self._timeline = Timeline()
        self._store = FileGroupStore(self._clock, self._ids)
        self._router = PartitionRouter(self._store, self._dataset.partition_by)
        self._writer = WriteEngine(self._store, self._timeline, self._router,
                                   self._instant_times)
        self._services = TableServices(self._store, self._timeline, self._instant_times)
        self._reader = ReadResolver()
        self._buffer = IngestBuffer()
        self._listeners: List[Listener] = []

        for partition in initial_partitions:
            self._store.create_file_group(partition)

    # -- Configuration --

    @property
    def write_mode(self) -> WriteMode:
        return self._mode

    @property
    def dataset(self) -> Dataset:
        return self._dataset

    @property
    def clock(self) -> Clock:
        return self._clock

    def set_write_mode(self, mode: str | WriteMode) -> None:
        """Switch storage mode for subsequent commits and services.

        Existing file groups are left exactly as they are.
        """
        new_mode = WriteMode.parse(mode)
        with self._lock:
            if new_mode == self._mode:
                return
            logger.info(f"Write mode {self._mode.value} -> {new_mode.value}")
            self._mode = new_mode
        self._notify(TableEvent("write_mode"))

    def set_dataset(self, dataset: str | Dataset) -> None:
        """Switch the dataset used to generate and route subsequent rows."""
        with self._lock:
            self._dataset = self._make_dataset(dataset)
            self._router.partition_by = self._dataset.partition_by
        self._notify(TableEvent("dataset"))

    def _make_dataset(self, dataset: str | Dataset) -> Dataset:
        if isinstance(dataset, Dataset):
            return dataset
        return create_dataset(dataset, rng=self._rng, clock=self._clock)

    # -- Observers --

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: TableEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)

    # -- Ingest buffer --

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def buffer_rows(self, rows: Iterable[Row]) -> None:
        with self._lock:
            self._buffer.extend(rows)

    def buffer_generate(self, n: int) -> int:
        """Generate n rows from the active dataset into the buffer."""
        with self._lock:
            rows = self._dataset.generate(n)
            self._buffer.extend(rows)
            return len(rows)

    def buffered_rows(self) -> Tuple[Row, ...]:
        with self._lock:
            return self._buffer.peek()

    # -- Writes --

    def commit(
        self,
        batch: Iterable[Row],
        op: str | OperationKind = OperationKind.UPSERT,
    ) -> Optional[CommitResult]:
        """Commit a batch of rows. Returns None for an empty batch."""
        operation = OperationKind.parse(op)
        with self._lock:
            result = self._writer.commit(batch, self._mode, operation)
        if result is not None:
            self._notify(TableEvent("commit", result.instant_time))
        return result

    def commit_buffered(
        self,
        op: str | OperationKind = OperationKind.UPSERT,
    ) -> Optional[CommitResult]:
        """Commit everything in the ingest buffer and leave it empty.

        If a row cannot be routed the buffer is left intact and the error
        propagates.
        """
        operation = OperationKind.parse(op)
        with self._lock:
            rows = self._buffer.peek()
            result = self._writer.commit(rows, self._mode, operation)
            self._buffer.drain()
        if result is not None:
            self._notify(TableEvent("commit", result.instant_time))
        return result

    # -- Table services --

    def schedule_compaction(self) -> Optional[Instant]:
        with self._lock:
            instant = self._services.schedule_compaction(self._mode)
        if instant is not None:
            self._notify(TableEvent("schedule_compaction", instant.instant_time))
        return instant

    def run_scheduled_compactions(self) -> Optional[CompactionResult]:
        with self._lock:
            result = self._services.run_scheduled_compactions(self._mode)
        if result is not None:
            self._notify(TableEvent("compaction", result.compaction_time))
        return result

    def clean_older_versions(self, keep: int = 1) -> CleanResult:
        with self._lock:
            result = self._services.clean_older_versions(keep)
        self._notify(TableEvent("clean", result.instant.instant_time))
        return result

    def add_partition(self) -> FileGroup:
        with self._lock:
            group = self._services.add_partition()
        self._notify(TableEvent("add_partition"))
        return group

    # -- Queries --

    def list_file_groups(self) -> List[FileGroup]:
        with self._lock:
            return self._store.list_groups()

    def list_timeline(self, limit: Optional[int] = None) -> List[Instant]:
        """Newest-first instants."""
        with self._lock:
            return self._timeline.list_recent(limit)

    def list_completed(self) -> List[Instant]:
        """Newest-first completed instants (candidate as-of points)."""
        with self._lock:
            return self._timeline.list_completed()

    def latest_completed_time(self) -> Optional[str]:
        completed = self.list_completed()
        return completed[0].instant_time if completed else None

    def get_instant(self, instant_time: str) -> Instant:
        """Raises InstantNotFoundError for an unknown instant time."""
        with self._lock:
            return self._timeline.find(instant_time)

    def read_snapshot(self, as_of: Optional[str] = None) -> int:
        with self._lock:
            return self._reader.snapshot(self._store.list_groups(), self._mode, as_of)

    def read_incremental(self, as_of: Optional[str] = None) -> int:
        with self._lock:
            return self._reader.incremental(self._store.list_groups(), as_of)

    def read(self, as_of: Optional[str] = None) -> ReadResult:
        with self._lock:
            return self._reader.read(self._store.list_groups(), self._mode, as_of)

    def total_rows(self) -> int:
        """Rows physically stored: every retained base plus every delta row count."""
        with self._lock:
            return sum(
                sum(b.row_count for b in g.base_files) + g.delta_rows
                for g in self._store.list_groups()
            )

    def preview_records(
        self,
        instant_time: str,
        limit: int = 200,
    ) -> Tuple[Tuple[Row, ...], int]:
        """First ``limit`` records written by an instant, plus the total written."""
        instant = self.get_instant(instant_time)
        return instant.written_records[:max(limit, 0)], len(instant.written_records)

    def check_consistency(self) -> List[str]:
        """Slices whose instant time has no matching completed instant.

        A write slice must match a COMPLETED commit/deltacommit; a
        compacted base slice must match the completion_time of a
        COMPLETED compaction. Returns a list of problems (empty if
        consistent).
        """
        with self._lock:
            write_times = set()
            compaction_times = set()
            for instant in self._timeline.list_completed():
                if instant.type.is_write:
                    write_times.add(instant.instant_time)
                elif instant.type == InstantType.COMPACTION:
                    compaction_times.add(instant.completion_time)
            problems = []
            for group in self._store.list_groups():
                for s in group.slices():
                    if s.instant_time not in write_times | compaction_times:
                        problems.append(
                            f"{group.id}: slice {s.id} at {s.instant_time} "
                            f"has no completed instant"
                        )
            return problems
