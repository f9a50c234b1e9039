"""Write engine: the commit algorithm for CoW and MoR tables.

A commit records one instant on the timeline and mutates every file
group that received rows:

- COPY_ON_WRITE: each touched group gets one new base slice whose row
  count is the previous base plus the rows routed to it; its delta
  slices are cleared.
- MERGE_ON_READ: each touched group gets one new delta slice holding the
  rows routed to it; base slices are untouched.

Rows are counted, not merged by key, so the operation kind is recorded
on the instant but does not change what is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from hudisim.clock import InstantTimeGenerator
from hudisim.filegroup import FileGroupStore, FileSlice
from hudisim.router import PartitionRouter
from hudisim.timeline import (
    Instant,
    InstantState,
    InstantType,
    Row,
    Timeline,
    freeze_rows,
)

logger = logging.getLogger(__name__)


class WriteMode(Enum):
    """Table storage type."""
    COPY_ON_WRITE = "cow"
    MERGE_ON_READ = "mor"

    @property
    def commit_type(self) -> InstantType:
        """Instant type a write produces in this mode."""
        if self == WriteMode.MERGE_ON_READ:
            return InstantType.DELTA_COMMIT
        return InstantType.COMMIT

    @classmethod
    def parse(cls, value) -> WriteMode:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"write mode must be one of {[m.value for m in cls]}, got {value!r}"
            ) from None


class OperationKind(Enum):
    """Write operation kind. Recorded as metadata only."""
    UPSERT = "upsert"
    INSERT = "insert"

    @classmethod
    def parse(cls, value) -> OperationKind:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"operation must be one of {[o.value for o in cls]}, got {value!r}"
            ) from None


@dataclass(frozen=True)
class CommitResult:
    """Outcome of a successful commit."""
    instant: Instant
    rows_per_group: Tuple[Tuple[str, int], ...]   # (group_id, rows) in routing order
    slices: Tuple[FileSlice, ...]                 # Slices written, one per group

    @property
    def instant_time(self) -> str:
        return self.instant.instant_time

    @property
    def groups_touched(self) -> int:
        return len(self.rows_per_group)


class WriteEngine:
    """Applies commits to a FileGroupStore and records them on a Timeline."""

    def __init__(
        self,
        store: FileGroupStore,
        timeline: Timeline,
        router: PartitionRouter,
        instant_times: InstantTimeGenerator,
    ):
        self._store = store
        self._timeline = timeline
        self._router = router
        self._instant_times = instant_times

    def commit(
        self,
        batch: Iterable[Row],
        mode: WriteMode,
        operation: OperationKind = OperationKind.UPSERT,
    ) -> Optional[CommitResult]:
        """Commit a batch of rows.

        Args:
            batch: Rows to write. Copied before anything else happens.
            mode: Storage mode in effect for this commit.
            operation: Recorded on the instant (notes and operation).

        Returns:
            CommitResult, or None for an empty batch (no instant is created).

        Raises:
            UnroutableRowError: A row has no partition. Raised before the
                instant is created, so the table is unchanged.
        """
        written = freeze_rows(batch)
        if not written:
            logger.debug("Empty batch; nothing to commit")
            return None

        partitions = self._router.partition_batch(written)

        instant_time = self._instant_times.next()
        self._timeline.append(Instant(
            instant_time=instant_time,
            type=mode.commit_type,
            record_count=len(written),
            notes=operation.value,
            written_records=written,
            operation=operation.value,
        ))
        self._timeline.transition(instant_time, InstantState.INFLIGHT)

        counts = self._router.assign(partitions)
        slices = [
            self._apply(group_id, rows, mode, instant_time)
            for group_id, rows in counts.items()
        ]

        completed = self._timeline.transition(instant_time, InstantState.COMPLETED)
        logger.debug(
            f"{instant_time} {completed.type.value} wrote {len(written)} rows "
            f"to {len(counts)} file groups ({operation.value})"
        )
        return CommitResult(
            instant=completed,
            rows_per_group=tuple(counts.items()),
            slices=tuple(slices),
        )

    def _apply(
        self,
        group_id: str,
        rows: int,
        mode: WriteMode,
        instant_time: str,
    ) -> FileSlice:
        if mode == WriteMode.COPY_ON_WRITE:
            entry = self._store.append_base(group_id, rows, instant_time)
            self._store.clear_deltas(group_id)
        else:
            entry = self._store.append_delta(group_id, rows, instant_time)
        return entry
