"""Read resolver: row counts as of a point on the timeline.

A slice is visible as of ``as_of`` when as_of is None or
``slice.instant_time <= as_of``. Instant times are fixed width, so the
string comparison is chronological.

Snapshot reads:
- COPY_ON_WRITE: per group, the largest visible base row count (base
  counts are cumulative, so the newest visible base subsumes the rest).
- MERGE_ON_READ: the same base count plus the sum of visible delta rows.
Both are summed across groups.

Incremental reads are a simplified model: the delta rows whose instant
time is exactly ``as_of``. With no as_of the result is 0. This is not a
change-stream scan over a range of instants.

Reads are pure functions of store state and never raise for an as_of
that matches nothing; they return 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from hudisim.filegroup import FileGroup
from hudisim.writer import WriteMode


class ReadMode(Enum):
    SNAPSHOT = "snapshot"
    INCREMENTAL = "incremental"


@dataclass(frozen=True)
class ReadResult:
    """Both read modes evaluated at the same as_of."""
    as_of: Optional[str]
    snapshot_rows: int
    incremental_rows: int

    def rows(self, mode: ReadMode) -> int:
        if mode == ReadMode.INCREMENTAL:
            return self.incremental_rows
        return self.snapshot_rows


class ReadResolver:
    """Stateless row-count resolution over file group snapshots."""

    def snapshot(
        self,
        groups: Iterable[FileGroup],
        mode: WriteMode,
        as_of: Optional[str] = None,
    ) -> int:
        total = 0
        for group in groups:
            total += max(
                (b.row_count for b in group.base_files if b.visible_at(as_of)),
                default=0,
            )
            if mode == WriteMode.MERGE_ON_READ:
                total += sum(
                    d.row_count for d in group.delta_files if d.visible_at(as_of)
                )
        return total

    def incremental(
        self,
        groups: Iterable[FileGroup],
        as_of: Optional[str] = None,
    ) -> int:
        if as_of is None:
            return 0
        return sum(
            d.row_count
            for group in groups
            for d in group.delta_files
            if d.visible_at(as_of) and d.instant_time == as_of
        )

    def read(
        self,
        groups: Iterable[FileGroup],
        mode: WriteMode,
        as_of: Optional[str] = None,
    ) -> ReadResult:
        groups = list(groups)
        return ReadResult(
            as_of=as_of,
            snapshot_rows=self.snapshot(groups, mode, as_of),
            incremental_rows=self.incremental(groups, as_of),
        )
