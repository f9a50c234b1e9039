"""File group store: the partitioned physical layout of a table.

A file group belongs to one partition and holds two ordered sequences of
file slices: base files (cumulative row counts, one per version) and
delta files (per-write row counts). The store exclusively owns all file
groups. Callers only ever see frozen FileGroup snapshots and address
groups by id.

Key types (public):
- SliceKind: base | delta
- FileSlice: Immutable base or delta entry
- FileGroup: Immutable snapshot of one file group
- FileGroupStore: Owner of all file groups

Internal types (not exposed outside the store):
- _MutableFileGroup
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from hudisim.clock import Clock, IdGenerator

logger = logging.getLogger(__name__)


class FileGroupNotFoundError(KeyError):
    """Raised when a file group id is not in the store."""

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"No file group {group_id!r}")


# ---------------------------------------------------------------------------
# Core data types
# ---------------------------------------------------------------------------

class SliceKind(Enum):
    BASE = "base"
    DELTA = "delta"


@dataclass(frozen=True)
class FileSlice:
    """Immutable base or delta file entry.

    Base slices record the cumulative row count of the group as of their
    version; delta slices record only the rows of their own write.
    """
    id: str
    version: int
    row_count: int
    created_at: datetime
    instant_time: str

    def visible_at(self, as_of: Optional[str]) -> bool:
        """Whether this slice is part of the table as of an instant time."""
        return as_of is None or self.instant_time <= as_of


@dataclass(frozen=True)
class FileGroup:
    """Immutable snapshot of a file group."""
    id: str
    partition: str
    base_files: Tuple[FileSlice, ...] = ()
    delta_files: Tuple[FileSlice, ...] = ()

    @property
    def latest_base(self) -> Optional[FileSlice]:
        return self.base_files[-1] if self.base_files else None

    @property
    def base_rows(self) -> int:
        """Row count of the latest base (0 if none)."""
        latest = self.latest_base
        return latest.row_count if latest is not None else 0

    @property
    def delta_rows(self) -> int:
        return sum(d.row_count for d in self.delta_files)

    def slices(self) -> Tuple[FileSlice, ...]:
        return self.base_files + self.delta_files


# ---------------------------------------------------------------------------
# Internal mutable group state (held by the store, never exposed)
# ---------------------------------------------------------------------------

class _MutableFileGroup:
    """Internal mutable file group. Not exposed outside FileGroupStore."""
    __slots__ = ("id", "partition", "base_files", "delta_files")

    def __init__(self, group_id: str, partition: str):
        self.id = group_id
        self.partition = partition
        self.base_files: List[FileSlice] = []
        self.delta_files: List[FileSlice] = []

    def next_version(self, kind: SliceKind) -> int:
        files = self.base_files if kind == SliceKind.BASE else self.delta_files
        return files[-1].version + 1 if files else 1

    def base_rows(self) -> int:
        return self.base_files[-1].row_count if self.base_files else 0

    def to_snapshot(self) -> FileGroup:
        return FileGroup(
            id=self.id,
            partition=self.partition,
            base_files=tuple(self.base_files),
            delta_files=tuple(self.delta_files),
        )


# ---------------------------------------------------------------------------
# FileGroupStore
# ---------------------------------------------------------------------------

class FileGroupStore:
    """Partitioned collection of file groups.

    Groups are kept in insertion order, which is the iteration order of
    commits and table services. No group is ever removed.

    Mutations:
    - create_file_group(): new empty group
    - append_base() / append_delta(): add one slice to a group
    - clear_deltas(): drop a group's delta slices
    - retain_base(): keep a subset of a group's base slices
    """

    def __init__(self, clock: Clock, ids: IdGenerator):
        self._clock = clock
        self._ids = ids
        self._groups: Dict[str, _MutableFileGroup] = {}
        self._by_partition: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._groups)

    # -- Queries (return snapshots) --

    def list_groups(self) -> List[FileGroup]:
        """Snapshots of every group, in insertion order."""
        return [g.to_snapshot() for g in self._groups.values()]

    def get(self, group_id: str) -> FileGroup:
        return self._get(group_id).to_snapshot()

    def has_partition(self, partition: str) -> bool:
        return partition in self._by_partition

    # -- Mutations --

    def create_file_group(self, partition: str) -> FileGroup:
        """Register a new, empty file group for a partition."""
        group = _MutableFileGroup(self._ids.file_group_id(), partition)
        self._groups[group.id] = group
        # The first group created for a partition owns it for routing
        self._by_partition.setdefault(partition, group.id)
        logger.debug(f"Created file group {group.id} for partition {partition}")
        return group.to_snapshot()

    def resolve(self, partition: str) -> str:
        """Id of the group owning ``partition``, creating one if unseen."""
        group_id = self._by_partition.get(partition)
        if group_id is None:
            group_id = self.create_file_group(partition).id
        return group_id

    def append_base(self, group_id: str, added_rows: int, instant_time: str) -> FileSlice:
        """Add a base slice whose row count is the previous base plus added_rows."""
        group = self._get(group_id)
        entry = self._new_slice(group, SliceKind.BASE,
                                group.base_rows() + added_rows, instant_time)
        group.base_files.append(entry)
        return entry

    def append_delta(self, group_id: str, rows: int, instant_time: str) -> FileSlice:
        """Add a delta slice holding ``rows`` rows."""
        group = self._get(group_id)
        entry = self._new_slice(group, SliceKind.DELTA, rows, instant_time)
        group.delta_files.append(entry)
        return entry

    def clear_deltas(self, group_id: str) -> int:
        """Remove all delta slices of a group; returns how many were removed."""
        group = self._get(group_id)
        removed = len(group.delta_files)
        group.delta_files = []
        return removed

    def retain_base(self, group_id: str, keep_ids: frozenset[str]) -> int:
        """Keep only the base slices whose ids are in keep_ids.

        Retained slices stay in version order. Returns how many slices
        were discarded.
        """
        group = self._get(group_id)
        before = len(group.base_files)
        group.base_files = [b for b in group.base_files if b.id in keep_ids]
        return before - len(group.base_files)

    # -- Internal --

    def _get(self, group_id: str) -> _MutableFileGroup:
        try:
            return self._groups[group_id]
        except KeyError:
            raise FileGroupNotFoundError(group_id) from None

    def _new_slice(
        self,
        group: _MutableFileGroup,
        kind: SliceKind,
        row_count: int,
        instant_time: str,
    ) -> FileSlice:
        if row_count < 0:
            raise ValueError(f"row_count must be >= 0, got {row_count}")
        return FileSlice(
            id=self._ids.file_slice_id(kind.value, group.id, instant_time),
            version=group.next_version(kind),
            row_count=row_count,
            created_at=self._clock.now(),
            instant_time=instant_time,
        )
