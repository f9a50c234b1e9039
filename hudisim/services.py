"""Table services: compaction, cleaning and partition creation.

Compaction and cleaning are recorded as timeline instants just like
writes. Every service either applies fully or, when it is not allowed
in the current write mode, does nothing at all.

- schedule_compaction(): MoR only. Records a REQUESTED compaction.
- run_scheduled_compactions(): MoR only. One merge pass over all file
  groups satisfies every pending compaction request.
- clean_older_versions(keep): keeps the newest ``keep`` base slices of
  each file group. Delta slices are never cleaned.
- add_partition(): new empty file group, no instant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from hudisim.clock import InstantTimeGenerator
from hudisim.filegroup import FileGroup, FileGroupStore
from hudisim.timeline import Instant, InstantState, InstantType, Timeline
from hudisim.writer import WriteMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompactionResult:
    """Outcome of running scheduled compactions."""
    instants: Tuple[Instant, ...]             # Compaction instants completed
    compaction_time: str                      # Instant time of the merged base slices
    merged: Tuple[Tuple[str, int], ...]       # (group_id, delta rows merged)

    @property
    def rows_merged(self) -> int:
        return sum(rows for _, rows in self.merged)


@dataclass(frozen=True)
class CleanResult:
    """Outcome of a clean."""
    instant: Instant
    keep: int
    removed: Tuple[Tuple[str, int], ...]      # (group_id, base slices discarded)

    @property
    def slices_removed(self) -> int:
        return sum(n for _, n in self.removed)


class TableServices:
    """Runs table services against a store and timeline."""

    def __init__(
        self,
        store: FileGroupStore,
        timeline: Timeline,
        instant_times: InstantTimeGenerator,
    ):
        self._store = store
        self._timeline = timeline
        self._instant_times = instant_times

    # -- Compaction --

    def schedule_compaction(self, mode: WriteMode) -> Optional[Instant]:
        """Request a compaction. Ignored unless the table is MoR."""
        if mode != WriteMode.MERGE_ON_READ:
            logger.debug(f"Compaction not available in {mode.value} mode; ignored")
            return None
        return self._timeline.append(Instant(
            instant_time=self._instant_times.next(),
            type=InstantType.COMPACTION,
            notes="scheduled",
        ))

    def run_scheduled_compactions(self, mode: WriteMode) -> Optional[CompactionResult]:
        """Execute every pending compaction request in a single merge pass.

        For each file group with delta slices, a new base slice is added
        holding the previous base rows plus all delta rows, and the deltas
        are cleared. All base slices written by the pass share one fresh
        instant time, which is stamped on each completed compaction
        instant as its completion_time.

        Returns:
            CompactionResult, or None if not MoR or nothing is pending.
        """
        if mode != WriteMode.MERGE_ON_READ:
            logger.debug(f"Compaction not available in {mode.value} mode; ignored")
            return None
        pending = self._timeline.pending(InstantType.COMPACTION)
        if not pending:
            logger.debug("No scheduled compactions to run")
            return None

        for instant in pending:
            self._timeline.transition(instant.instant_time, InstantState.INFLIGHT)

        compaction_time = self._instant_times.next()
        merged: List[Tuple[str, int]] = []
        for group in self._store.list_groups():
            if not group.delta_files:
                continue
            delta_rows = group.delta_rows
            self._store.append_base(group.id, delta_rows, compaction_time)
            self._store.clear_deltas(group.id)
            merged.append((group.id, delta_rows))

        completed = tuple(
            self._timeline.transition(
                instant.instant_time,
                InstantState.COMPLETED,
                completion_time=compaction_time,
            )
            for instant in pending
        )
        result = CompactionResult(
            instants=completed,
            compaction_time=compaction_time,
            merged=tuple(merged),
        )
        logger.info(
            f"Compaction {compaction_time}: {len(completed)} request(s), "
            f"{result.rows_merged} delta rows merged into {len(merged)} file groups"
        )
        return result

    # -- Cleaning --

    def clean_older_versions(self, keep: int = 1) -> CleanResult:
        """Discard all but the ``keep`` most recently created base slices per group.

        Recency is by creation time, newest first, ties broken by version.
        Discarded slices are gone for good.

        Raises:
            ValueError: keep < 0.
        """
        if keep < 0:
            raise ValueError(f"keep must be >= 0, got {keep}")

        instant_time = self._instant_times.next()
        self._timeline.append(Instant(
            instant_time=instant_time,
            type=InstantType.CLEAN,
            notes=f"keep={keep}",
        ))
        self._timeline.transition(instant_time, InstantState.INFLIGHT)

        removed: List[Tuple[str, int]] = []
        for group in self._store.list_groups():
            if len(group.base_files) <= keep:
                continue
            newest = sorted(
                group.base_files,
                key=lambda b: (b.created_at, b.version),
                reverse=True,
            )[:keep]
            dropped = self._store.retain_base(group.id, frozenset(b.id for b in newest))
            removed.append((group.id, dropped))

        completed = self._timeline.transition(instant_time, InstantState.COMPLETED)
        result = CleanResult(instant=completed, keep=keep, removed=tuple(removed))
        logger.info(
            f"Clean {instant_time}: removed {result.slices_removed} base slices "
            f"from {len(removed)} file groups (keep={keep})"
        )
        return result

    # -- Partitions --

    def add_partition(self) -> FileGroup:
        """Create an empty file group under a fresh synthetic partition label."""
        n = len(self._store)
        while self._store.has_partition(f"p{n}"):
            n += 1
        return self._store.create_file_group(f"p{n}")
