"""Partition router: assigns incoming rows to file groups.

The router derives a partition identifier for each row with the active
dataset's partition function and resolves the owning file group,
creating groups for partitions it has not seen.

Routing is split in two steps so that a commit can fail on a bad row
before it touches any table state:
1. partition_batch(): pure, derives partition ids for every row
2. assign(): resolves/creates groups and counts rows per group
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Sequence

from hudisim.filegroup import FileGroup, FileGroupStore
from hudisim.timeline import Row

logger = logging.getLogger(__name__)

PartitionFunction = Callable[[Row], str]


class UnroutableRowError(ValueError):
    """Raised when a row's partition identifier cannot be derived."""

    def __init__(self, row: Row, reason: str):
        self.row = row
        super().__init__(f"Cannot derive partition for row: {reason}")


class PartitionRouter:
    """Maps rows to file groups of one FileGroupStore."""

    def __init__(self, store: FileGroupStore, partition_by: PartitionFunction):
        self._store = store
        self._partition_by = partition_by

    @property
    def partition_by(self) -> PartitionFunction:
        return self._partition_by

    @partition_by.setter
    def partition_by(self, fn: PartitionFunction) -> None:
        self._partition_by = fn

    def partition_of(self, row: Row) -> str:
        """Partition identifier of one row.

        Raises:
            UnroutableRowError: If the partition function fails or does not
                produce a non-empty string.
        """
        try:
            partition = self._partition_by(row)
        except (KeyError, TypeError, AttributeError) as e:
            raise UnroutableRowError(row, f"{type(e).__name__}: {e}") from e
        if not isinstance(partition, str) or not partition:
            raise UnroutableRowError(row, f"got partition {partition!r}")
        return partition

    def partition_batch(self, rows: Sequence[Row]) -> List[str]:
        """Partition identifiers for a batch, in row order."""
        return [self.partition_of(r) for r in rows]

    def route(self, row: Row) -> FileGroup:
        """Resolve (or create) the file group for a single row."""
        return self._store.get(self._store.resolve(self.partition_of(row)))

    def assign(self, partitions: Sequence[str]) -> Dict[str, int]:
        """Resolve groups for pre-computed partitions and count rows per group.

        Each row contributes exactly one row to its group. The result is
        ordered by the first appearance of each group in the batch.
        """
        counts: Dict[str, int] = {}
        for partition in partitions:
            group_id = self._store.resolve(partition)
            counts[group_id] = counts.get(group_id, 0) + 1
        logger.debug(f"Routed {len(partitions)} rows to {len(counts)} file groups")
        return counts
