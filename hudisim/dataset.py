"""Example datasets that supply rows to a table.

A Dataset knows how to generate fake rows and how to derive a partition
identifier from a row. The engine never looks inside rows otherwise.

Key types:
- Dataset: ABC with generate() and partition_by()
- NycTaxiDataset: trips partitioned by pickup date (dt=YYYY-MM-DD)
- RetailDataset: orders partitioned by region (region=EU, ...)
- GitHubEventsDataset: events partitioned by event date (dt=YYYY-MM-DD)
- create_dataset(): lookup by key
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional

import numpy as np

from hudisim.clock import Clock, SystemClock
from hudisim.timeline import Row

_DAY_MS = 24 * 3600 * 1000


class Dataset(ABC):
    """Schema-specific row generator and partition function."""

    #: Registry key (``[table] dataset`` in config)
    key: str = ""
    #: Human-readable name
    name: str = ""
    #: Field holding the unique record key
    record_key: str = ""

    def __init__(
        self,
        rng: Optional[np.random.RandomState] = None,
        clock: Optional[Clock] = None,
    ):
        self._rng = rng if rng is not None else np.random.RandomState()
        self._clock = clock if clock is not None else SystemClock()
        self._serial = 0

    @abstractmethod
    def partition_by(self, row: Row) -> str:
        """Derive the partition identifier of a row."""
        ...

    @abstractmethod
    def _make_row(self, index: int) -> Dict[str, Any]:
        ...

    def generate(self, n: int) -> List[Dict[str, Any]]:
        """Generate n fresh rows.

        Args:
            n: Number of rows, >= 0.
        """
        if n < 0:
            raise ValueError(f"n must be >= 0, got {n}")
        rows = [self._make_row(i) for i in range(n)]
        self._serial += 1
        return rows

    # -- helpers shared by concrete datasets --

    def _pick(self, choices: List[str]) -> str:
        return choices[self._rng.randint(0, len(choices))]

    def _unique_key(self, prefix: str, index: int) -> str:
        return f"{prefix}{self._clock.now_ms()}_{self._serial}_{index}_{self._rng.randint(1000, 10000)}"

    def _days_ago(self, max_days: int):
        offset = self._rng.randint(0, max_days + 1) * _DAY_MS
        return self._clock.now() - timedelta(milliseconds=int(offset))


class NycTaxiDataset(Dataset):
    """NYC taxi trips, partitioned by pickup date."""
    key = "nycTaxi"
    name = "NYC Taxi Trips"
    record_key = "trip_id"

    def partition_by(self, row: Row) -> str:
        return f"dt={row['pickup_date']}"

    def _make_row(self, index: int) -> Dict[str, Any]:
        pickup = self._days_ago(7)
        return {
            "trip_id": self._unique_key("t", index),
            "pickup_datetime": pickup.strftime("%Y-%m-%d %H:%M:%S"),
            "pickup_date": pickup.strftime("%Y-%m-%d"),
            "passenger_count": int(self._rng.randint(1, 6)),
            "total_amount": round(float(self._rng.uniform(3, 83)), 2),
            "vendor_id": self._pick(["CMT", "VTS"]),
        }


class RetailDataset(Dataset):
    """Retail orders, partitioned by region."""
    key = "retail"
    name = "Retail Orders"
    record_key = "order_id"

    REGIONS = ["US-EAST", "US-WEST", "EU", "APAC"]
    STATUSES = ["PENDING", "PAID", "SHIPPED", "CANCELLED"]

    def partition_by(self, row: Row) -> str:
        return f"region={row['region']}"

    def _make_row(self, index: int) -> Dict[str, Any]:
        return {
            "order_id": self._unique_key("o", index),
            "customer_id": f"c{self._rng.randint(1, 5001)}",
            "order_ts": self._clock.now().isoformat(),
            "amount": round(float(self._rng.uniform(5, 505)), 2),
            "status": self._pick(self.STATUSES),
            "region": self._pick(self.REGIONS),
        }


class GitHubEventsDataset(Dataset):
    """GitHub events, partitioned by event date."""
    key = "ghEvents"
    name = "GitHub Events"
    record_key = "event_id"

    TYPES = ["PushEvent", "PullRequestEvent", "IssueCommentEvent", "WatchEvent"]
    REPOS = ["apache/hudi", "vercel/next.js", "facebook/react", "pallets/flask", "numpy/numpy"]

    def partition_by(self, row: Row) -> str:
        return f"dt={row['date']}"

    def _make_row(self, index: int) -> Dict[str, Any]:
        return {
            "event_id": self._unique_key("e", index),
            "repo": self._pick(self.REPOS),
            "type": self._pick(self.TYPES),
            "actor": f"user{self._rng.randint(1, 2001)}",
            "date": self._days_ago(3).strftime("%Y-%m-%d"),
            "created_at": self._clock.now().isoformat(),
        }


DATASETS: Dict[str, type[Dataset]] = {
    cls.key: cls for cls in (NycTaxiDataset, RetailDataset, GitHubEventsDataset)
}


def create_dataset(
    key: str,
    rng: Optional[np.random.RandomState] = None,
    clock: Optional[Clock] = None,
) -> Dataset:
    """Construct a dataset by registry key."""
    try:
        cls = DATASETS[key]
    except KeyError:
        raise ValueError(
            f"Unknown dataset: {key!r}. Valid: {sorted(DATASETS)}"
        ) from None
    return cls(rng=rng, clock=clock)
