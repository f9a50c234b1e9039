"""Table timeline: the ordered log of instants.

Every write and table service is recorded as an Instant that moves
through REQUESTED -> INFLIGHT -> COMPLETED. The Timeline is the only
owner of instant state; callers receive frozen Instant values and ask
the Timeline to transition them.

Key types:
- InstantType: commit | deltacommit | compaction | clean
- InstantState: REQUESTED | INFLIGHT | COMPLETED
- Instant: Immutable instant record
- Timeline: Append-only log, mutable only by forward state transitions

Invariants:
- Instants are never deleted or reordered
- instant_time is unique per timeline
- State only moves one step forward at a time
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class InstantNotFoundError(KeyError):
    """Raised when an instant time is not on the timeline."""

    def __init__(self, instant_time: str):
        self.instant_time = instant_time
        super().__init__(f"No instant with time {instant_time!r} on the timeline")


class InvalidTransitionError(ValueError):
    """Raised for a state change that is not a single forward step."""
    pass


# ---------------------------------------------------------------------------
# Enums and data types
# ---------------------------------------------------------------------------

class InstantType(Enum):
    """Kind of action recorded by an instant."""
    COMMIT = "commit"
    DELTA_COMMIT = "deltacommit"
    COMPACTION = "compaction"
    CLEAN = "clean"

    @property
    def is_write(self) -> bool:
        return self in (InstantType.COMMIT, InstantType.DELTA_COMMIT)


class InstantState(Enum):
    """Instant lifecycle states, in order."""
    REQUESTED = "REQUESTED"
    INFLIGHT = "INFLIGHT"
    COMPLETED = "COMPLETED"

    @property
    def next(self) -> Optional[InstantState]:
        """The only state this one may transition to, or None."""
        return _NEXT_STATE[self]


_NEXT_STATE = {
    InstantState.REQUESTED: InstantState.INFLIGHT,
    InstantState.INFLIGHT: InstantState.COMPLETED,
    InstantState.COMPLETED: None,
}


Row = Mapping[str, Any]


@dataclass(frozen=True)
class Instant:
    """Immutable record of one timeline action.

    Attributes:
        instant_time: Fixed-width yyyyMMddHHmmssSSS string, unique per timeline
        type: What the action was
        state: Lifecycle state
        record_count: Rows written (0 for table services)
        notes: Free-form annotation (operation kind, "scheduled", ...)
        written_records: Read-only copies of the rows written
        operation: Write operation kind ("upsert"/"insert"), None for services
        completion_time: Time stamped on slices produced by a compaction pass
    """
    instant_time: str
    type: InstantType
    state: InstantState = InstantState.REQUESTED
    record_count: int = 0
    notes: Optional[str] = None
    written_records: Tuple[Row, ...] = ()
    operation: Optional[str] = None
    completion_time: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.state == InstantState.COMPLETED

    def with_state(self, state: InstantState, *, completion_time: Optional[str] = None) -> Instant:
        """Return copy in the given state."""
        if completion_time is None:
            return replace(self, state=state)
        return replace(self, state=state, completion_time=completion_time)


def freeze_rows(rows: Iterable[Row]) -> Tuple[Row, ...]:
    """Copy rows into read-only mappings.

    Later mutation of the caller's rows or list cannot reach the copy.
    """
    return tuple(MappingProxyType(dict(r)) for r in rows)


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

class Timeline:
    """Append-only log of instants, keyed by instant time.

    Instants are kept in creation order. Because instant times are issued
    by a strictly increasing generator, creation order and instant-time
    order agree; ordering queries nevertheless sort by instant_time,
    which is the relation as-of reads rely on.
    """

    def __init__(self):
        self._order: List[str] = []
        self._instants: dict[str, Instant] = {}

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, instant_time: str) -> bool:
        return instant_time in self._instants

    def append(self, instant: Instant) -> Instant:
        """Add a new instant. It must be in REQUESTED state."""
        if instant.instant_time in self._instants:
            raise InvalidTransitionError(
                f"Instant {instant.instant_time} already on the timeline"
            )
        if instant.state != InstantState.REQUESTED:
            raise InvalidTransitionError(
                f"New instants start REQUESTED, got {instant.state.value}"
            )
        self._order.append(instant.instant_time)
        self._instants[instant.instant_time] = instant
        logger.debug(f"{instant.instant_time} {instant.type.value} REQUESTED")
        return instant

    def transition(
        self,
        instant_time: str,
        new_state: InstantState,
        *,
        completion_time: Optional[str] = None,
    ) -> Instant:
        """Move an instant one step forward.

        Only the state changes, plus completion_time when moving to
        COMPLETED. Every other field is fixed when the instant is appended.

        Raises:
            InstantNotFoundError: Unknown instant_time.
            InvalidTransitionError: new_state is not the next state, or a
                completion_time is given for any other state.
        """
        current = self.find(instant_time)
        if current.state.next != new_state:
            raise InvalidTransitionError(
                f"Instant {instant_time}: cannot go from "
                f"{current.state.value} to {new_state.value}"
            )
        if completion_time is None:
            updated = current.with_state(new_state)
        elif new_state == InstantState.COMPLETED:
            updated = current.with_state(new_state, completion_time=completion_time)
        else:
            raise InvalidTransitionError(
                f"Instant {instant_time}: completion_time only set on COMPLETED"
            )
        self._instants[instant_time] = updated
        logger.debug(f"{instant_time} {updated.type.value} {new_state.value}")
        return updated

    def find(self, instant_time: str) -> Instant:
        """Look up an instant by time.

        Raises:
            InstantNotFoundError: Unknown instant_time.
        """
        try:
            return self._instants[instant_time]
        except KeyError:
            raise InstantNotFoundError(instant_time) from None

    def list_recent(self, n: Optional[int] = None) -> List[Instant]:
        """Newest-first instants, at most n of them (all if n is None)."""
        ordered = self._sorted(reverse=True)
        return ordered if n is None else ordered[:max(n, 0)]

    def list_completed(self) -> List[Instant]:
        """Newest-first COMPLETED instants."""
        return [i for i in self._sorted(reverse=True) if i.is_completed]

    def list_all(self) -> List[Instant]:
        """Oldest-first instants."""
        return self._sorted(reverse=False)

    def pending(self, instant_type: InstantType) -> List[Instant]:
        """Oldest-first REQUESTED instants of a type."""
        return [
            i for i in self._sorted(reverse=False)
            if i.type == instant_type and i.state == InstantState.REQUESTED
        ]

    def _sorted(self, reverse: bool) -> List[Instant]:
        return sorted(
            (self._instants[t] for t in self._order),
            key=lambda i: i.instant_time,
            reverse=reverse,
        )
