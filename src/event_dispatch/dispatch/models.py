"""Domain models for the dispatch engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4

UNNAMED_EVENT = "Unnamed event"


class Priority(IntEnum):
    """Scheduling preference tiers; higher values are preferred."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def coerce(cls, value: object) -> Priority:
        """Normalize any input to a tier; unknown values become NORMAL."""

        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.NORMAL
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return cls.NORMAL
        if isinstance(value, float) and value.is_integer():
            return cls.coerce(int(value))
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized in cls.__members__:
                return cls[normalized]
            if normalized.lstrip("-").isdigit():
                return cls.coerce(int(normalized))
        return cls.NORMAL


class TaskState(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED})


def new_task_id() -> str:
    return f"evt_{uuid4().hex[:16]}"


def new_batch_id() -> str:
    return f"batch_{uuid4().hex[:16]}"


def describe_payload(payload: object) -> str:
    """Display name for diagnostics; the only place a payload is inspected."""

    if isinstance(payload, Mapping):
        title = payload.get("title")
        if isinstance(title, str) and title:
            return title
    return UNNAMED_EVENT


@dataclass(slots=True)
class DispatchTask:
    """One delivery of one payload, tracked until it reaches a terminal state."""

    task_id: str
    payload: Any
    scheduled_at: datetime
    priority: Priority = Priority.NORMAL
    marker: str | None = None
    state: TaskState = TaskState.PENDING
    attempt: int = 0
    batch_id: str | None = None
    dispatch_at: datetime | None = None
    last_error: str | None = None

    @property
    def display_name(self) -> str:
        return describe_payload(self.payload)


@dataclass(slots=True)
class ScheduledEventInfo:
    """Read model for a task still waiting for its dispatch time."""

    task_id: str
    payload: Any
    marker: str | None
    priority: Priority
    dispatch_at: datetime
    time_remaining: float
    batch_id: str | None = None

    @property
    def priority_name(self) -> str:
        return self.priority.label

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.payload,
            "marker": self.marker,
            "priority": int(self.priority),
            "priority_name": self.priority_name,
            "dispatch_at": self.dispatch_at.isoformat(),
            "time_remaining": self.time_remaining,
            "batch_id": self.batch_id,
        }


@dataclass(slots=True)
class DispatchOutcome:
    """Terminal report for one task, handed to outcome listeners."""

    task_id: str
    state: TaskState
    attempts: int
    priority: Priority
    marker: str | None = None
    batch_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class DispatchSummary:
    """Aggregate engine counters for CLI reporting.

    Counters only; per-task results go to outcome listeners.
    """

    submitted: int = 0
    delivered: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    cancelled: int = 0
    discarded: int = 0
    timers_fired: int = 0

    def merge(self, other: DispatchSummary) -> None:
        self.submitted += other.submitted
        self.delivered += other.delivered
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.cancelled += other.cancelled
        self.discarded += other.discarded
        self.timers_fired += other.timers_fired
