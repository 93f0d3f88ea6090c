"""Priority-ordered, non-blocking dispatch of event deliveries.

Tasks are registered by :class:`EventDispatcher`, held by priority tier in
:class:`TaskRegistry` and moved through their lifecycle by
:class:`DispatchEngine`, which retries failed deliveries with capped
exponential backoff until they complete, fail for good or get cancelled.
"""

from event_dispatch.dispatch.backoff import BackoffPolicy
from event_dispatch.dispatch.clock import Clock, ManualClock, SystemClock
from event_dispatch.dispatch.dispatcher import EventDispatcher
from event_dispatch.dispatch.engine import DispatchEngine
from event_dispatch.dispatch.errors import (
    DeliveryFailedError,
    DispatchError,
    DuplicateTaskIdError,
    MaxRetriesExceededError,
)
from event_dispatch.dispatch.models import (
    DispatchOutcome,
    DispatchSummary,
    DispatchTask,
    Priority,
    ScheduledEventInfo,
    TaskState,
)
from event_dispatch.dispatch.registry import TaskRegistry
from event_dispatch.dispatch.timers import TimerFacility, TimerHandle

__all__ = [
    "BackoffPolicy",
    "Clock",
    "DeliveryFailedError",
    "DispatchEngine",
    "DispatchError",
    "DispatchOutcome",
    "DispatchSummary",
    "DispatchTask",
    "DuplicateTaskIdError",
    "EventDispatcher",
    "ManualClock",
    "MaxRetriesExceededError",
    "Priority",
    "ScheduledEventInfo",
    "SystemClock",
    "TaskRegistry",
    "TaskState",
    "TimerFacility",
    "TimerHandle",
]
