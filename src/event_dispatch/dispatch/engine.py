"""Dispatch loop that drives tasks from submission to a terminal state."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass

from event_dispatch.delivery.base import Delivery
from event_dispatch.dispatch.backoff import BackoffPolicy
from event_dispatch.dispatch.clock import Clock, SystemClock
from event_dispatch.dispatch.errors import DeliveryFailedError, MaxRetriesExceededError
from event_dispatch.dispatch.models import (
    DispatchOutcome,
    DispatchSummary,
    DispatchTask,
    Priority,
    TaskState,
)
from event_dispatch.dispatch.registry import TaskRegistry
from event_dispatch.dispatch.timers import TimerFacility, TimerHandle

logger = logging.getLogger(__name__)

OutcomeListener = Callable[[DispatchOutcome], None]

_WAITING_STATES = frozenset({TaskState.SCHEDULED, TaskState.RETRYING})


@dataclass(slots=True)
class _InFlight:
    task: DispatchTask
    future: Future | None = None


class DispatchEngine:
    """State machine over the task registry, timers and the delivery capability.

    Transitions:
    - pending -> in_flight when a delivery attempt starts (``attempt`` grows by one)
    - in_flight -> completed on a truthy result
    - in_flight -> retrying on a falsy result or an exception while
      ``attempt <= max_retries``; a backoff timer brings it back to pending
    - in_flight -> failed once the retry budget is spent
    - scheduled -> pending when its dispatch timer fires
    - any active state -> cancelled on explicit cancellation

    ``deliver`` may return a ``concurrent.futures.Future``; the task then stays
    in flight until a later :meth:`step` sees the future done. One re-entrant
    lock guards registry, timers and in-flight bookkeeping; ``deliver`` itself
    is called without holding it.
    """

    def __init__(  # noqa: PLR0913
        self,
        deliver: Delivery,
        *,
        clock: Clock | None = None,
        timers: TimerFacility | None = None,
        backoff: BackoffPolicy | None = None,
        registry: TaskRegistry | None = None,
        max_retries: int = 3,
        max_in_flight: int = 0,
    ) -> None:
        self._deliver = deliver
        self.clock = clock or SystemClock()
        self.timers = timers or TimerFacility(self.clock)
        self.backoff = backoff or BackoffPolicy()
        self.registry = registry or TaskRegistry()
        self.max_retries = max(max_retries, 0)
        self.max_in_flight = max(max_in_flight, 0)
        self.totals = DispatchSummary()
        self._lock = threading.RLock()
        self._armed: dict[str, TimerHandle] = {}
        self._in_flight: dict[str, _InFlight] = {}
        self._listeners: list[OutcomeListener] = []

    # -- submission -----------------------------------------------------------

    def submit(self, task: DispatchTask, *, delay_ms: float | None = None) -> None:
        """Register a task; with ``delay_ms`` it waits in scheduled state first."""

        with self._lock:
            self.registry.insert(task)
            self.totals.submitted += 1
            if delay_ms is None:
                task.state = TaskState.PENDING
                return
            task.state = TaskState.SCHEDULED
            self._arm(task, delay_ms, reason="scheduled")

    # -- loop -----------------------------------------------------------------

    def step(self) -> DispatchSummary:
        """Run one loop iteration: timers, finished futures, then ready tasks."""

        summary = DispatchSummary()
        try:
            with self._lock:
                summary.timers_fired = self.timers.fire_due()
                self._settle_finished_futures(summary)

            while True:
                with self._lock:
                    task = self._claim_next_ready()
                    if task is None:
                        break
                    summary.delivered += 1

                result = self._invoke(task)

                with self._lock:
                    if isinstance(result, Future):
                        self._track_future(task, result, summary)
                    else:
                        self._settle(task, result, summary)
                # The attempt is settled; interrupts such as CancelledError still propagate.
                if isinstance(result, BaseException) and not isinstance(result, Exception):
                    raise result
        finally:
            with self._lock:
                self.totals.merge(summary)
        return summary

    def _claim_next_ready(self) -> DispatchTask | None:
        if self.max_in_flight and len(self._in_flight) >= self.max_in_flight:
            return None
        for task in self.registry.iter_in_state(TaskState.PENDING):
            task.state = TaskState.IN_FLIGHT
            task.attempt += 1
            self._in_flight[task.task_id] = _InFlight(task=task)
            logger.debug(
                "Delivering %s (id=%s priority=%s attempt=%d)",
                task.display_name,
                task.task_id,
                task.priority.label,
                task.attempt,
            )
            return task
        return None

    def _invoke(self, task: DispatchTask) -> object:
        try:
            return self._deliver(task.payload)
        except BaseException as error:  # noqa: BLE001
            return error

    def _track_future(self, task: DispatchTask, future: Future, summary: DispatchSummary) -> None:
        entry = self._in_flight.get(task.task_id)
        if entry is None or entry.task is not task:
            summary.discarded += 1
            logger.debug("Task %s was cancelled while its delivery started", task.task_id)
            return
        entry.future = future

    def _settle_finished_futures(self, summary: DispatchSummary) -> None:
        for entry in list(self._in_flight.values()):
            if entry.future is None or not entry.future.done():
                continue
            self._settle(entry.task, _future_result(entry.future), summary)

    def _settle(self, task: DispatchTask, result: object, summary: DispatchSummary) -> None:
        entry = self._in_flight.get(task.task_id)
        if entry is None or entry.task is not task or task.state is not TaskState.IN_FLIGHT:
            summary.discarded += 1
            logger.debug("Discarding delivery result for cancelled task %s", task.task_id)
            return
        del self._in_flight[task.task_id]

        reason = _failure_reason(result)
        if reason is None:
            self._complete(task, summary)
        else:
            self._retry_or_fail(task, reason, summary)

    def _complete(self, task: DispatchTask, summary: DispatchSummary) -> None:
        self.registry.remove(task.task_id)
        task.state = TaskState.COMPLETED
        task.last_error = None
        summary.succeeded += 1
        logger.debug(
            "Event dispatched successfully: %s (id=%s priority=%s attempts=%d)",
            task.display_name,
            task.task_id,
            task.priority.label,
            task.attempt,
        )
        self._emit(task)

    def _retry_or_fail(self, task: DispatchTask, reason: str, summary: DispatchSummary) -> None:
        failure = DeliveryFailedError(task.task_id, task.attempt, reason)
        task.last_error = reason
        if task.attempt <= self.max_retries:
            delay_ms = self.backoff.delay_for(task.attempt - 1)
            task.state = TaskState.RETRYING
            self._arm(task, delay_ms, reason="retry")
            summary.retried += 1
            logger.warning("%s; retry %d in %.0fms", failure, task.attempt, delay_ms)
            return

        self.registry.remove(task.task_id)
        task.state = TaskState.FAILED
        summary.failed += 1
        error = MaxRetriesExceededError(task.task_id, task.attempt, reason)
        logger.warning("%s", error)
        self._emit(task, error=str(error))

    def _arm(self, task: DispatchTask, delay_ms: float, *, reason: str) -> None:
        def _fire() -> None:
            if self._armed.get(task.task_id) is handle:
                del self._armed[task.task_id]
            if self.registry.find(task.task_id) is not task or task.state not in _WAITING_STATES:
                return
            logger.debug("Task %s is ready after %s delay", task.task_id, reason)
            task.state = TaskState.PENDING

        handle = self.timers.after(delay_ms, _fire, label=f"{reason}:{task.task_id}")
        self._armed[task.task_id] = handle

    # -- cancellation ---------------------------------------------------------

    def cancel(self, task_id: str) -> bool:
        with self._lock:
            task = self.registry.remove(task_id)
            if task is None:
                logger.debug("Task %s not found for cancellation", task_id)
                return False
            self._finalize_cancelled(task)
            return True

    def cancel_scheduled(self, task_id: str) -> bool:
        with self._lock:
            task = self.registry.find(task_id)
            if task is None or task.state is not TaskState.SCHEDULED:
                logger.debug("Scheduled task %s not found for cancellation", task_id)
                return False
            self.registry.remove(task_id)
            self._finalize_cancelled(task)
            return True

    def cancel_by_marker(self, marker: str) -> int:
        with self._lock:
            removed = self.registry.remove_by_marker(marker)
            for task in removed:
                self._finalize_cancelled(task)
            logger.debug("Cancelled %d tasks with marker %s", len(removed), marker)
            return len(removed)

    def cancel_by_priority(self, priority: Priority) -> int:
        with self._lock:
            removed = self.registry.remove_by_priority(priority)
            for task in removed:
                self._finalize_cancelled(task)
            logger.debug("Cancelled %d tasks with priority %s", len(removed), priority.label)
            return len(removed)

    def cancel_all(self) -> int:
        with self._lock:
            removed = self.registry.remove_all()
            for task in removed:
                self._finalize_cancelled(task)
            if removed:
                logger.info("Cancelled all %d active tasks", len(removed))
            return len(removed)

    def _finalize_cancelled(self, task: DispatchTask) -> None:
        handle = self._armed.pop(task.task_id, None)
        if handle is not None:
            self.timers.cancel(handle)
        entry = self._in_flight.get(task.task_id)
        if entry is not None and entry.task is task:
            del self._in_flight[task.task_id]
            logger.debug("Task %s cancelled in flight; its result will be discarded", task.task_id)
        task.state = TaskState.CANCELLED
        self.totals.cancelled += 1
        self._emit(task)

    # -- listeners ------------------------------------------------------------

    def add_listener(self, listener: OutcomeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: OutcomeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, task: DispatchTask, *, error: str | None = None) -> None:
        outcome = DispatchOutcome(
            task_id=task.task_id,
            state=task.state,
            attempts=task.attempt,
            priority=task.priority,
            marker=task.marker,
            batch_id=task.batch_id,
            error=error,
        )
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception:
                logger.exception("Outcome listener failed for task %s", task.task_id)

    # -- queries --------------------------------------------------------------

    def find(self, task_id: str) -> DispatchTask | None:
        with self._lock:
            return self.registry.find(task_id)

    def active_count(self) -> int:
        with self._lock:
            return self.registry.count_all()

    def count_by_priority(self, priority: Priority) -> int:
        with self._lock:
            return self.registry.count_by_priority(priority)

    def scheduled_tasks(self) -> list[DispatchTask]:
        with self._lock:
            return self.registry.list_scheduled()

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def seconds_until_next_timer(self) -> float | None:
        with self._lock:
            return self.timers.seconds_until_next()

    def armed_timer_count(self) -> int:
        with self._lock:
            return self.timers.pending_count()


def _future_result(future: Future) -> object:
    if future.cancelled():
        return CancelledError("delivery future was cancelled")
    try:
        return future.result()
    except BaseException as error:  # noqa: BLE001
        return error


def _failure_reason(result: object) -> str | None:
    if isinstance(result, BaseException):
        return f"{type(result).__name__}: {result}"
    if result:
        return None
    return "deliver reported failure"
