"""Public dispatcher API: submit, schedule, cancel, query and wait."""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from event_dispatch.config import DispatcherSettings, Settings
from event_dispatch.delivery.base import Delivery
from event_dispatch.dispatch.backoff import BackoffPolicy
from event_dispatch.dispatch.clock import Clock, SystemClock
from event_dispatch.dispatch.engine import DispatchEngine, OutcomeListener
from event_dispatch.dispatch.models import (
    DispatchSummary,
    DispatchTask,
    Priority,
    ScheduledEventInfo,
    new_batch_id,
    new_task_id,
)

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Non-blocking front-end over :class:`DispatchEngine`.

    Submission only registers work and returns ids. Deliveries happen when the
    loop is driven, either by :meth:`wait` / :meth:`step` on the caller's
    thread or by the background thread started with :meth:`start`.
    """

    def __init__(
        self,
        deliver: Delivery,
        *,
        settings: DispatcherSettings | None = None,
        clock: Clock | None = None,
        backoff: BackoffPolicy | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or DispatcherSettings()
        self.clock = clock or SystemClock()
        self.engine = DispatchEngine(
            deliver,
            clock=self.clock,
            backoff=backoff or BackoffPolicy.from_settings(self.settings, rng=rng),
            max_retries=self.settings.max_retries,
            max_in_flight=self.settings.max_in_flight,
        )
        self._poll_interval_seconds = self.settings.poll_interval_ms / 1000
        self._stop_requested = threading.Event()
        self._driver_stop = threading.Event()
        self._driver_thread: threading.Thread | None = None

    @classmethod
    def from_settings(
        cls,
        deliver: Delivery,
        settings: Settings,
        *,
        clock: Clock | None = None,
    ) -> EventDispatcher:
        return cls(deliver, settings=settings.dispatcher, clock=clock)

    # -- submission -----------------------------------------------------------

    def dispatch(
        self,
        payload: Any,
        marker: str | None = None,
        priority: object = Priority.NORMAL,
        *,
        task_id: str | None = None,
    ) -> str:
        """Register one task for delivery as soon as the loop runs."""

        task = self._new_task(payload, marker=marker, priority=priority, task_id=task_id)
        self.engine.submit(task)
        logger.debug(
            "Dispatching event asynchronously: %s (priority=%s id=%s)",
            task.display_name,
            task.priority.label,
            task.task_id,
        )
        return task.task_id

    def dispatch_batch(
        self,
        payloads: Iterable[Any],
        priority: object = Priority.NORMAL,
        *,
        marker: str | None = None,
    ) -> list[str]:
        """Register independent tasks sharing one batch id; no atomicity."""

        items = list(payloads)
        if not items:
            return []
        tasks = self._new_batch(items, priority=priority, marker=marker)
        for task in tasks:
            self.engine.submit(task)
        logger.info(
            "Dispatching batch of %d events (priority=%s batch=%s)",
            len(tasks),
            tasks[0].priority.label,
            tasks[0].batch_id,
        )
        return [task.task_id for task in tasks]

    def schedule_event(
        self,
        payload: Any,
        delay_ms: float,
        marker: str | None = None,
        priority: object = Priority.NORMAL,
        *,
        task_id: str | None = None,
    ) -> str:
        """Register a task that becomes pending ``delay_ms`` from now."""

        delay_ms = max(delay_ms, 0)
        task = self._new_task(payload, marker=marker, priority=priority, task_id=task_id)
        task.dispatch_at = task.scheduled_at + timedelta(milliseconds=delay_ms)
        self.engine.submit(task, delay_ms=delay_ms)
        logger.debug(
            "Scheduling event: %s (priority=%s id=%s delay=%dms dispatch_at=%s)",
            task.display_name,
            task.priority.label,
            task.task_id,
            delay_ms,
            task.dispatch_at.isoformat(),
        )
        return task.task_id

    def schedule_batch(
        self,
        payloads: Iterable[Any],
        delay_ms: float,
        priority: object = Priority.NORMAL,
        *,
        marker: str | None = None,
    ) -> list[str]:
        items = list(payloads)
        if not items:
            return []
        delay_ms = max(delay_ms, 0)
        tasks = self._new_batch(items, priority=priority, marker=marker)
        for task in tasks:
            task.dispatch_at = task.scheduled_at + timedelta(milliseconds=delay_ms)
            self.engine.submit(task, delay_ms=delay_ms)
        logger.info(
            "Scheduling batch of %d events (priority=%s batch=%s delay=%dms)",
            len(tasks),
            tasks[0].priority.label,
            tasks[0].batch_id,
            delay_ms,
        )
        return [task.task_id for task in tasks]

    def _new_task(
        self,
        payload: Any,
        *,
        marker: str | None,
        priority: object,
        task_id: str | None = None,
        batch_id: str | None = None,
    ) -> DispatchTask:
        return DispatchTask(
            task_id=task_id or new_task_id(),
            payload=payload,
            scheduled_at=self.clock.now(),
            priority=Priority.coerce(priority),
            marker=marker,
            batch_id=batch_id,
        )

    def _new_batch(
        self,
        payloads: list[Any],
        *,
        priority: object,
        marker: str | None,
    ) -> list[DispatchTask]:
        tier = Priority.coerce(priority)
        batch_id = new_batch_id()
        return [
            self._new_task(payload, marker=marker, priority=tier, batch_id=batch_id)
            for payload in payloads
        ]

    # -- cancellation ---------------------------------------------------------

    def cancel_event(self, task_id: str) -> bool:
        return self.engine.cancel(task_id)

    def cancel_events_by_priority(self, priority: object) -> int:
        return self.engine.cancel_by_priority(Priority.coerce(priority))

    def cancel_events_by_marker(self, marker: str) -> int:
        return self.engine.cancel_by_marker(marker)

    def cancel_all_events(self) -> int:
        return self.engine.cancel_all()

    def cancel_scheduled_event(self, task_id: str) -> bool:
        """Cancel only while the task is still waiting for its dispatch time."""

        return self.engine.cancel_scheduled(task_id)

    # -- queries --------------------------------------------------------------

    def get_pending_count(self) -> int:
        """Number of active tasks in any non-terminal state."""

        return self.engine.active_count()

    def get_pending_count_by_priority(self, priority: object) -> int:
        return self.engine.count_by_priority(Priority.coerce(priority))

    def has_pending(self) -> bool:
        return self.engine.active_count() > 0

    def get_task(self, task_id: str) -> DispatchTask | None:
        return self.engine.find(task_id)

    def get_scheduled_events(self) -> dict[str, ScheduledEventInfo]:
        now = self.clock.now()
        events: dict[str, ScheduledEventInfo] = {}
        for task in self.engine.scheduled_tasks():
            dispatch_at = task.dispatch_at or now
            events[task.task_id] = ScheduledEventInfo(
                task_id=task.task_id,
                payload=task.payload,
                marker=task.marker,
                priority=task.priority,
                dispatch_at=dispatch_at,
                time_remaining=max((dispatch_at - now).total_seconds(), 0.0),
                batch_id=task.batch_id,
            )
        return events

    @staticmethod
    def get_priority_name(priority: int) -> str:
        try:
            return Priority(priority).label
        except ValueError:
            return "unknown"

    @property
    def summary(self) -> DispatchSummary:
        return self.engine.totals

    def add_listener(self, listener: OutcomeListener) -> None:
        self.engine.add_listener(listener)

    # -- driving the loop -----------------------------------------------------

    def step(self) -> DispatchSummary:
        """Run one loop iteration on the caller's thread."""

        return self.engine.step()

    def wait(self, timeout_ms: int = 0) -> bool:
        """Drive the loop until no task is active or ``timeout_ms`` elapses.

        ``timeout_ms <= 0`` waits without a deadline. Returns True when every
        task reached a terminal state, False on timeout or stop request.
        """

        if not self.has_pending():
            return True

        logger.info(
            "Waiting for %d pending events to complete (%d timers armed)",
            self.get_pending_count(),
            self.engine.armed_timer_count(),
        )
        deadline = self.clock.monotonic() + timeout_ms / 1000 if timeout_ms > 0 else None
        while True:
            self.engine.step()
            if not self.has_pending():
                logger.info("All pending events completed")
                return True
            if self._stop_requested.is_set():
                self._stop_requested.clear()
                logger.info(
                    "Wait interrupted with %d events still pending",
                    self.get_pending_count(),
                )
                return False
            now = self.clock.monotonic()
            if deadline is not None and now >= deadline:
                logger.info(
                    "Wait timeout reached (%dms) with %d events still pending",
                    timeout_ms,
                    self.get_pending_count(),
                )
                return False
            self.clock.sleep(self._next_pause(now=now, deadline=deadline))

    def _next_pause(self, *, now: float, deadline: float | None) -> float:
        pause = self._poll_interval_seconds
        until_timer = self.engine.seconds_until_next_timer()
        if until_timer is not None:
            pause = min(pause, until_timer)
        if deadline is not None:
            pause = min(pause, deadline - now)
        return max(pause, 0.0)

    def request_stop(self) -> None:
        """Make the running or next :meth:`wait` return early; one request ends one wait."""

        self._stop_requested.set()

    def start(self) -> None:
        """Drive the loop from a daemon thread until :meth:`stop`."""

        if self._driver_thread is not None:
            return
        self._driver_stop.clear()
        self._driver_thread = threading.Thread(
            target=self._drive,
            daemon=True,
            name="event-dispatch-loop",
        )
        self._driver_thread.start()
        logger.info("Background dispatch thread started")

    def stop(self, timeout_seconds: float = 5.0) -> None:
        if self._driver_thread is None:
            return
        self._driver_stop.set()
        self._driver_thread.join(timeout=timeout_seconds)
        self._driver_thread = None
        logger.info("Background dispatch thread stopped")

    def close(self) -> None:
        self.stop()

    def __enter__(self) -> EventDispatcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _drive(self) -> None:
        while not self._driver_stop.is_set():
            try:
                self.engine.step()
            except Exception:
                logger.exception("Background dispatch step failed")
            except BaseException:
                logger.exception("Background dispatch loop stopped")
                raise
            self._driver_stop.wait(timeout=self._poll_interval_seconds)
