"""Cancellable one-shot timers driven by the dispatch loop."""

from __future__ import annotations

import heapq
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field

from event_dispatch.dispatch.clock import Clock


@dataclass(slots=True, eq=False)
class TimerHandle:
    """Opaque handle returned by :meth:`TimerFacility.after`."""

    fire_at: float
    callback: Callable[[], None] = field(repr=False)
    label: str | None = None
    active: bool = True


class TimerFacility:
    """Run callbacks after a delay, in fire-time order, on the caller's thread.

    Nothing fires on its own: :meth:`fire_due` is called from the dispatch
    loop. A handle is deactivated before its callback runs, and ``cancel``
    only flips the flag, so a cancelled handle can never fire. Not
    thread-safe by itself; the engine lock guards it.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._sequence = itertools.count()

    def after(
        self,
        delay_ms: float,
        callback: Callable[[], None],
        *,
        label: str | None = None,
    ) -> TimerHandle:
        fire_at = self._clock.monotonic() + max(delay_ms, 0) / 1000
        handle = TimerHandle(fire_at=fire_at, callback=callback, label=label)
        heapq.heappush(self._heap, (fire_at, next(self._sequence), handle))
        return handle

    def cancel(self, handle: TimerHandle) -> bool:
        was_active = handle.active
        handle.active = False
        return was_active

    def fire_due(self) -> int:
        """Fire every active timer whose time has come; return how many fired."""

        fired = 0
        now = self._clock.monotonic()
        while self._heap and self._heap[0][0] <= now:
            _, _, handle = heapq.heappop(self._heap)
            if not handle.active:
                continue
            handle.active = False
            handle.callback()
            fired += 1
        return fired

    def seconds_until_next(self) -> float | None:
        self._drop_cancelled_head()
        if not self._heap:
            return None
        return max(self._heap[0][0] - self._clock.monotonic(), 0.0)

    def pending_count(self) -> int:
        return sum(1 for _, _, handle in self._heap if handle.active)

    def _drop_cancelled_head(self) -> None:
        while self._heap and not self._heap[0][2].active:
            heapq.heappop(self._heap)
