from __future__ import annotations

import allure

from event_dispatch.dispatch.clock import ManualClock
from event_dispatch.dispatch.timers import TimerFacility

pytestmark = [
    allure.epic("Event Dispatch"),
    allure.feature("Timers"),
]


def test_due_timers_fire_in_time_order_with_ties_by_arming_order() -> None:
    clock = ManualClock()
    timers = TimerFacility(clock)
    fired: list[str] = []
    timers.after(300, lambda: fired.append("late"))
    timers.after(100, lambda: fired.append("early-a"))
    timers.after(100, lambda: fired.append("early-b"))

    assert timers.fire_due() == 0
    clock.advance(0.1)
    assert timers.fire_due() == 2
    clock.advance(0.5)
    assert timers.fire_due() == 1

    assert fired == ["early-a", "early-b", "late"]


def test_cancelled_timer_never_fires() -> None:
    clock = ManualClock()
    timers = TimerFacility(clock)
    fired: list[str] = []
    handle = timers.after(10, lambda: fired.append("x"))

    assert timers.cancel(handle) is True
    assert timers.cancel(handle) is False
    clock.advance(1)

    assert timers.fire_due() == 0
    assert fired == []
    assert timers.pending_count() == 0


def test_fired_handle_cannot_be_cancelled() -> None:
    clock = ManualClock()
    timers = TimerFacility(clock)
    handle = timers.after(0, lambda: None)

    assert timers.fire_due() == 1
    assert handle.active is False
    assert timers.cancel(handle) is False


def test_seconds_until_next_skips_cancelled_timers() -> None:
    clock = ManualClock()
    timers = TimerFacility(clock)
    first = timers.after(100, lambda: None)
    timers.after(250, lambda: None)

    assert timers.seconds_until_next() == 0.1
    timers.cancel(first)
    assert timers.seconds_until_next() == 0.25
    clock.advance(1)
    assert timers.seconds_until_next() == 0.0


def test_seconds_until_next_is_none_when_idle() -> None:
    assert TimerFacility(ManualClock()).seconds_until_next() is None


def test_callback_may_arm_a_due_timer() -> None:
    clock = ManualClock()
    timers = TimerFacility(clock)
    fired: list[str] = []

    def _chain() -> None:
        fired.append("first")
        timers.after(0, lambda: fired.append("second"))

    timers.after(0, _chain)

    assert timers.fire_due() == 2
    assert fired == ["first", "second"]
