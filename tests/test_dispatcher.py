from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import Future

import allure
import pytest

from event_dispatch.config import DispatcherSettings, Settings
from event_dispatch.dispatch.backoff import BackoffPolicy
from event_dispatch.dispatch.dispatcher import EventDispatcher
from event_dispatch.dispatch.errors import DuplicateTaskIdError
from event_dispatch.dispatch.models import DispatchOutcome, Priority, TaskState

pytestmark = [
    allure.epic("Event Dispatch"),
    allure.feature("Scheduler Front-End"),
]


class TestSubmission:
    @pytest.mark.parametrize("priority", [-1, 4, 10, 255, "urgent", None, True])
    def test_out_of_range_priority_is_stored_as_normal(
        self, make_dispatcher, scripted, priority
    ) -> None:
        dispatcher = make_dispatcher(scripted())

        task_id = dispatcher.dispatch({"title": "x"}, priority=priority)

        assert dispatcher.get_task(task_id).priority is Priority.NORMAL
        assert dispatcher.get_pending_count_by_priority(Priority.NORMAL) == 1

    @pytest.mark.parametrize(("priority", "expected"), [(2.0, Priority.HIGH), (0.0, Priority.LOW)])
    def test_integral_float_priority_keeps_its_tier(
        self, make_dispatcher, scripted, priority, expected
    ) -> None:
        dispatcher = make_dispatcher(scripted())

        task_id = dispatcher.dispatch({"title": "x"}, priority=priority)

        assert dispatcher.get_task(task_id).priority is expected

    def test_dispatch_registers_without_delivering(self, make_dispatcher, scripted) -> None:
        deliver = scripted()
        dispatcher = make_dispatcher(deliver)

        task_id = dispatcher.dispatch({"title": "signup"}, "m1", Priority.HIGH)

        assert task_id.startswith("evt_")
        assert deliver.calls == []
        assert dispatcher.has_pending()
        task = dispatcher.get_task(task_id)
        assert task.state is TaskState.PENDING
        assert task.marker == "m1"

    def test_explicit_duplicate_active_id_is_rejected(self, make_dispatcher, scripted) -> None:
        dispatcher = make_dispatcher(scripted())
        dispatcher.dispatch({}, task_id="evt_fixed")

        with pytest.raises(DuplicateTaskIdError):
            dispatcher.schedule_event({}, 100, task_id="evt_fixed")
        assert dispatcher.get_pending_count() == 1

    def test_id_can_be_reused_once_task_is_terminal(self, make_dispatcher, scripted) -> None:
        dispatcher = make_dispatcher(scripted())
        dispatcher.dispatch({}, task_id="evt_fixed")
        assert dispatcher.wait() is True

        assert dispatcher.dispatch({}, task_id="evt_fixed") == "evt_fixed"

    def test_empty_batch_returns_no_ids_and_changes_nothing(
        self, make_dispatcher, scripted
    ) -> None:
        dispatcher = make_dispatcher(scripted())
        dispatcher.dispatch({"title": "existing"}, priority=Priority.LOW)

        assert dispatcher.dispatch_batch([], Priority.LOW) == []
        assert dispatcher.schedule_batch([], 100, Priority.LOW) == []
        assert dispatcher.get_pending_count() == 1
        assert dispatcher.get_pending_count_by_priority(Priority.LOW) == 1

    def test_batch_adds_exactly_n_tasks_sharing_a_batch_id(
        self, make_dispatcher, scripted
    ) -> None:
        dispatcher = make_dispatcher(scripted())
        before = dispatcher.get_pending_count_by_priority(Priority.HIGH)

        task_ids = dispatcher.dispatch_batch(
            ({"n": n} for n in range(5)),
            Priority.HIGH,
            marker="bulk",
        )

        assert len(set(task_ids)) == 5
        assert dispatcher.get_pending_count_by_priority(Priority.HIGH) == before + 5
        batch_ids = {dispatcher.get_task(task_id).batch_id for task_id in task_ids}
        assert len(batch_ids) == 1
        assert batch_ids.pop().startswith("batch_")

    def test_get_priority_name(self) -> None:
        assert EventDispatcher.get_priority_name(Priority.CRITICAL) == "critical"
        assert EventDispatcher.get_priority_name(0) == "low"
        assert EventDispatcher.get_priority_name(9) == "unknown"


class TestScheduling:
    def test_scheduled_event_is_listed_until_its_time_comes(
        self, make_dispatcher, clock
    ) -> None:
        dispatcher = make_dispatcher(lambda _payload: Future())

        task_id = dispatcher.schedule_event({"title": "later"}, 3000, "m1", Priority.HIGH)

        events = dispatcher.get_scheduled_events()
        assert list(events) == [task_id]
        info = events[task_id]
        assert info.time_remaining == pytest.approx(3.0)
        assert info.priority_name == "high"
        assert info.marker == "m1"
        assert info.dispatch_at == clock.now().replace(second=3)

        clock.advance(1)
        assert dispatcher.get_scheduled_events()[task_id].time_remaining == pytest.approx(2.0)

        clock.advance(2.001)
        dispatcher.step()

        assert dispatcher.get_scheduled_events() == {}
        assert dispatcher.get_task(task_id).state is TaskState.IN_FLIGHT

    def test_negative_delay_is_clamped_to_now(self, make_dispatcher, scripted) -> None:
        deliver = scripted()
        dispatcher = make_dispatcher(deliver)

        task_id = dispatcher.schedule_event({"title": "past"}, -500)

        info = dispatcher.get_scheduled_events()[task_id]
        assert info.time_remaining == 0.0
        dispatcher.step()
        assert len(deliver.calls) == 1

    def test_schedule_batch_shares_dispatch_time(self, make_dispatcher, scripted) -> None:
        dispatcher = make_dispatcher(scripted())

        task_ids = dispatcher.schedule_batch([{"n": 1}, {"n": 2}], 1500, Priority.LOW)

        events = dispatcher.get_scheduled_events()
        assert set(events) == set(task_ids)
        assert {info.time_remaining for info in events.values()} == {1.5}
        assert events[task_ids[0]].batch_id == events[task_ids[1]].batch_id

    def test_cancel_scheduled_event(self, make_dispatcher, scripted) -> None:
        deliver = scripted()
        dispatcher = make_dispatcher(deliver)
        task_id = dispatcher.schedule_event({}, 1000)

        assert dispatcher.cancel_scheduled_event(task_id) is True
        assert dispatcher.cancel_scheduled_event(task_id) is False
        assert dispatcher.wait(timeout_ms=5000) is True
        assert deliver.calls == []


class TestCancellation:
    def test_cancel_by_priority_leaves_other_tiers(self, make_dispatcher, scripted) -> None:
        dispatcher = make_dispatcher(scripted())
        dispatcher.dispatch_batch([{}, {}], Priority.LOW)
        dispatcher.schedule_event({}, 1000, priority=Priority.LOW)
        dispatcher.dispatch({}, priority=Priority.CRITICAL)

        assert dispatcher.cancel_events_by_priority(Priority.LOW) == 3
        assert dispatcher.get_pending_count_by_priority(Priority.LOW) == 0
        assert dispatcher.get_pending_count_by_priority(Priority.CRITICAL) == 1
        assert dispatcher.cancel_events_by_priority("low") == 0

    def test_cancel_by_marker_spans_priorities(self, make_dispatcher, scripted) -> None:
        dispatcher = make_dispatcher(scripted())
        dispatcher.dispatch({}, "checkout", Priority.LOW)
        dispatcher.schedule_event({}, 500, "checkout", Priority.CRITICAL)
        kept = dispatcher.dispatch({}, "search", Priority.LOW)

        assert dispatcher.cancel_events_by_marker("checkout") == 2
        assert dispatcher.cancel_events_by_marker("checkout") == 0
        assert dispatcher.get_pending_count() == 1
        assert dispatcher.get_task(kept) is not None

    def test_cancel_all_and_unknown_ids(self, make_dispatcher, scripted) -> None:
        dispatcher = make_dispatcher(scripted())
        dispatcher.dispatch_batch([{}, {}, {}], Priority.NORMAL)

        assert dispatcher.cancel_event("evt_missing") is False
        assert dispatcher.cancel_all_events() == 3
        assert dispatcher.cancel_all_events() == 0
        assert not dispatcher.has_pending()
        assert dispatcher.summary.cancelled == 3

    def test_concrete_scenario(self, make_dispatcher, scripted) -> None:
        dispatcher = make_dispatcher(scripted())

        t1 = dispatcher.dispatch({"title": "T1"}, "m1", Priority.HIGH)
        assert dispatcher.get_pending_count_by_priority(Priority.HIGH) == 1

        dispatcher.dispatch_batch([{}, {}, {}], Priority.LOW)
        assert dispatcher.get_pending_count_by_priority(Priority.LOW) == 3

        assert dispatcher.cancel_events_by_priority(Priority.LOW) == 3
        assert dispatcher.get_pending_count_by_priority(Priority.LOW) == 0

        assert dispatcher.cancel_event(t1) is True
        assert dispatcher.get_pending_count() == 0

    def test_cancel_while_retrying_prevents_further_attempts(
        self, make_dispatcher, scripted, clock
    ) -> None:
        deliver = scripted(default=False)
        dispatcher = make_dispatcher(deliver)
        task_id = dispatcher.dispatch({"title": "flaky"})
        dispatcher.step()
        task = dispatcher.get_task(task_id)
        assert task.state is TaskState.RETRYING

        assert dispatcher.cancel_event(task_id) is True
        clock.advance(30)
        dispatcher.step()

        assert len(deliver.calls) == 1
        assert task.state is TaskState.CANCELLED


class TestRetries:
    def test_success_on_last_allowed_attempt(
        self, make_dispatcher, scripted, recording_backoff, rng
    ) -> None:
        max_retries = 3
        deliver = scripted([False] * max_retries)
        backoff = recording_backoff(BackoffPolicy(rng=rng))
        dispatcher = make_dispatcher(deliver, backoff=backoff, max_retries=max_retries)
        outcomes: list[DispatchOutcome] = []
        dispatcher.add_listener(outcomes.append)

        dispatcher.dispatch({"title": "eventually"})

        assert dispatcher.wait() is True
        assert len(deliver.calls) == max_retries + 1
        assert [retry for retry, _ in backoff.delays] == [0, 1, 2]
        for retry, delay in backoff.delays:
            assert 1000 * 2**retry <= delay <= 10_000 + 1000
        assert outcomes[0].state is TaskState.COMPLETED
        assert outcomes[0].attempts == max_retries + 1

    def test_always_failing_task_fails_after_budget(
        self, make_dispatcher, scripted
    ) -> None:
        deliver = scripted(default=False)
        dispatcher = make_dispatcher(deliver, max_retries=2)
        outcomes: list[DispatchOutcome] = []
        dispatcher.add_listener(outcomes.append)

        task_id = dispatcher.dispatch({"title": "doomed"})

        assert dispatcher.wait() is True
        assert len(deliver.calls) == 3
        assert dispatcher.get_task(task_id) is None
        assert dispatcher.summary.failed == 1
        assert [o.task_id for o in outcomes if o.state is TaskState.FAILED] == [task_id]

    def test_raising_deliver_never_reaches_the_caller(self, make_dispatcher, scripted) -> None:
        dispatcher = make_dispatcher(scripted(default=RuntimeError("boom")), max_retries=1)

        dispatcher.dispatch({})

        assert dispatcher.wait() is True
        assert dispatcher.summary.failed == 1


class TestWait:
    def test_wait_without_tasks_returns_immediately(self, make_dispatcher, scripted) -> None:
        assert make_dispatcher(scripted()).wait(timeout_ms=1) is True

    def test_wait_times_out_on_virtual_clock(self, make_dispatcher, clock) -> None:
        dispatcher = make_dispatcher(lambda _payload: Future())
        dispatcher.dispatch({})
        started = clock.monotonic()

        assert dispatcher.wait(timeout_ms=250) is False
        assert clock.monotonic() - started == pytest.approx(0.25)
        assert dispatcher.get_pending_count() == 1

    def test_wait_sleeps_until_scheduled_time(self, make_dispatcher, scripted, clock) -> None:
        dispatcher = make_dispatcher(scripted(), poll_interval_ms=10_000)
        dispatcher.schedule_event({}, 1200)

        assert dispatcher.wait() is True
        assert clock.monotonic() == pytest.approx(1.2)

    def test_request_stop_ends_wait(self, make_dispatcher) -> None:
        dispatcher = make_dispatcher(lambda _payload: Future())
        dispatcher.dispatch({})
        dispatcher.request_stop()

        assert dispatcher.wait() is False
        assert dispatcher.has_pending()

    def test_stop_request_ends_only_one_wait(self, make_dispatcher) -> None:
        future: Future = Future()
        dispatcher = make_dispatcher(lambda _payload: future)
        dispatcher.dispatch({})
        dispatcher.request_stop()

        assert dispatcher.wait() is False
        future.set_result(True)

        assert dispatcher.wait(timeout_ms=1000) is True
        assert dispatcher.summary.succeeded == 1

    def test_wait_logs_pending_and_armed_timer_counts(
        self, make_dispatcher, scripted, caplog
    ) -> None:
        dispatcher = make_dispatcher(scripted())
        dispatcher.schedule_event({}, 500)

        with caplog.at_level(logging.INFO, logger="event_dispatch"):
            assert dispatcher.wait() is True

        assert "Waiting for 1 pending events to complete (1 timers armed)" in caplog.text


class TestBackgroundDriver:
    def test_background_thread_delivers_without_wait(self) -> None:
        delivered = threading.Event()

        def _deliver(_payload) -> bool:
            delivered.set()
            return True

        settings = DispatcherSettings(poll_interval_ms=5)
        with EventDispatcher(_deliver, settings=settings) as dispatcher:
            dispatcher.start()
            dispatcher.start()
            dispatcher.dispatch({"title": "bg"})
            assert delivered.wait(timeout=5)
            deadline = time.monotonic() + 5
            while dispatcher.has_pending() and time.monotonic() < deadline:
                time.sleep(0.01)

        assert not dispatcher.has_pending()
        assert dispatcher.summary.succeeded == 1

    @pytest.mark.filterwarnings("ignore::pytest.PytestUnhandledThreadExceptionWarning")
    def test_interrupting_exception_stops_loop_without_stranding_task(self, caplog) -> None:
        def _deliver(_payload) -> bool:
            raise asyncio.CancelledError

        settings = DispatcherSettings(poll_interval_ms=5, max_retries=0)
        dispatcher = EventDispatcher(_deliver, settings=settings)
        with caplog.at_level(logging.ERROR, logger="event_dispatch"):
            task_id = dispatcher.dispatch({"title": "bg"})
            dispatcher.start()
            dispatcher._driver_thread.join(timeout=5)

        assert not dispatcher._driver_thread.is_alive()
        assert "Background dispatch loop stopped" in caplog.text
        assert dispatcher.get_task(task_id) is None
        assert dispatcher.engine.in_flight_count() == 0
        assert dispatcher.summary.failed == 1
        dispatcher.stop()

    def test_from_settings_uses_dispatcher_group(self, scripted) -> None:
        settings = Settings(dispatcher=DispatcherSettings(max_retries=7, max_in_flight=2))

        dispatcher = EventDispatcher.from_settings(scripted(), settings)

        assert dispatcher.engine.max_retries == 7
        assert dispatcher.engine.max_in_flight == 2
