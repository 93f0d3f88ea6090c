"""Shared test fixtures."""

from __future__ import annotations

import random
from typing import Any

import pytest

from event_dispatch.config import DispatcherSettings
from event_dispatch.dispatch.backoff import BackoffPolicy
from event_dispatch.dispatch.clock import ManualClock
from event_dispatch.dispatch.dispatcher import EventDispatcher


class ScriptedDelivery:
    """Deliver stub that replays scripted results, then a default.

    An exception instance in the script is raised instead of returned.
    """

    def __init__(self, results: list[Any] | None = None, *, default: Any = True) -> None:
        self._results = list(results or [])
        self._default = default
        self.calls: list[Any] = []

    def __call__(self, payload: Any) -> Any:
        self.calls.append(payload)
        result = self._results.pop(0) if self._results else self._default
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingBackoff:
    """Backoff wrapper that remembers every delay it hands out."""

    def __init__(self, policy: BackoffPolicy) -> None:
        self.policy = policy
        self.delays: list[tuple[int, float]] = []

    def delay_for(self, retry_number: int) -> float:
        delay = self.policy.delay_for(retry_number)
        self.delays.append((retry_number, delay))
        return delay


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(20260101)


@pytest.fixture()
def scripted():
    """Factory for scripted deliver stubs."""

    return ScriptedDelivery


@pytest.fixture()
def make_dispatcher(clock, rng):
    """Build a dispatcher on the manual clock with seeded jitter."""

    def _make(deliver, *, backoff=None, **overrides) -> EventDispatcher:
        return EventDispatcher(
            deliver,
            settings=DispatcherSettings(**overrides),
            clock=clock,
            backoff=backoff,
            rng=rng,
        )

    return _make


@pytest.fixture()
def recording_backoff():
    """Factory for backoff wrappers that record handed-out delays."""

    return RecordingBackoff
