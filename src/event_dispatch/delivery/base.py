"""Delivery capability contract."""

from __future__ import annotations

from concurrent.futures import Future
from typing import Any, Protocol


class Delivery(Protocol):
    """Send one payload to its destination.

    Returns a truthy value on success and a falsy one on failure, or a
    ``Future`` that resolves to such a value. Raising counts as a failed
    attempt.
    """

    def __call__(self, payload: Any) -> bool | Future[bool]: ...
