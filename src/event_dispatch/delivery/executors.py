"""Adapters that run a deliver function off the dispatch loop thread."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

logger = logging.getLogger(__name__)


class ThreadedDelivery:
    """Run a blocking deliver function on a thread pool; each call returns a future."""

    def __init__(self, deliver: Callable[[Any], object], *, max_workers: int = 4) -> None:
        self._deliver = deliver
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="event-delivery",
        )

    def __call__(self, payload: Any) -> Future:
        return self._executor.submit(self._deliver, payload)

    def close(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> ThreadedDelivery:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class AsyncioDelivery:
    """Run ``async def deliver(payload)`` on a private event loop thread.

    Calls return ``concurrent.futures.Future`` objects, so the dispatch loop
    never touches the event loop directly.
    """

    def __init__(self, deliver: Callable[[Any], Awaitable[object]]) -> None:
        self._deliver = deliver
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="event-delivery-asyncio",
        )
        self._thread.start()

    def __call__(self, payload: Any) -> Future:
        return asyncio.run_coroutine_threadsafe(self._call(payload), self._loop)

    async def _call(self, payload: Any) -> object:
        return await self._deliver(payload)

    def close(self, timeout_seconds: float = 5.0) -> None:
        if self._loop.is_closed():
            return
        cancelled = asyncio.run_coroutine_threadsafe(self._cancel_pending(), self._loop)
        cancelled.result(timeout=timeout_seconds)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=timeout_seconds)
        self._loop.close()
        logger.debug("Asyncio delivery loop closed")

    def __enter__(self) -> AsyncioDelivery:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @staticmethod
    async def _cancel_pending() -> None:
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
