"""Retry delay policy: capped exponential backoff with additive jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from event_dispatch.config import DispatcherSettings


@dataclass(slots=True)
class BackoffPolicy:
    """Compute retry delays in milliseconds.

    ``delay_for(n) = min(base_delay_ms * 2**n, max_delay_ms) + uniform(0, jitter_ms)``
    where ``n`` is 0 for the first retry. Pass a seeded ``rng`` for
    reproducible delays.
    """

    base_delay_ms: float = 1000
    max_delay_ms: float = 10_000
    jitter_ms: float = 1000
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def from_settings(
        cls,
        settings: DispatcherSettings,
        *,
        rng: random.Random | None = None,
    ) -> BackoffPolicy:
        return cls(
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            jitter_ms=settings.retry_jitter_ms,
            rng=rng or random.Random(),  # noqa: S311
        )

    def delay_for(self, retry_number: int) -> float:
        exponent = max(retry_number, 0)
        delay = min(self.base_delay_ms * (2**exponent), self.max_delay_ms)
        if self.jitter_ms > 0:
            delay += self.rng.uniform(0, self.jitter_ms)
        return delay
