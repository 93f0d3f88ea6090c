"""Runtime configuration for the dispatcher and the collector client."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse


@dataclass(slots=True)
class DispatcherSettings:
    """Dispatch loop, retry and concurrency settings."""

    max_retries: int = 3
    retry_base_delay_ms: int = 1_000
    retry_max_delay_ms: int = 10_000
    retry_jitter_ms: int = 1_000
    poll_interval_ms: int = 10
    max_in_flight: int = 0
    delivery_workers: int = 4


@dataclass(slots=True)
class CollectorSettings:
    """Remote event collector settings."""

    base_url: str = "http://localhost:8080"
    events_path: str = "/prod/api/v1/register/event"
    developer_secret: str = ""
    project_token: str = ""
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    dispatcher: DispatcherSettings = field(default_factory=DispatcherSettings)
    collector: CollectorSettings = field(default_factory=CollectorSettings)

    @classmethod
    def from_env(cls, collector_url: str | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            dispatcher=DispatcherSettings(
                max_retries=int(os.getenv("EVENT_DISPATCH_MAX_RETRIES", "3")),
                retry_base_delay_ms=int(os.getenv("EVENT_DISPATCH_RETRY_BASE_DELAY_MS", "1000")),
                retry_max_delay_ms=int(os.getenv("EVENT_DISPATCH_RETRY_MAX_DELAY_MS", "10000")),
                retry_jitter_ms=int(os.getenv("EVENT_DISPATCH_RETRY_JITTER_MS", "1000")),
                poll_interval_ms=int(os.getenv("EVENT_DISPATCH_POLL_INTERVAL_MS", "10")),
                max_in_flight=int(os.getenv("EVENT_DISPATCH_MAX_IN_FLIGHT", "0")),
                delivery_workers=int(os.getenv("EVENT_DISPATCH_DELIVERY_WORKERS", "4")),
            ),
            collector=CollectorSettings(
                base_url=collector_url
                or os.getenv("EVENT_DISPATCH_COLLECTOR_URL", "http://localhost:8080"),
                events_path=os.getenv(
                    "EVENT_DISPATCH_COLLECTOR_EVENTS_PATH",
                    "/prod/api/v1/register/event",
                ),
                developer_secret=os.getenv("EVENT_DISPATCH_DEVELOPER_SECRET", ""),
                project_token=os.getenv("EVENT_DISPATCH_PROJECT_TOKEN", ""),
                timeout_seconds=float(
                    os.getenv("EVENT_DISPATCH_COLLECTOR_TIMEOUT_SECONDS", "10.0"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the dispatcher cannot work with."""

        dispatcher = self.dispatcher
        if dispatcher.max_retries < 0:
            raise ValueError("EVENT_DISPATCH_MAX_RETRIES must be >= 0.")
        if dispatcher.retry_base_delay_ms < 0:
            raise ValueError("EVENT_DISPATCH_RETRY_BASE_DELAY_MS must be >= 0.")
        if dispatcher.retry_max_delay_ms < dispatcher.retry_base_delay_ms:
            raise ValueError(
                "EVENT_DISPATCH_RETRY_MAX_DELAY_MS must be >= EVENT_DISPATCH_RETRY_BASE_DELAY_MS.",
            )
        if dispatcher.retry_jitter_ms < 0:
            raise ValueError("EVENT_DISPATCH_RETRY_JITTER_MS must be >= 0.")
        if dispatcher.poll_interval_ms <= 0:
            raise ValueError("EVENT_DISPATCH_POLL_INTERVAL_MS must be > 0.")
        if dispatcher.max_in_flight < 0:
            raise ValueError("EVENT_DISPATCH_MAX_IN_FLIGHT must be >= 0 (0 means unlimited).")
        if dispatcher.delivery_workers <= 0:
            raise ValueError("EVENT_DISPATCH_DELIVERY_WORKERS must be a positive integer.")
        if self.collector.timeout_seconds <= 0:
            raise ValueError("EVENT_DISPATCH_COLLECTOR_TIMEOUT_SECONDS must be > 0.")
        _validate_collector_url(self.collector.base_url)
        if not self.collector.events_path.startswith("/"):
            raise ValueError(
                "Invalid EVENT_DISPATCH_COLLECTOR_EVENTS_PATH: "
                f"{self.collector.events_path!r}. Expected an absolute path starting with '/'.",
            )


def _validate_collector_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid collector URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
