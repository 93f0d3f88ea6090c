"""HTTP delivery to a remote event collector."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from event_dispatch import __version__
from event_dispatch.config import CollectorSettings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_EVENTS_PATH = "/prod/api/v1/register/event"
DEFAULT_USER_AGENT = f"event-dispatch/{__version__}"


@dataclass(slots=True)
class DeliveryResult:
    """Result of one POST to the collector."""

    url: str
    status_code: int
    is_success: bool
    error: str | None = None


class HttpCollectorDelivery:
    """POST payloads as JSON to the collector, one request per attempt.

    Retries are left to the dispatch engine, so the transport never retries
    on its own.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        events_path: str = DEFAULT_EVENTS_PATH,
        developer_secret: str = "",
        project_token: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = base_url.rstrip("/") + events_path
        headers = {
            "Content-Type": "application/json",
            "User-Agent": DEFAULT_USER_AGENT,
        }
        if developer_secret:
            headers["secret"] = developer_secret
        if project_token:
            headers["pat"] = project_token
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: CollectorSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> HttpCollectorDelivery:
        return cls(
            base_url=settings.base_url,
            events_path=settings.events_path,
            developer_secret=settings.developer_secret,
            project_token=settings.project_token,
            timeout_seconds=settings.timeout_seconds,
            transport=transport,
        )

    def __call__(self, payload: Any) -> bool:
        return self.send(payload).is_success

    def send(self, payload: Any) -> DeliveryResult:
        """POST one payload, returning a structured result instead of raising."""

        try:
            response = self._client.post(self.url, json=payload)
        except httpx.TimeoutException:
            logger.warning("Timeout posting event to %s", self.url)
            return DeliveryResult(url=self.url, status_code=0, is_success=False, error="timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error posting event to %s: %s", self.url, exc)
            return DeliveryResult(url=self.url, status_code=0, is_success=False, error=str(exc))

        if not response.is_success:
            logger.warning(
                "Collector rejected event with HTTP %d: %s",
                response.status_code,
                response.text[:200],
            )
            return DeliveryResult(
                url=self.url,
                status_code=response.status_code,
                is_success=False,
                error=f"HTTP {response.status_code}",
            )
        return DeliveryResult(url=self.url, status_code=response.status_code, is_success=True)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpCollectorDelivery:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
