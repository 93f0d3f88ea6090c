"""Controllers for dispatch CLI commands."""

from __future__ import annotations

import json
import logging
import signal
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from event_dispatch.config import Settings
from event_dispatch.delivery import EchoDelivery, HttpCollectorDelivery, ThreadedDelivery
from event_dispatch.dispatch.dispatcher import EventDispatcher
from event_dispatch.dispatch.models import DispatchOutcome, Priority, TaskState

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SendEventsCommand:
    """CLI input for sending events."""

    events: tuple[str, ...]
    events_file: Path | None
    priority: str
    marker: str | None
    delay_ms: int
    timeout_ms: int
    collector_url: str | None
    dry_run: bool


@dataclass(slots=True)
class ShowConfigCommand:
    """CLI input for printing effective settings."""

    collector_url: str | None


@dataclass(slots=True)
class SendEventsResult:
    """Send report to render in CLI."""

    lines: list[str]
    success: bool


class DispatchCliController:
    """Coordinates event submission and configuration CLI operations."""

    def send(self, command: SendEventsCommand) -> SendEventsResult:
        """Dispatch events, wait for them to settle and report the outcome."""

        settings = Settings.from_env(collector_url=command.collector_url)
        settings.validate()
        payloads = load_payloads(events=command.events, events_file=command.events_file)
        priority = Priority.coerce(command.priority)

        lines: list[str] = []
        failures: list[DispatchOutcome] = []

        def _record_failure(outcome: DispatchOutcome) -> None:
            if outcome.state is TaskState.FAILED:
                failures.append(outcome)

        with ExitStack() as stack:
            if command.dry_run:
                deliver = EchoDelivery(emit=lines.append)
            else:
                collector = stack.enter_context(
                    HttpCollectorDelivery.from_settings(settings.collector),
                )
                deliver = stack.enter_context(
                    ThreadedDelivery(collector, max_workers=settings.dispatcher.delivery_workers),
                )
            dispatcher = stack.enter_context(EventDispatcher.from_settings(deliver, settings))
            dispatcher.add_listener(_record_failure)

            _submit(dispatcher, payloads, priority=priority, command=command)
            with _signal_handlers(dispatcher):
                completed = dispatcher.wait(timeout_ms=command.timeout_ms)
            abandoned = 0 if completed else dispatcher.cancel_all_events()
            summary = dispatcher.summary

        lines.append(
            "Dispatch summary: "
            f"submitted={summary.submitted} succeeded={summary.succeeded} "
            f"failed={summary.failed} retried={summary.retried} "
            f"cancelled={summary.cancelled}",
        )
        lines.extend(f"Failed: {outcome.error}" for outcome in failures)
        if not completed:
            lines.append(f"Wait ended before completion; cancelled {abandoned} pending events.")
        return SendEventsResult(lines=lines, success=completed and summary.failed == 0)

    def show_config(self, command: ShowConfigCommand) -> list[str]:
        settings = Settings.from_env(collector_url=command.collector_url)
        settings.validate()
        dispatcher = settings.dispatcher
        collector = settings.collector
        return [
            f"max_retries={dispatcher.max_retries}",
            f"retry_base_delay_ms={dispatcher.retry_base_delay_ms}",
            f"retry_max_delay_ms={dispatcher.retry_max_delay_ms}",
            f"retry_jitter_ms={dispatcher.retry_jitter_ms}",
            f"poll_interval_ms={dispatcher.poll_interval_ms}",
            f"max_in_flight={dispatcher.max_in_flight or 'unlimited'}",
            f"delivery_workers={dispatcher.delivery_workers}",
            f"collector_url={collector.base_url}{collector.events_path}",
            f"collector_timeout_seconds={collector.timeout_seconds}",
            f"developer_secret={_mask(collector.developer_secret)}",
            f"project_token={_mask(collector.project_token)}",
        ]


def load_payloads(*, events: tuple[str, ...], events_file: Path | None) -> list[Any]:
    """Parse inline JSON events and JSON-lines file events, in that order."""

    payloads = [_parse_event(raw, source="--event") for raw in events]
    if events_file is not None:
        for number, line in enumerate(events_file.read_text(encoding="utf-8").splitlines(), 1):
            if line.strip():
                payloads.append(_parse_event(line, source=f"{events_file}:{number}"))
    if not payloads:
        raise ValueError("No events given. Use --event or --events-file.")
    return payloads


def _parse_event(raw: str, *, source: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid JSON event in {source}: {error.msg}") from error


def _submit(
    dispatcher: EventDispatcher,
    payloads: list[Any],
    *,
    priority: Priority,
    command: SendEventsCommand,
) -> None:
    if command.delay_ms > 0:
        if len(payloads) == 1:
            dispatcher.schedule_event(payloads[0], command.delay_ms, command.marker, priority)
        else:
            dispatcher.schedule_batch(payloads, command.delay_ms, priority, marker=command.marker)
    elif len(payloads) == 1:
        dispatcher.dispatch(payloads[0], command.marker, priority)
    else:
        dispatcher.dispatch_batch(payloads, priority, marker=command.marker)


def _mask(secret: str) -> str:
    return "<set>" if secret else "<empty>"


@contextmanager
def _signal_handlers(dispatcher: EventDispatcher) -> Iterator[None]:
    if not hasattr(signal, "SIGINT"):
        yield
        return

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Received %s, stopping wait", name)
        dispatcher.request_stop()

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)
    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        installed = True
    except ValueError:
        # Signal handlers can only be installed in main thread.
        installed = False
    try:
        yield
    finally:
        if installed:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
