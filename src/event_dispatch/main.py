"""CLI entrypoint for event-dispatch."""

import logging
from pathlib import Path

import rich_click as click

from event_dispatch import __version__
from event_dispatch.dispatch.controllers import (
    DispatchCliController,
    SendEventsCommand,
    ShowConfigCommand,
)
from event_dispatch.dispatch.models import Priority

click.rich_click.USE_MARKDOWN = True
DISPATCH_CONTROLLER = DispatchCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="event-dispatch")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Root logger level.",
)
def event_dispatch(log_level: str) -> None:
    """Priority-ordered asynchronous event dispatch CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@event_dispatch.command("send")
@click.option(
    "--event",
    "events",
    multiple=True,
    help="Event payload as a JSON document. Can be repeated.",
)
@click.option(
    "--events-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="File with one JSON event per line.",
)
@click.option(
    "--priority",
    type=click.Choice([tier.label for tier in Priority], case_sensitive=False),
    default=Priority.NORMAL.label,
    show_default=True,
    help="Priority tier for every submitted event.",
)
@click.option("--marker", default=None, help="Grouping tag attached to every submitted event.")
@click.option(
    "--delay-ms",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Schedule events this many milliseconds in the future.",
)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Stop waiting after this many milliseconds; `0` waits until every event settles.",
)
@click.option(
    "--collector-url",
    default=None,
    help="Collector base URL; overrides `EVENT_DISPATCH_COLLECTOR_URL`.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Print events as JSON lines instead of posting them.",
)
def send(  # noqa: PLR0913
    events: tuple[str, ...],
    events_file: Path | None,
    priority: str,
    marker: str | None,
    delay_ms: int,
    timeout_ms: int,
    collector_url: str | None,
    dry_run: bool,
) -> None:
    """Dispatch events to the collector and wait for them to settle."""

    try:
        result = DISPATCH_CONTROLLER.send(
            SendEventsCommand(
                events=events,
                events_file=events_file,
                priority=priority,
                marker=marker,
                delay_ms=delay_ms,
                timeout_ms=timeout_ms,
                collector_url=collector_url,
                dry_run=dry_run,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Event dispatch did not complete successfully.")


@event_dispatch.command("config")
@click.option(
    "--collector-url",
    default=None,
    help="Collector base URL; overrides `EVENT_DISPATCH_COLLECTOR_URL`.",
)
def show_config(collector_url: str | None) -> None:
    """Print effective settings."""

    try:
        lines = DISPATCH_CONTROLLER.show_config(ShowConfigCommand(collector_url=collector_url))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    event_dispatch()
