"""Command-line observer for provisioning runs.

Usage:
    provision-dev run https://github.com/org/dotfiles
    provision-dev --package-manager apt run https://example.com/setup.git
    provision-dev check

The run command consumes the orchestrator's events from a queue and
prints them as they arrive. Exit status is 0 on success, 1 on failure
and 2 when the URL is rejected.
"""

import asyncio
import sys
from typing import Optional

import click
import structlog
from pydantic import ValidationError as SettingsValidationError

from src.provisioning import __version__
from src.provisioning.config import ProvisioningSettings, get_settings
from src.provisioning.events.metrics import ProvisioningMetrics
from src.provisioning.events.models import EventType, ProvisioningEvent
from src.provisioning.events.sink import (
    EventSinkType,
    QueueEventSink,
    create_event_sink,
)
from src.provisioning.logging_config import configure_logging
from src.provisioning.models import PipelineResult
from src.provisioning.orchestrator import ProvisioningOrchestrator, check_prerequisites

logger = structlog.get_logger()

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INVALID_URL = 2
EXIT_CANCELLED = 130


@click.group()
@click.version_option(version=__version__, prog_name="provision-dev")
@click.option(
    "--package-manager",
    type=click.Choice(["auto", "homebrew", "apt"]),
    default=None,
    help="Package manager used to install git when it is missing.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Diagnostic log level (stderr).",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"]),
    default=None,
    help="Diagnostic log format.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    package_manager: Optional[str],
    log_level: Optional[str],
    log_format: Optional[str],
) -> None:
    """Provision a developer machine from a repository's bootstrap script."""
    try:
        settings = get_settings(
            package_manager=package_manager,
            log_level=log_level,
            log_format=log_format,
        )
    except SettingsValidationError as exc:
        raise click.UsageError(f"Invalid configuration: {exc}") from exc

    configure_logging(settings.log_level, settings.log_format)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.argument("url")
@click.option("--json-events", is_flag=True, help="Print events as JSON lines.")
@click.option(
    "--metrics-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write Prometheus metrics to this textfile after the run.",
)
@click.pass_context
def run(
    ctx: click.Context,
    url: str,
    json_events: bool,
    metrics_file: Optional[str],
) -> None:
    """Clone URL and run its bootstrap script."""
    settings: ProvisioningSettings = ctx.obj["settings"]
    metrics_file = metrics_file or settings.metrics_file

    try:
        result = asyncio.run(
            _provision_with_console(url, settings, json_events, metrics_file)
        )
    except KeyboardInterrupt:
        click.secho("✗ Provisioning cancelled", fg="red", err=True)
        sys.exit(EXIT_CANCELLED)

    if result.success:
        sys.exit(EXIT_SUCCESS)
    if result.error_type == "ValidationError":
        sys.exit(EXIT_INVALID_URL)
    sys.exit(EXIT_FAILURE)


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Report whether git and the package manager are installed."""
    settings: ProvisioningSettings = ctx.obj["settings"]
    tool_status, manager_status = asyncio.run(check_prerequisites(settings))

    for status in (tool_status, manager_status):
        marker, color = ("✓", "green") if status.installed else ("✗", "red")
        click.secho(f"{marker} {status.message}", fg=color)

    if not manager_status.installed:
        click.echo("The bootstrap script is expected to install it if it needs it.")

    sys.exit(EXIT_SUCCESS if tool_status.installed else EXIT_FAILURE)


async def _provision_with_console(
    url: str,
    settings: ProvisioningSettings,
    json_events: bool,
    metrics_file: Optional[str],
) -> PipelineResult:
    """Run one provisioning attempt while a consumer task prints its events."""
    queue_sink = QueueEventSink()
    metrics = ProvisioningMetrics() if metrics_file else None
    sink_types = [EventSinkType.LOGGING]
    if metrics is not None:
        sink_types.append(EventSinkType.METRICS)
    sink = create_event_sink(sink_types, extra_sinks=[queue_sink], metrics=metrics)

    consumer = asyncio.create_task(_print_events(queue_sink, json_events))
    orchestrator = ProvisioningOrchestrator(event_sink=sink, settings=settings)
    logger.info("Provisioning run requested", run_id=orchestrator.run_id)

    try:
        result = await orchestrator.provision(url)
    finally:
        await sink.close()
        await consumer

    if metrics is not None:
        metrics.write_textfile(metrics_file)
    return result


async def _print_events(queue_sink: QueueEventSink, json_events: bool) -> None:
    async for event in queue_sink.iterate():
        if json_events:
            click.echo(event.to_json())
        else:
            _print_event(event)


def _print_event(event: ProvisioningEvent) -> None:
    if event.event_type == EventType.STAGE:
        click.secho(f"[{event.progress:3d}%] {event.text}", fg="cyan")
    elif event.event_type == EventType.WARNING:
        click.secho(event.text, fg="yellow")
    elif event.event_type == EventType.RESULT:
        if event.details.get("success"):
            click.secho(f"✓ {event.text}", fg="green")
        else:
            click.secho(f"✗ {event.text}", fg="red")
    else:
        click.echo(event.text)


if __name__ == "__main__":
    cli()
