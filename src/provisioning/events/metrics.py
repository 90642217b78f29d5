"""Prometheus metrics for provisioning runs.

A command-line tool has no /metrics endpoint to scrape, so metrics are
collected on a private registry and can be written to a Prometheus
textfile (for node_exporter's textfile collector) after a run.

Metrics Defined:
- provisioning_runs_total: Counter of finished runs by result
- provisioning_failures_total: Counter of failed runs by stage
- provisioning_run_duration_seconds: Histogram of run duration
- provisioning_stage_transitions_total: Counter of stages entered
- provisioning_output_lines_total: Counter of streamed lines by stream
"""

import logging
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    write_to_textfile,
)

from src.provisioning.events.models import EventType, ProvisioningEvent
from src.provisioning.events.sink import EventSink

logger = logging.getLogger(__name__)


# Bootstrap scripts commonly run 15-30 minutes, so buckets reach 2 hours
DEFAULT_DURATION_BUCKETS = (
    1.0,
    10.0,
    30.0,
    60.0,
    300.0,
    600.0,
    1200.0,
    1800.0,
    3600.0,
    7200.0,
)


class ProvisioningMetrics:
    """Container for all provisioning Prometheus metrics.

    Each instance owns its registry unless one is passed in, so separate
    runs and tests never collide on metric names.

    Attributes:
        registry: The Prometheus registry for these metrics.
        runs_total: Counter for finished runs. Labels: result
        failures_total: Counter for failed runs. Labels: stage
        run_duration_seconds: Histogram for run duration.
        stage_transitions_total: Counter for stages entered. Labels: stage
        output_lines_total: Counter for streamed lines. Labels: stream

    Example:
        >>> metrics = ProvisioningMetrics()
        >>> metrics.record_run(success=True, duration_seconds=42.0)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.runs_total = Counter(
            "provisioning_runs_total",
            "Total number of finished provisioning runs",
            labelnames=["result"],
            registry=self.registry,
        )

        self.failures_total = Counter(
            "provisioning_failures_total",
            "Total number of failed provisioning runs by failing stage",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.run_duration_seconds = Histogram(
            "provisioning_run_duration_seconds",
            "Wall-clock duration of provisioning runs in seconds",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.stage_transitions_total = Counter(
            "provisioning_stage_transitions_total",
            "Number of times each stage was entered",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.output_lines_total = Counter(
            "provisioning_output_lines_total",
            "Number of child process output lines streamed to the observer",
            labelnames=["stream"],
            registry=self.registry,
        )

    def record_run(
        self,
        success: bool,
        duration_seconds: Optional[float] = None,
        failed_stage: Optional[str] = None,
    ) -> None:
        """Record one finished run.

        Args:
            success: Whether the bootstrap script exited 0.
            duration_seconds: Wall-clock time of the run, if known.
            failed_stage: Stage where a failed run stopped.
        """
        self.runs_total.labels(result="success" if success else "failure").inc()
        if not success:
            self.failures_total.labels(stage=failed_stage or "unknown").inc()
        if duration_seconds is not None:
            self.run_duration_seconds.observe(duration_seconds)

    def render(self) -> bytes:
        """Render all metrics in the Prometheus text format."""
        return generate_latest(self.registry)

    def write_textfile(self, path: str) -> None:
        """Write all metrics to a Prometheus textfile atomically.

        Args:
            path: Destination file, conventionally ending in .prom.
        """
        write_to_textfile(path, self.registry)
        logger.info("Wrote metrics textfile", extra={"path": path})


class MetricsEventSink(EventSink):
    """Event sink that updates Prometheus metrics.

    - STAGE: Increments stage_transitions_total for the entered stage
    - LOG: Increments output_lines_total for child output lines
    - RESULT: Records the run outcome and duration
    - WARNING: Ignored

    Attributes:
        metrics: The ProvisioningMetrics instance to update.
    """

    def __init__(self, metrics: Optional[ProvisioningMetrics] = None):
        self._metrics = metrics or ProvisioningMetrics()

    @property
    def metrics(self) -> ProvisioningMetrics:
        return self._metrics

    async def emit(self, event: ProvisioningEvent) -> None:
        try:
            if event.event_type == EventType.STAGE:
                to_stage = event.details.get("to_stage")
                if to_stage:
                    self._metrics.stage_transitions_total.labels(stage=to_stage).inc()
            elif event.event_type == EventType.LOG:
                if event.stream:
                    self._metrics.output_lines_total.labels(stream=event.stream).inc()
            elif event.event_type == EventType.RESULT:
                duration = event.details.get("duration_seconds")
                self._metrics.record_run(
                    success=bool(event.details.get("success")),
                    duration_seconds=float(duration) if duration is not None else None,
                    failed_stage=event.details.get("stage"),
                )
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={"run_id": event.run_id, "error": str(e)},
            )
