"""Provisioning event channel and metrics.

This module carries a run's progress to its observer:
- Ordered log, stage, warning and result events
- Typed stage progress instead of log text heuristics
- Prometheus metrics written to a textfile

Event Sinks:
- EventSink: Abstract base class for event delivery
- CallbackEventSink: onLogLine(text) observer
- QueueEventSink: asyncio.Queue channel for a consumer task
- LoggingEventSink: Emits events as structured log entries
- CompositeEventSink: Emits to multiple sinks simultaneously
- MetricsEventSink: Counts events in Prometheus metrics
- NullEventSink: Discards events (for testing)
"""

from src.provisioning.events.metrics import MetricsEventSink, ProvisioningMetrics
from src.provisioning.events.models import EventType, ProvisioningEvent
from src.provisioning.events.sink import (
    CallbackEventSink,
    CompositeEventSink,
    EventSink,
    EventSinkType,
    LoggingEventSink,
    NullEventSink,
    QueueEventSink,
    create_event_sink,
)

__all__ = [
    # Event models
    "EventType",
    "ProvisioningEvent",
    # Event sinks
    "EventSink",
    "CallbackEventSink",
    "QueueEventSink",
    "LoggingEventSink",
    "CompositeEventSink",
    "MetricsEventSink",
    "NullEventSink",
    # Metrics
    "ProvisioningMetrics",
    # Factory and configuration
    "EventSinkType",
    "create_event_sink",
]
