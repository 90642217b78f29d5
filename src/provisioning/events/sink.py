"""Event sink implementations for provisioning observers.

This module provides the event channel between the orchestrator and
whoever watches a run. It defines an abstract EventSink interface and
concrete implementations:

- CallbackEventSink: Calls an onLogLine(text) observer for each line
- QueueEventSink: Puts events on an asyncio.Queue for a consumer task
- LoggingEventSink: Emits events as structured log entries
- CompositeEventSink: Emits to multiple sinks simultaneously
- NullEventSink: Discards events

Ordering: the orchestrator is the only writer and awaits each emit()
before producing the next event, so every sink sees events in emission
order. Sinks apply no backpressure; a slow observer must keep up or
drop lines itself.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, List, Optional, Union

from src.provisioning.events.models import EventType, ProvisioningEvent

if TYPE_CHECKING:
    from src.provisioning.events.metrics import ProvisioningMetrics

logger = logging.getLogger(__name__)

LogLineCallback = Callable[[str], Union[None, Awaitable[None]]]


class EventSinkType(str, Enum):
    """Types of event sinks that can be requested by configuration.

    Attributes:
        LOGGING: Emit events as structured log entries.
        METRICS: Count events in Prometheus metrics.
    """

    LOGGING = "logging"
    METRICS = "metrics"


class EventSink(ABC):
    """Abstract base class for provisioning event sinks.

    Implementations should be:
    - Async-safe: emit() is called from the orchestrator's task
    - Quick: emit() runs between two lines of child output
    - Order-preserving: events must be handled in the order received

    Example:
        >>> class PrintSink(EventSink):
        ...     async def emit(self, event: ProvisioningEvent) -> None:
        ...         print(event.text)
    """

    @abstractmethod
    async def emit(self, event: ProvisioningEvent) -> None:
        """Deliver one event.

        Args:
            event: The provisioning event to deliver.
        """
        pass

    async def close(self) -> None:
        """Signal that no more events will be emitted.

        The default implementation does nothing.
        """
        pass


class CallbackEventSink(EventSink):
    """Delivers each event's text to an onLogLine(text) observer.

    The callback may be a plain function or a coroutine function. STAGE
    events are skipped unless include_stages is set, since their
    progress is carried in details rather than text.

    Attributes:
        callback: The observer's line handler.
        include_stages: Also deliver STAGE event text.
    """

    def __init__(self, callback: LogLineCallback, include_stages: bool = False):
        self.callback = callback
        self.include_stages = include_stages

    async def emit(self, event: ProvisioningEvent) -> None:
        if event.event_type == EventType.STAGE and not self.include_stages:
            return
        if not event.text:
            return
        result = self.callback(event.text)
        if inspect.isawaitable(result):
            await result


class QueueEventSink(EventSink):
    """Puts events on an unbounded asyncio.Queue.

    close() puts a single None sentinel so a consumer knows the stream
    has ended. iterate() wraps that protocol as an async iterator.

    Attributes:
        queue: The queue consumers read from.

    Example:
        >>> sink = QueueEventSink()
        >>> async def consume():
        ...     async for event in sink.iterate():
        ...         print(event.text)
    """

    def __init__(self, queue: Optional["asyncio.Queue[Optional[ProvisioningEvent]]"] = None):
        self.queue: "asyncio.Queue[Optional[ProvisioningEvent]]" = queue or asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, event: ProvisioningEvent) -> None:
        if self._closed:
            logger.warning(
                "Event emitted after queue sink was closed",
                extra={"run_id": event.run_id, "sequence": event.sequence},
            )
            return
        self.queue.put_nowait(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.queue.put_nowait(None)

    async def iterate(self) -> AsyncIterator[ProvisioningEvent]:
        """Yield events until the end-of-stream sentinel arrives."""
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


class LoggingEventSink(EventSink):
    """Event sink that logs events using structured logging.

    Events are logged at different levels based on event type:

    - LOG: DEBUG level (child output can be very chatty)
    - STAGE: INFO level
    - WARNING: WARNING level
    - RESULT: INFO on success, ERROR on failure

    Attributes:
        logger: The logger instance used for event emission.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger
        self._log_level_map = {
            EventType.LOG: logging.DEBUG,
            EventType.STAGE: logging.INFO,
            EventType.WARNING: logging.WARNING,
            EventType.RESULT: logging.INFO,
        }

    async def emit(self, event: ProvisioningEvent) -> None:
        log_level = self._log_level_map.get(event.event_type, logging.INFO)
        if event.event_type == EventType.RESULT and not event.details.get("success"):
            log_level = logging.ERROR

        self._logger.log(
            log_level,
            "Provisioning event: %s %s",
            event.event_type.value,
            event.text,
            extra=event.to_log_dict(),
        )


class CompositeEventSink(EventSink):
    """Event sink that delegates to multiple child sinks.

    Failures in one sink do not affect the others: each child is called
    independently and errors are logged but not propagated.

    Attributes:
        sinks: List of child sinks to delegate to.
    """

    def __init__(self, sinks: Optional[List[EventSink]] = None):
        self._sinks: List[EventSink] = list(sinks or [])

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    @property
    def sinks(self) -> List[EventSink]:
        """Get a copy of the child sinks."""
        return list(self._sinks)

    async def emit(self, event: ProvisioningEvent) -> None:
        for sink in self._sinks:
            try:
                await sink.emit(event)
            except Exception as e:
                logger.error(
                    "Failed to emit event to %s: %s",
                    type(sink).__name__,
                    str(e),
                    extra={
                        "sink_type": type(sink).__name__,
                        "event_type": event.event_type.value,
                        "run_id": event.run_id,
                        "error": str(e),
                    },
                )

    async def close(self) -> None:
        for sink in self._sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.error(
                    "Failed to close sink %s: %s",
                    type(sink).__name__,
                    str(e),
                )


class NullEventSink(EventSink):
    """Event sink that discards all events."""

    async def emit(self, event: ProvisioningEvent) -> None:
        pass


def create_event_sink(
    sink_types: Optional[List[EventSinkType]] = None,
    extra_sinks: Optional[List[EventSink]] = None,
    metrics: Optional["ProvisioningMetrics"] = None,
    logger_name: Optional[str] = None,
) -> EventSink:
    """Build an event sink from configuration.

    Args:
        sink_types: Configured sink types. LOGGING is used when empty.
        extra_sinks: Observer sinks to include, e.g. a QueueEventSink.
        metrics: Metrics container for the METRICS sink; a new one when None.
        logger_name: Optional logger name for the LoggingEventSink.

    Returns:
        A single sink, or a CompositeEventSink when more than one applies.
    """
    sinks: List[EventSink] = list(extra_sinks or [])

    for sink_type in sink_types or [EventSinkType.LOGGING]:
        if sink_type == EventSinkType.LOGGING:
            sinks.append(LoggingEventSink(logger_name=logger_name))
        elif sink_type == EventSinkType.METRICS:
            # Imported here because metrics.py imports this module
            from src.provisioning.events.metrics import MetricsEventSink

            sinks.append(MetricsEventSink(metrics))
        else:
            logger.warning("Unknown event sink type: %s, skipping", sink_type)

    if len(sinks) == 1:
        return sinks[0]
    return CompositeEventSink(sinks)
