"""Provisioning event models.

This module defines the events a run emits to its observer:
- EventType: Enum of event categories
- ProvisioningEvent: One ordered event with run metadata

Every event of a run carries the same run_id and a sequence number that
starts at 1 and increases by one per event, so observers can check they
saw the stream in order and without gaps.

The models use Pydantic for validation, consistent with the state
models in state/models.py.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Categories of events emitted by a provisioning run.

    Event Categories:
        LOG: One line of narrative text or child process output.
        STAGE: The run entered a new stage. Carries a progress percentage
            so observers never infer progress from log text.
        WARNING: A non-fatal problem, e.g. the workspace could not be removed.
        RESULT: The terminal outcome of the run. Always the last event.
    """

    LOG = "log"
    STAGE = "stage"
    WARNING = "warning"
    RESULT = "result"


class ProvisioningEvent(BaseModel):
    """Ordered event emitted by a provisioning run.

    Attributes:
        event_type: The category of event.
        run_id: Identifier of the run that emitted the event.
        sequence: Position in the run's event stream, starting at 1.
        timestamp: When the event occurred (UTC timezone).
        text: Human-readable line for the observer.
        stream: "stdout" or "stderr" for child process output, else None.
        details: Additional context specific to the event type.

    Details Field Conventions:
        For STAGE events:
            - from_stage: Previous stage
            - to_stage: New stage
            - progress: Percentage, 0-100

        For RESULT events:
            - success: Whether the bootstrap script exited 0
            - exit_code: Exit code of the script, when it ran
            - error_type: Error class name, for failures
            - duration_seconds: Wall-clock time of the run

        For WARNING events:
            - path: Workspace left behind, for cleanup warnings
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    run_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the emitting run",
    )

    sequence: int = Field(
        ...,
        ge=1,
        description="Position of the event in its run, starting at 1",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    text: str = Field(
        default="",
        description="Human-readable line for the observer",
    )

    stream: Optional[str] = Field(
        default=None,
        description="stdout or stderr for child process output",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    @property
    def progress(self) -> Optional[int]:
        """Progress percentage of a STAGE event, else None."""
        if self.event_type != EventType.STAGE:
            return None
        return self.details.get("progress")

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary for structured logging.

        Example:
            >>> event = ProvisioningEvent(
            ...     event_type=EventType.LOG,
            ...     run_id="run-1",
            ...     sequence=1,
            ...     text="Cloning repository...",
            ... )
            >>> event.to_log_dict()["event_type"]
            'log'
        """
        log_dict: Dict[str, Any] = {
            "event_type": self.event_type.value,
            "run_id": self.run_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.stream is not None:
            log_dict["stream"] = self.stream
        log_dict.update(self.details)
        return log_dict

    def to_json(self) -> str:
        """Serialize the event as one JSON line."""
        return self.model_dump_json()
