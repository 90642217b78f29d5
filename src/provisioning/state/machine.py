"""In-memory state machine for a single provisioning run.

Validates every stage change against VALID_TRANSITIONS, records it with
a timestamp, and stores error details when the run fails. One machine
belongs to one run; it is never shared or persisted.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from src.provisioning.errors import InvalidTransitionError
from src.provisioning.state.models import (
    ProvisioningStage,
    RunState,
    StateTransition,
    is_terminal_stage,
    is_valid_transition,
)

logger = logging.getLogger(__name__)


class ProvisioningStateMachine:
    """Tracks one run through its stages.

    Invariants:
    - Only transitions listed in VALID_TRANSITIONS are accepted
    - Every transition is appended to state_history with a timestamp
    - A transition to FAILED records the error from details["error"]
    - Terminal stages accept no further transitions

    Attributes:
        state: The run state being tracked.

    Example:
        >>> machine = ProvisioningStateMachine("run-1")
        >>> _ = machine.transition(ProvisioningStage.CHECKING_DEPENDENCY)
        >>> machine.current_stage
        <ProvisioningStage.CHECKING_DEPENDENCY: 'checking_dependency'>
    """

    def __init__(self, run_id: str, repository_url: Optional[str] = None):
        self.state = RunState(run_id=run_id, repository_url=repository_url)

    @property
    def current_stage(self) -> ProvisioningStage:
        return self.state.current_stage

    @property
    def is_terminal(self) -> bool:
        return is_terminal_stage(self.state.current_stage)

    def can_transition(self, to_stage: ProvisioningStage) -> bool:
        return is_valid_transition(self.state.current_stage, to_stage)

    def transition(
        self,
        to_stage: ProvisioningStage,
        details: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """Move the run to a new stage.

        Args:
            to_stage: The target stage.
            details: Optional metadata. For FAILED, "error" and
                "error_type" are copied onto the run state.

        Returns:
            The recorded transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        details = details or {}
        from_stage = self.state.current_stage

        if not is_valid_transition(from_stage, to_stage):
            logger.warning(
                "Invalid state transition attempted",
                extra={
                    "run_id": self.state.run_id,
                    "from_stage": from_stage.value,
                    "to_stage": to_stage.value,
                },
            )
            raise InvalidTransitionError(from_stage.value, to_stage.value)

        now = datetime.now(timezone.utc)
        record = StateTransition(
            from_stage=from_stage,
            to_stage=to_stage,
            timestamp=now,
            details=details,
        )

        self.state.state_history.append(record)
        self.state.current_stage = to_stage
        self.state.updated_at = now

        if to_stage == ProvisioningStage.FAILED:
            self.state.error = details.get("error", "Unknown error")
            self.state.error_type = details.get("error_type")
        if "exit_code" in details:
            self.state.exit_code = details["exit_code"]

        logger.debug(
            "State transition",
            extra={
                "run_id": self.state.run_id,
                "from_stage": from_stage.value,
                "to_stage": to_stage.value,
            },
        )
        return record
