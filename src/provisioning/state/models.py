"""Run state machine models.

This module defines the data models for one provisioning run:
- ProvisioningStage: Enum of all run stages
- StateTransition: Record of a stage change with timestamp and details
- RunState: Complete in-memory state of one run
- VALID_TRANSITIONS: Map defining allowed stage changes
- STAGE_PROGRESS: Progress percentage reported on entering each stage

The models use Pydantic for validation, consistent with the event models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ProvisioningStage(str, Enum):
    """Stages a provisioning run moves through.

    Stage Flow:
        idle → checking_dependency → [installing_dependency] → fetching_repo
        → executing_bootstrap → cleanup → completed | failed

    Stages before the workspace exists fail straight to 'failed'. Once a
    workspace exists, every path goes through 'cleanup'. Both terminal
    stages are final.

    Attributes:
        IDLE: Run created, request not yet accepted.
        CHECKING_DEPENDENCY: Probing the version-control client.
        INSTALLING_DEPENDENCY: Installing the client through a package manager.
        FETCHING_REPO: Creating the workspace and cloning into it.
        EXECUTING_BOOTSTRAP: Running the repository's bootstrap script.
        CLEANUP: Removing the workspace.
        COMPLETED: The bootstrap script exited 0.
        FAILED: Any stage failed; the error is recorded on the state.
    """

    IDLE = "idle"
    CHECKING_DEPENDENCY = "checking_dependency"
    INSTALLING_DEPENDENCY = "installing_dependency"
    FETCHING_REPO = "fetching_repo"
    EXECUTING_BOOTSTRAP = "executing_bootstrap"
    CLEANUP = "cleanup"
    COMPLETED = "completed"
    FAILED = "failed"


class StateTransition(BaseModel):
    """Record of a stage change.

    Attributes:
        from_stage: The stage before the transition.
        to_stage: The stage after the transition.
        timestamp: When the transition occurred (UTC).
        details: Optional metadata (error info, exit code).
    """

    from_stage: ProvisioningStage = Field(
        ...,
        description="The run stage before this transition",
    )

    to_stage: ProvisioningStage = Field(
        ...,
        description="The run stage after this transition",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the transition occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Optional metadata about the transition",
    )


class RunState(BaseModel):
    """Complete state of one provisioning run.

    Held in memory by the orchestrator for the duration of the run and
    never persisted.

    Attributes:
        run_id: Identifier shared with every event of the run.
        repository_url: The validated repository URL, once accepted.
        current_stage: The current stage.
        state_history: Ordered list of all transitions.
        workspace_path: The run's workspace while it exists.
        error: Message of the most specific error, for failed runs.
        error_type: Class name of that error.
        exit_code: Exit code of the bootstrap script, once it ran.
        created_at: When the run was created (UTC).
        updated_at: When the state last changed (UTC).
    """

    run_id: str = Field(..., min_length=1)

    repository_url: Optional[str] = None

    current_stage: ProvisioningStage = Field(
        default=ProvisioningStage.IDLE,
        description="The current stage of the run",
    )

    state_history: List[StateTransition] = Field(
        default_factory=list,
        description="Ordered list of all state transitions",
    )

    workspace_path: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    exit_code: Optional[int] = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


# Valid state transitions map
#
# - IDLE fails directly when the URL is rejected
# - CHECKING_DEPENDENCY skips INSTALLING_DEPENDENCY when the tool is present
# - Installer failure goes straight to FAILED; no workspace exists yet
# - FETCHING_REPO goes to FAILED only when the workspace itself could not
#   be created, otherwise through CLEANUP
# - EXECUTING_BOOTSTRAP always goes through CLEANUP
# - COMPLETED and FAILED are terminal
VALID_TRANSITIONS: Dict[ProvisioningStage, List[ProvisioningStage]] = {
    ProvisioningStage.IDLE: [
        ProvisioningStage.CHECKING_DEPENDENCY,
        ProvisioningStage.FAILED,
    ],
    ProvisioningStage.CHECKING_DEPENDENCY: [
        ProvisioningStage.INSTALLING_DEPENDENCY,
        ProvisioningStage.FETCHING_REPO,
        ProvisioningStage.FAILED,
    ],
    ProvisioningStage.INSTALLING_DEPENDENCY: [
        ProvisioningStage.FETCHING_REPO,
        ProvisioningStage.FAILED,
    ],
    ProvisioningStage.FETCHING_REPO: [
        ProvisioningStage.EXECUTING_BOOTSTRAP,
        ProvisioningStage.CLEANUP,
        ProvisioningStage.FAILED,
    ],
    ProvisioningStage.EXECUTING_BOOTSTRAP: [
        ProvisioningStage.CLEANUP,
    ],
    ProvisioningStage.CLEANUP: [
        ProvisioningStage.COMPLETED,
        ProvisioningStage.FAILED,
    ],
    ProvisioningStage.COMPLETED: [],
    ProvisioningStage.FAILED: [],
}


STAGE_PROGRESS: Dict[ProvisioningStage, int] = {
    ProvisioningStage.IDLE: 0,
    ProvisioningStage.CHECKING_DEPENDENCY: 10,
    ProvisioningStage.INSTALLING_DEPENDENCY: 25,
    ProvisioningStage.FETCHING_REPO: 40,
    ProvisioningStage.EXECUTING_BOOTSTRAP: 60,
    ProvisioningStage.CLEANUP: 90,
    ProvisioningStage.COMPLETED: 100,
    ProvisioningStage.FAILED: 100,
}


def is_valid_transition(
    from_stage: ProvisioningStage, to_stage: ProvisioningStage
) -> bool:
    """Check if a stage transition is allowed.

    Example:
        >>> is_valid_transition(ProvisioningStage.IDLE, ProvisioningStage.CHECKING_DEPENDENCY)
        True
        >>> is_valid_transition(ProvisioningStage.EXECUTING_BOOTSTRAP, ProvisioningStage.FAILED)
        False
    """
    return to_stage in VALID_TRANSITIONS.get(from_stage, [])


def is_terminal_stage(stage: ProvisioningStage) -> bool:
    """Return True for stages with no outgoing transitions."""
    return not VALID_TRANSITIONS.get(stage, [])
