"""Run state machine.

Tracks one provisioning run through its stages:
- idle → checking_dependency → installing_dependency → fetching_repo
- → executing_bootstrap → cleanup → completed | failed

State lives in memory for the duration of the run.
"""

from src.provisioning.state.machine import ProvisioningStateMachine
from src.provisioning.state.models import (
    STAGE_PROGRESS,
    VALID_TRANSITIONS,
    ProvisioningStage,
    RunState,
    StateTransition,
    is_terminal_stage,
    is_valid_transition,
)

__all__ = [
    # Models
    "ProvisioningStage",
    "RunState",
    "StateTransition",
    "STAGE_PROGRESS",
    "VALID_TRANSITIONS",
    "is_terminal_stage",
    "is_valid_transition",
    # State machine
    "ProvisioningStateMachine",
]
