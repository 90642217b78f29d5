"""Unit tests for the provisioning run state machine."""

import pytest

from src.provisioning.errors import InvalidTransitionError
from src.provisioning.state import (
    STAGE_PROGRESS,
    ProvisioningStage,
    ProvisioningStateMachine,
    is_terminal_stage,
    is_valid_transition,
)

HAPPY_PATH = [
    ProvisioningStage.CHECKING_DEPENDENCY,
    ProvisioningStage.FETCHING_REPO,
    ProvisioningStage.EXECUTING_BOOTSTRAP,
    ProvisioningStage.CLEANUP,
    ProvisioningStage.COMPLETED,
]


class TestTransitions:
    def test_starts_idle(self):
        machine = ProvisioningStateMachine("run-1", "https://example.com/repo.git")

        assert machine.current_stage == ProvisioningStage.IDLE
        assert machine.state.repository_url == "https://example.com/repo.git"
        assert machine.state.state_history == []

    def test_happy_path_is_recorded_in_order(self):
        machine = ProvisioningStateMachine("run-1")

        for stage in HAPPY_PATH:
            machine.transition(stage)

        assert machine.current_stage == ProvisioningStage.COMPLETED
        assert [t.to_stage for t in machine.state.state_history] == HAPPY_PATH
        assert machine.is_terminal

    def test_install_path(self):
        machine = ProvisioningStateMachine("run-1")

        machine.transition(ProvisioningStage.CHECKING_DEPENDENCY)
        machine.transition(ProvisioningStage.INSTALLING_DEPENDENCY)
        machine.transition(ProvisioningStage.FETCHING_REPO)

        assert machine.current_stage == ProvisioningStage.FETCHING_REPO

    def test_clone_failure_goes_through_cleanup(self):
        machine = ProvisioningStateMachine("run-1")
        machine.transition(ProvisioningStage.CHECKING_DEPENDENCY)
        machine.transition(ProvisioningStage.FETCHING_REPO)

        assert machine.can_transition(ProvisioningStage.CLEANUP)
        machine.transition(ProvisioningStage.CLEANUP)
        machine.transition(ProvisioningStage.FAILED, {"error": "clone failed"})

        assert machine.current_stage == ProvisioningStage.FAILED

    def test_skipping_a_stage_is_rejected(self):
        machine = ProvisioningStateMachine("run-1")

        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition(ProvisioningStage.EXECUTING_BOOTSTRAP)

        assert exc_info.value.from_stage == "idle"
        assert exc_info.value.to_stage == "executing_bootstrap"
        assert machine.current_stage == ProvisioningStage.IDLE

    def test_bootstrap_always_leads_to_cleanup(self):
        machine = ProvisioningStateMachine("run-1")
        for stage in HAPPY_PATH[:3]:
            machine.transition(stage)

        assert not machine.can_transition(ProvisioningStage.FAILED)
        assert not machine.can_transition(ProvisioningStage.COMPLETED)

    def test_terminal_stages_accept_nothing(self):
        machine = ProvisioningStateMachine("run-1")
        machine.transition(ProvisioningStage.FAILED, {"error": "bad url"})

        for stage in ProvisioningStage:
            assert not machine.can_transition(stage)


class TestFailureDetails:
    def test_failed_records_error_and_type(self):
        machine = ProvisioningStateMachine("run-1")

        machine.transition(
            ProvisioningStage.FAILED,
            {"error": "Please enter a repository URL", "error_type": "ValidationError"},
        )

        assert machine.state.error == "Please enter a repository URL"
        assert machine.state.error_type == "ValidationError"

    def test_failed_without_error_uses_placeholder(self):
        machine = ProvisioningStateMachine("run-1")

        machine.transition(ProvisioningStage.FAILED)

        assert machine.state.error == "Unknown error"

    def test_exit_code_is_recorded(self):
        machine = ProvisioningStateMachine("run-1")
        for stage in HAPPY_PATH[:4]:
            machine.transition(stage)

        machine.transition(ProvisioningStage.FAILED, {"error": "exit 3", "exit_code": 3})

        assert machine.state.exit_code == 3

    def test_updated_at_follows_last_transition(self):
        machine = ProvisioningStateMachine("run-1")

        record = machine.transition(ProvisioningStage.CHECKING_DEPENDENCY)

        assert machine.state.updated_at == record.timestamp


class TestHelpers:
    def test_terminal_stages(self):
        terminal = {stage for stage in ProvisioningStage if is_terminal_stage(stage)}

        assert terminal == {ProvisioningStage.COMPLETED, ProvisioningStage.FAILED}

    def test_progress_never_decreases_along_happy_path(self):
        values = [STAGE_PROGRESS[stage] for stage in [ProvisioningStage.IDLE] + HAPPY_PATH]

        assert values == sorted(values)
        assert values[-1] == 100

    def test_every_stage_has_progress(self):
        assert set(STAGE_PROGRESS) == set(ProvisioningStage)

    def test_direct_helper(self):
        assert is_valid_transition(ProvisioningStage.IDLE, ProvisioningStage.CHECKING_DEPENDENCY)
        assert not is_valid_transition(ProvisioningStage.COMPLETED, ProvisioningStage.IDLE)
