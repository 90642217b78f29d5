"""Error taxonomy for the provisioning pipeline.

Each stage raises its own error type; the orchestrator catches them,
records the most specific one on the run state, and reports it as the
terminal message of a failed run. Cleanup problems are represented by
CleanupWarning, which is a value that gets logged and never raised to
the caller.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional


class ProvisioningError(Exception):
    """Base class for all provisioning failures.

    Attributes:
        stage: Name of the pipeline stage that raised the error.
        message: Human-readable description, used as the terminal message.
    """

    stage: str = "unknown"

    def __init__(self, message: str, stage: Optional[str] = None):
        self.message = message
        if stage is not None:
            self.stage = stage
        super().__init__(message)


class ValidationError(ProvisioningError, ValueError):
    """Raised when the repository URL is rejected before any side effect."""

    stage = "validation"

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(reason)


class ProcessStartError(ProvisioningError):
    """Raised when an external command cannot be started at all.

    Distinct from a nonzero exit: the binary was missing, was not
    executable, or the working directory did not exist.
    """

    stage = "process"

    def __init__(self, command: str, cause: BaseException):
        self.command = command
        self.cause = cause
        super().__init__(f"Could not start {command}: {cause}")


class InstallerError(ProvisioningError):
    """Raised when installing the package manager or the tool fails.

    Attributes:
        phase: "package_manager" or "tool".
        exit_code: Exit code of the failing command, None if it never started.
        hints: Manual installation steps to show the observer.
    """

    stage = "installing_dependency"

    PACKAGE_MANAGER_PHASE = "package_manager"
    TOOL_PHASE = "tool"

    def __init__(
        self,
        phase: str,
        message: str,
        exit_code: Optional[int] = None,
        hints: Optional[List[str]] = None,
    ):
        self.phase = phase
        self.exit_code = exit_code
        self.hints = hints or []
        super().__init__(f"{phase} installation failed: {message}")


class CloneError(ProvisioningError):
    """Raised when the repository cannot be cloned."""

    stage = "fetching_repo"

    def __init__(self, url: str, message: str, exit_code: Optional[int] = None):
        self.url = url
        self.exit_code = exit_code
        super().__init__(f"Failed to clone {url}: {message}")


class MissingScriptError(ProvisioningError):
    """Raised when the cloned repository has no bootstrap script at its root."""

    stage = "executing_bootstrap"

    def __init__(self, script_name: str):
        self.script_name = script_name
        super().__init__(f"{script_name} not found in repository")


class ScriptExecutionError(ProvisioningError):
    """Raised when the bootstrap script exits with a nonzero code."""

    stage = "executing_bootstrap"

    def __init__(self, script_name: str, exit_code: int):
        self.script_name = script_name
        self.exit_code = exit_code
        super().__init__(f"Bootstrap script exited with code {exit_code}")


class InvalidTransitionError(ProvisioningError):
    """Raised when the run state machine rejects a transition."""

    stage = "state"

    def __init__(self, from_stage: str, to_stage: str):
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(f"Invalid transition from {from_stage} to {to_stage}")


class OrchestratorReuseError(RuntimeError):
    """Raised when a single-use orchestrator is asked to run a second time."""


@dataclass
class CleanupWarning:
    """A workspace that could not be removed.

    Attributes:
        path: The workspace directory that was left behind.
        reason: The underlying OS error text.
    """

    path: Path
    reason: str

    def __str__(self) -> str:
        return f"Warning: Could not clean up {self.path} ({self.reason})"


class WorkspaceError(ProvisioningError):
    """Raised when the temporary workspace directory cannot be created."""

    stage = "fetching_repo"

    def __init__(self, root: Path, cause: BaseException):
        self.root = root
        self.cause = cause
        super().__init__(f"Could not create a workspace under {root}: {cause}")
