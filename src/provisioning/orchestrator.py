"""Provisioning orchestrator connecting all stages of a run.

Drives one repository URL through the full pipeline:
validation → dependency check → (install) → workspace + clone
→ bootstrap script → cleanup.

Each stage is delegated to an injected component. The orchestrator owns
the run's state machine and is the only writer to the event sink: the
components hand their output back through callbacks, and every event is
awaited before the next one is produced, so the observer sees one
ordered stream per run.

Failures never escape as exceptions. Every run ends with a RESULT event
and a PipelineResult; once a workspace exists it is removed on every
path, including cancellation.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from src.provisioning.config import ProvisioningSettings
from src.provisioning.dependencies.checker import DependencyChecker, DependencyStatus
from src.provisioning.dependencies.installer import DependencyInstaller
from src.provisioning.dependencies.strategies import select_strategy
from src.provisioning.errors import (
    InstallerError,
    OrchestratorReuseError,
    ProvisioningError,
    ScriptExecutionError,
    ValidationError,
)
from src.provisioning.events.models import EventType, ProvisioningEvent
from src.provisioning.events.sink import EventSink, NullEventSink
from src.provisioning.executor.bootstrap import BootstrapExecutor
from src.provisioning.fetcher.repository import RepositoryFetcher
from src.provisioning.models import PipelineResult, ProvisioningRequest
from src.provisioning.runner.process import OutputChunk, ProcessRunner
from src.provisioning.state.machine import ProvisioningStateMachine
from src.provisioning.state.models import STAGE_PROGRESS, ProvisioningStage
from src.provisioning.workspace.manager import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

SEPARATOR = "=" * 50

SUCCESS_MESSAGE = "Bootstrap completed successfully"
CANCELLED_MESSAGE = "Provisioning cancelled"


class ProvisioningOrchestrator:
    """Runs one provisioning attempt.

    Single-use: provision() may be called once per instance. Every
    collaborator can be injected; missing ones are built from settings.

    Attributes:
        event_sink: Receives every event of the run, in order.
        settings: Configuration for the default collaborators.
        runner: Shared process runner.
        checker: Probes the version-control client.
        installer: Installs the client when it is missing.
        workspace_manager: Creates and removes the run's workspace.
        fetcher: Clones the repository.
        executor: Runs the bootstrap script.
        run_id: Identifier carried by every event and the result.
        state_machine: The run's state, available after provision() starts.
    """

    def __init__(
        self,
        event_sink: Optional[EventSink] = None,
        settings: Optional[ProvisioningSettings] = None,
        *,
        runner: Optional[ProcessRunner] = None,
        checker: Optional[DependencyChecker] = None,
        installer: Optional[DependencyInstaller] = None,
        workspace_manager: Optional[WorkspaceManager] = None,
        fetcher: Optional[RepositoryFetcher] = None,
        executor: Optional[BootstrapExecutor] = None,
        run_id: Optional[str] = None,
    ):
        self.settings = settings or ProvisioningSettings()
        self.event_sink = event_sink or NullEventSink()
        self.runner = runner or ProcessRunner()
        self.checker = checker or DependencyChecker(
            self.runner,
            timeout_seconds=self.settings.version_check_timeout_seconds,
        )
        self.installer = installer or DependencyInstaller(
            self.runner,
            self.checker,
            select_strategy(self.settings.package_manager),
        )
        self.workspace_manager = workspace_manager or WorkspaceManager(
            root=self.settings.workspace_root,
            prefix=self.settings.workspace_prefix,
        )
        self.fetcher = fetcher or RepositoryFetcher(
            self.runner,
            vcs_binary=self.settings.vcs_binary,
            clone_depth=self.settings.clone_depth,
        )
        self.executor = executor or BootstrapExecutor(
            self.runner,
            script_name=self.settings.bootstrap_script_name,
            stderr_prefix=self.settings.stderr_prefix,
        )
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.state_machine: Optional[ProvisioningStateMachine] = None
        self._sequence = 0
        self._started = False
        self._workspace_removed = False

    async def provision(self, repository_url: str) -> PipelineResult:
        """Provision from a repository URL.

        Args:
            repository_url: Raw observer input; trimmed and validated here.

        Returns:
            PipelineResult. success is True only when the bootstrap script
            exited 0.

        Raises:
            OrchestratorReuseError: If this instance already ran.
            asyncio.CancelledError: If the run is cancelled. The child
                process is killed and the workspace removed first.
        """
        if self._started:
            raise OrchestratorReuseError(
                "A ProvisioningOrchestrator runs once; create a new one per run"
            )
        self._started = True
        self.state_machine = ProvisioningStateMachine(self.run_id)
        started_at = time.monotonic()

        try:
            request = ProvisioningRequest.from_input(repository_url)
        except ValidationError as exc:
            logger.info(
                "Rejected repository URL",
                extra={"run_id": self.run_id, "reason": exc.reason},
            )
            return await self._finish(exc, started_at)

        url = request.repository_url
        self.state_machine.state.repository_url = url
        logger.info(
            "Starting provisioning run",
            extra={"run_id": self.run_id, "url": url},
        )

        workspace: Optional[Workspace] = None
        error: Optional[BaseException] = None

        try:
            try:
                vcs_binary = await self._ensure_vcs()

                await self._transition(ProvisioningStage.FETCHING_REPO)
                workspace = self.workspace_manager.create()
                self.state_machine.state.workspace_path = str(workspace.path)

                await self._log(f"Cloning repository {url}...")
                await self.fetcher.clone(
                    url,
                    workspace.path,
                    on_output=self._forward_output,
                    vcs_binary=vcs_binary,
                )
                await self._log("✓ Repository cloned")

                await self._transition(ProvisioningStage.EXECUTING_BOOTSTRAP)
                await self._execute_bootstrap(workspace)
            except ProvisioningError as exc:
                error = exc
                logger.info(
                    "Provisioning stage failed",
                    extra={
                        "run_id": self.run_id,
                        "stage": self.state_machine.current_stage.value,
                        "error_type": type(exc).__name__,
                    },
                )
            except Exception as exc:
                error = exc
                logger.exception(
                    "Unexpected error during provisioning",
                    extra={
                        "run_id": self.run_id,
                        "stage": self.state_machine.current_stage.value,
                    },
                )

            failed_stage = self.state_machine.current_stage
            if workspace is not None:
                await self._cleanup(workspace)
            return await self._finish(error, started_at, failed_stage=failed_stage)
        except asyncio.CancelledError:
            await self._handle_cancellation(workspace, started_at)
            raise
        finally:
            # No-op once the workspace has been removed.
            if workspace is not None:
                self._remove_workspace(workspace)

    async def _ensure_vcs(self) -> str:
        """Check for the version-control client and install it if missing.

        Returns:
            The executable to clone with.

        Raises:
            InstallerError: If installation fails.
        """
        tool = self.settings.vcs_binary
        version_args = self.settings.vcs_version_args

        await self._transition(ProvisioningStage.CHECKING_DEPENDENCY)
        await self._log(f"Checking for {tool} installation...")
        status = await self.checker.check_tool(tool, version_args)

        if status.installed:
            await self._log(f"✓ {status.message}")
            await self._report_package_manager()
            return tool

        await self._log(f"{status.message}. Installing {tool}...")
        await self._transition(ProvisioningStage.INSTALLING_DEPENDENCY)
        try:
            result = await self.installer.ensure_tool(
                tool,
                version_args,
                on_output=self._forward_output,
                log=self._log,
            )
        except InstallerError as exc:
            await self._log(f"ERROR: {exc.message}")
            if exc.hints:
                await self._log("Please install manually:")
                for number, hint in enumerate(exc.hints, start=1):
                    await self._log(f"{number}. {hint}")
            raise
        return result.tool_path

    async def _report_package_manager(self) -> None:
        """Tell the observer whether the package manager is present.

        Informational only: the bootstrap script may install it itself.
        """
        strategy = self.installer.strategy
        status = await self.checker.check_tool(
            strategy.manager_binary(), strategy.manager_version_args
        )
        if status.installed:
            await self._log(f"✓ {strategy.display_name} is installed")
        else:
            await self._log(f"{strategy.display_name} is not installed.")
            await self._log(
                "The bootstrap script is expected to install it if it needs it."
            )

    async def _execute_bootstrap(self, workspace: Workspace) -> None:
        """Run the bootstrap script between separator lines.

        Raises:
            MissingScriptError: If the repository has no bootstrap script.
            ScriptExecutionError: If the script exits nonzero.
        """
        script_name = self.executor.script_name
        self.executor.locate(workspace)

        await self._log(
            f"Running {script_name}... This may take 15-30 minutes. "
            "The script is not time-limited."
        )
        await self._log(SEPARATOR)
        try:
            result = await self.executor.run(workspace, on_output=self._forward_output)
        except ScriptExecutionError as exc:
            self.state_machine.state.exit_code = exc.exit_code
            await self._log(SEPARATOR)
            await self._log(f"✗ Bootstrap failed with exit code {exc.exit_code}")
            raise
        self.state_machine.state.exit_code = result.exit_code
        await self._log(SEPARATOR)
        await self._log("✓ Bootstrap completed successfully!")

    def _remove_workspace(self, workspace: Workspace) -> Optional[str]:
        """Delete the workspace directory once. Never raises, never awaits.

        Returns:
            The warning text if the directory could not be removed, None if
            it is gone or was already handled.
        """
        if self._workspace_removed:
            return None
        self._workspace_removed = True
        try:
            warning = self.workspace_manager.cleanup(workspace)
        except Exception as exc:
            logger.exception(
                "Workspace cleanup raised",
                extra={"run_id": self.run_id, "workspace": str(workspace.path)},
            )
            return f"Warning: Could not clean up {workspace.path} ({exc})"
        if warning is None:
            self.state_machine.state.workspace_path = None
            return None
        return str(warning)

    async def _cleanup(
        self,
        workspace: Workspace,
        warning: Optional[str] = None,
        removed: bool = False,
    ) -> None:
        """Remove the workspace, then enter CLEANUP and report the outcome.

        Removal happens before any event is emitted, so a cancelled
        observer cannot leave the directory behind.
        """
        if not removed:
            warning = self._remove_workspace(workspace)
        await self._transition(ProvisioningStage.CLEANUP)
        if warning is None:
            await self._log("Cleaned up temporary files")
        else:
            await self._emit(
                EventType.WARNING,
                warning,
                details={"path": str(workspace.path)},
            )

    async def _handle_cancellation(
        self,
        workspace: Optional[Workspace],
        started_at: float,
    ) -> None:
        """Clean up after the run task was cancelled.

        The runner has already killed the child process. The cancellation
        may also arrive while cleanup or the terminal events are being
        emitted; whatever part of the run is still pending is finished here.
        """
        warning = None
        if workspace is not None:
            warning = self._remove_workspace(workspace)
        logger.info("Provisioning run cancelled", extra={"run_id": self.run_id})
        if self.state_machine.is_terminal:
            return

        await self._log(CANCELLED_MESSAGE)
        failed_stage = self.state_machine.current_stage
        if workspace is not None and self.state_machine.can_transition(
            ProvisioningStage.CLEANUP
        ):
            await self._cleanup(workspace, warning=warning, removed=True)
        await self._finish(
            asyncio.CancelledError(CANCELLED_MESSAGE),
            started_at,
            failed_stage=failed_stage,
        )

    async def _finish(
        self,
        error: Optional[BaseException],
        started_at: float,
        failed_stage: Optional[ProvisioningStage] = None,
    ) -> PipelineResult:
        """Enter the terminal stage and emit the RESULT event."""
        duration = time.monotonic() - started_at
        exit_code = self.state_machine.state.exit_code

        if error is None:
            await self._transition(
                ProvisioningStage.COMPLETED, {"exit_code": exit_code}
            )
            result = PipelineResult(
                success=True,
                message=SUCCESS_MESSAGE,
                exit_code=exit_code,
                run_id=self.run_id,
            )
        else:
            message = _error_message(error)
            stage = (failed_stage or self.state_machine.current_stage).value
            if isinstance(error, ValidationError):
                stage = ValidationError.stage
            await self._transition(
                ProvisioningStage.FAILED,
                {
                    "error": message,
                    "error_type": type(error).__name__,
                    "stage": stage,
                },
            )
            result = PipelineResult(
                success=False,
                message=message,
                exit_code=exit_code,
                error_type=type(error).__name__,
                stage=stage,
                run_id=self.run_id,
            )

        logger.info(
            "Provisioning run finished",
            extra={
                "run_id": self.run_id,
                "success": result.success,
                "error_type": result.error_type,
                "duration": round(duration, 3),
            },
        )
        details: Dict[str, Any] = result.to_dict()
        details.pop("message", None)
        details.pop("run_id", None)
        details["duration_seconds"] = round(duration, 3)
        await self._emit(EventType.RESULT, result.message, details=details)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        to_stage: ProvisioningStage,
        details: Optional[dict] = None,
    ) -> None:
        """Transition state and emit a STAGE event."""
        record = self.state_machine.transition(to_stage, details)
        await self._emit(
            EventType.STAGE,
            to_stage.value,
            details={
                "from_stage": record.from_stage.value,
                "to_stage": to_stage.value,
                "progress": STAGE_PROGRESS[to_stage],
            },
        )

    async def _log(self, text: str) -> None:
        await self._emit(EventType.LOG, text)

    async def _forward_output(self, chunk: OutputChunk) -> None:
        await self._emit(EventType.LOG, chunk.text, stream=chunk.stream)

    async def _emit(
        self,
        event_type: EventType,
        text: str,
        stream: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        self._sequence += 1
        await self._safe_emit(
            ProvisioningEvent(
                event_type=event_type,
                run_id=self.run_id,
                sequence=self._sequence,
                text=text,
                stream=stream,
                details=details or {},
            )
        )

    async def _safe_emit(self, event: ProvisioningEvent) -> None:
        """Emit an event, swallowing exceptions to avoid disrupting the run."""
        try:
            await self.event_sink.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit provisioning event",
                extra={
                    "event_type": event.event_type.value,
                    "run_id": event.run_id,
                },
            )


def _error_message(error: BaseException) -> str:
    if isinstance(error, ProvisioningError):
        return error.message
    if isinstance(error, asyncio.CancelledError):
        return CANCELLED_MESSAGE
    return f"Unexpected error: {error}"


async def provision(
    repository_url: str,
    event_sink: Optional[EventSink] = None,
    settings: Optional[ProvisioningSettings] = None,
) -> PipelineResult:
    """Provision from a repository URL with a fresh orchestrator.

    Concurrent calls are independent: each gets its own orchestrator,
    state machine and workspace.

    Args:
        repository_url: Raw observer input.
        event_sink: Receives the run's events; discarded when None.
        settings: Configuration; read from the environment when None.

    Returns:
        The run's PipelineResult.
    """
    orchestrator = ProvisioningOrchestrator(event_sink=event_sink, settings=settings)
    return await orchestrator.provision(repository_url)


async def check_prerequisites(
    settings: Optional[ProvisioningSettings] = None,
    runner: Optional[ProcessRunner] = None,
) -> List[DependencyStatus]:
    """Report the version-control client and package manager status.

    Nothing is installed or cloned.

    Returns:
        Statuses for the client and for the selected package manager.
    """
    settings = settings or ProvisioningSettings()
    checker = DependencyChecker(
        runner or ProcessRunner(),
        timeout_seconds=settings.version_check_timeout_seconds,
    )
    strategy = select_strategy(settings.package_manager)
    tool_status = await checker.check_tool(settings.vcs_binary, settings.vcs_version_args)
    manager_status = await checker.check_tool(
        strategy.manager_binary(), strategy.manager_version_args
    )
    return [tool_status, manager_status]
