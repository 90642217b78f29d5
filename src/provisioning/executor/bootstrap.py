"""Bootstrap script execution.

Locates the bootstrap script at the root of a cloned workspace, marks it
executable and runs it with bash, working directory set to the
workspace. stdout lines are forwarded as they are; stderr lines get a
prefix so the observer can tell them apart in one interleaved log.

The script is not time-limited: provisioning scripts routinely run for
tens of minutes while they install toolchains.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from src.provisioning.errors import MissingScriptError, ScriptExecutionError
from src.provisioning.runner.process import (
    OutputCallback,
    OutputChunk,
    ProcessRunner,
)
from src.provisioning.workspace.manager import Workspace

logger = logging.getLogger(__name__)

SCRIPT_PERMISSIONS = 0o755


@dataclass
class BootstrapResult:
    """A bootstrap script run that exited 0.

    Attributes:
        script_name: Filename of the script that ran.
        exit_code: Always 0; nonzero exits raise ScriptExecutionError.
        duration_seconds: Wall-clock execution time.
    """

    script_name: str
    exit_code: int
    duration_seconds: float


class BootstrapExecutor:
    """Runs a repository's bootstrap script inside its workspace.

    Attributes:
        runner: Process runner for the script.
        script_name: Filename looked up at the workspace root.
        stderr_prefix: Prepended to every stderr line.
        interpreter: Shell used to run the script.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        script_name: str = "bootstrap.sh",
        stderr_prefix: str = "ERROR: ",
        interpreter: str = "bash",
    ):
        self.runner = runner
        self.script_name = script_name
        self.stderr_prefix = stderr_prefix
        self.interpreter = interpreter

    async def run(
        self,
        workspace: Workspace,
        on_output: Optional[OutputCallback] = None,
    ) -> BootstrapResult:
        """Run the bootstrap script and wait for it to exit.

        Args:
            workspace: Workspace holding the cloned repository.
            on_output: Receives each output line, stderr already prefixed.

        Returns:
            BootstrapResult when the script exits 0.

        Raises:
            MissingScriptError: If the script is not a file at the root.
            ScriptExecutionError: If the script exits nonzero.
            ProcessStartError: If the interpreter cannot be started.
        """
        script_path = self.locate(workspace)
        os.chmod(script_path, SCRIPT_PERMISSIONS)

        async def forward(chunk: OutputChunk) -> None:
            if on_output is None:
                return
            if chunk.is_stderr:
                chunk = OutputChunk(
                    stream=chunk.stream,
                    text=f"{self.stderr_prefix}{chunk.text}",
                )
            await on_output(chunk)

        logger.info(
            "Running bootstrap script",
            extra={"workspace": str(workspace.path), "script": self.script_name},
        )
        outcome = await self.runner.run(
            self.interpreter,
            [self.script_name],
            cwd=str(workspace.path),
            on_output=forward,
        )

        if not outcome.success:
            logger.info(
                "Bootstrap script failed",
                extra={"exit_code": outcome.exit_code, "duration": outcome.duration_seconds},
            )
            raise ScriptExecutionError(self.script_name, outcome.exit_code)

        return BootstrapResult(
            script_name=self.script_name,
            exit_code=outcome.exit_code,
            duration_seconds=outcome.duration_seconds,
        )

    def locate(self, workspace: Workspace) -> Path:
        """Return the script path at the workspace root.

        Raises:
            MissingScriptError: If no regular file with the script name exists.
        """
        script_path = workspace.path / self.script_name
        if not script_path.is_file():
            logger.info(
                "Bootstrap script not found",
                extra={"workspace": str(workspace.path), "script": self.script_name},
            )
            raise MissingScriptError(self.script_name)
        return script_path
