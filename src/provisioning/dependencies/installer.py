"""Two-phase installation of a missing tool.

Phase one makes sure the package manager exists, bootstrapping it only
when its own version probe fails. Phase two installs the tool with it
and probes the tool again. Any failure raises InstallerError naming the
phase; nothing after the installer runs in that case.

The installer does not write to the event channel itself. Narrative
lines and process output go to callbacks supplied by the orchestrator.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from src.provisioning.dependencies.checker import (
    DEFAULT_VERSION_ARGS,
    DependencyChecker,
)
from src.provisioning.dependencies.strategies import (
    CommandSpec,
    InstallStrategy,
    command_display,
    resolve_tool_path,
)
from src.provisioning.errors import InstallerError, ProcessStartError
from src.provisioning.runner.process import OutputCallback, ProcessRunner

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], Awaitable[None]]


@dataclass
class InstallResult:
    """Outcome of a successful installation.

    Attributes:
        tool: The tool that was installed.
        tool_path: Resolved executable to use for the rest of the run.
        package_manager: Display name of the package manager used.
        package_manager_bootstrapped: True if phase one installed the manager.
        version: Version reported by the tool after installation.
    """

    tool: str
    tool_path: str
    package_manager: str
    package_manager_bootstrapped: bool
    version: Optional[str] = None


class DependencyInstaller:
    """Installs a tool through a package manager strategy.

    Attributes:
        runner: Process runner for install commands.
        checker: Probes the package manager and the tool.
        strategy: The package manager to install with.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        checker: DependencyChecker,
        strategy: InstallStrategy,
    ):
        self.runner = runner
        self.checker = checker
        self.strategy = strategy

    async def ensure_tool(
        self,
        tool: str,
        version_args: Sequence[str] = DEFAULT_VERSION_ARGS,
        *,
        on_output: Optional[OutputCallback] = None,
        log: Optional[LogCallback] = None,
    ) -> InstallResult:
        """Install a tool that the checker reported missing.

        Args:
            tool: Executable to install, e.g. "git".
            version_args: Arguments for the post-install version probe.
            on_output: Receives every output line of install commands.
            log: Receives narrative progress lines.

        Returns:
            InstallResult for the installed tool.

        Raises:
            InstallerError: If either phase fails. The phase attribute
                says which one.
        """
        say = log or _discard
        manager_name = self.strategy.display_name

        manager_binary, bootstrapped = await self._ensure_package_manager(
            tool, say, on_output
        )

        refresh = self.strategy.refresh_command(manager_binary)
        if refresh is not None:
            await say(f"Updating {manager_name} package lists...")
            await self._run_phase(InstallerError.TOOL_PHASE, tool, refresh, on_output)

        package = self.strategy.package_for(tool)
        await say(f"Installing {package} with {manager_name}...")
        spec = self.strategy.install_command(package, manager_binary)
        await self._run_phase(InstallerError.TOOL_PHASE, tool, spec, on_output)

        tool_path = resolve_tool_path(tool, manager_binary)
        status = await self.checker.check_tool(tool_path, version_args)
        if not status.installed:
            raise InstallerError(
                InstallerError.TOOL_PHASE,
                f"{tool} is still not available after installation",
                hints=self.strategy.manual_hints(tool),
            )

        await say(f"✓ {status.message}")
        logger.info(
            "Tool installed",
            extra={
                "tool": tool,
                "tool_path": tool_path,
                "package_manager": self.strategy.name,
                "bootstrapped": bootstrapped,
            },
        )
        return InstallResult(
            tool=tool,
            tool_path=tool_path,
            package_manager=manager_name,
            package_manager_bootstrapped=bootstrapped,
            version=status.version,
        )

    async def _ensure_package_manager(
        self,
        tool: str,
        say: LogCallback,
        on_output: Optional[OutputCallback],
    ):
        """Phase one. Returns (manager binary, whether it was bootstrapped)."""
        manager_name = self.strategy.display_name
        phase = InstallerError.PACKAGE_MANAGER_PHASE

        await say(f"Checking for {manager_name} installation...")
        manager_binary = self.strategy.manager_binary()
        status = await self.checker.check_tool(
            manager_binary, self.strategy.manager_version_args
        )
        if status.installed:
            await say(f"✓ {manager_name} is installed")
            return manager_binary, False

        spec = self.strategy.bootstrap_command()
        if spec is None:
            raise InstallerError(
                phase,
                f"{manager_name} is not available and cannot be installed automatically",
                hints=self.strategy.manual_hints(tool),
            )

        await say(f"{manager_name} is not installed. Installing {manager_name}...")
        await self._run_phase(phase, tool, spec, on_output)

        # Look again: the installer may have put it outside PATH
        manager_binary = self.strategy.manager_binary()
        status = await self.checker.check_tool(
            manager_binary, self.strategy.manager_version_args
        )
        if not status.installed:
            raise InstallerError(
                phase,
                f"{manager_name} is still not available after installation",
            )
        await say(f"✓ {manager_name} installed")
        return manager_binary, True

    async def _run_phase(
        self,
        phase: str,
        tool: str,
        spec: CommandSpec,
        on_output: Optional[OutputCallback],
    ) -> None:
        """Run one install command, raising InstallerError on any failure."""
        hints = self.strategy.manual_hints(tool)
        logger.info(
            "Running install command",
            extra={"phase": phase, "command": command_display(spec)},
        )
        try:
            outcome = await self.runner.run(
                spec.command,
                spec.args,
                env=spec.env,
                shell=spec.shell,
                on_output=on_output,
            )
        except ProcessStartError as exc:
            raise InstallerError(phase, exc.message, hints=hints) from exc

        if not outcome.success:
            raise InstallerError(
                phase,
                f"{command_display(spec)} exited with code {outcome.exit_code}",
                exit_code=outcome.exit_code,
                hints=hints,
            )


async def _discard(_text: str) -> None:
    return None
