"""Tool presence detection.

A tool counts as installed when its version command starts and exits 0.
Warnings printed on stderr do not matter. A missing binary, a nonzero
exit and a timed-out probe all report installed=False; none of them is
an error for the caller.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from src.provisioning.errors import ProcessStartError
from src.provisioning.runner.process import OutputChunk, ProcessRunner

logger = logging.getLogger(__name__)

DEFAULT_VERSION_ARGS = ("--version",)


@dataclass
class DependencyStatus:
    """Result of probing one tool.

    Attributes:
        tool: The executable that was probed.
        installed: True when the version command exited 0.
        message: Human-readable summary for the event log.
        version: First line of the version output, when installed.
    """

    tool: str
    installed: bool
    message: str
    version: Optional[str] = None


class DependencyChecker:
    """Detects tools by running their version command.

    Attributes:
        runner: Process runner used for the probes.
        timeout_seconds: Upper bound for one probe.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        timeout_seconds: Optional[float] = 60,
    ):
        self.runner = runner
        self.timeout_seconds = timeout_seconds

    async def check_tool(
        self,
        tool: str,
        version_args: Sequence[str] = DEFAULT_VERSION_ARGS,
    ) -> DependencyStatus:
        """Probe a tool and report whether it is installed.

        Args:
            tool: Executable name or path, e.g. "git".
            version_args: Arguments that make the tool print its version.

        Returns:
            DependencyStatus describing the outcome. Never raises for an
            absent tool.
        """
        stdout_lines: List[str] = []

        async def keep_first_line(chunk: OutputChunk) -> None:
            if not chunk.is_stderr and not stdout_lines and chunk.text.strip():
                stdout_lines.append(chunk.text.strip())

        try:
            outcome = await self.runner.run(
                tool,
                list(version_args),
                on_output=keep_first_line,
                timeout_seconds=self.timeout_seconds,
            )
        except ProcessStartError as exc:
            logger.info(
                "Tool not found",
                extra={"tool": tool, "error": str(exc.cause)},
            )
            return DependencyStatus(
                tool=tool,
                installed=False,
                message=f"{tool} is not installed",
            )

        if outcome.timed_out:
            return DependencyStatus(
                tool=tool,
                installed=False,
                message=(
                    f"{tool} did not respond to {' '.join(version_args)} "
                    f"within {self.timeout_seconds} seconds"
                ),
            )

        if outcome.exit_code != 0:
            logger.info(
                "Tool version check failed",
                extra={"tool": tool, "exit_code": outcome.exit_code},
            )
            return DependencyStatus(
                tool=tool,
                installed=False,
                message=(
                    f"{tool} is not installed "
                    f"(version check exited with code {outcome.exit_code})"
                ),
            )

        version = parse_version_line(stdout_lines[0]) if stdout_lines else None
        message = f"{tool} is installed"
        if version:
            message += f" ({version})"

        logger.debug("Tool found", extra={"tool": tool, "version": version})
        return DependencyStatus(
            tool=tool,
            installed=True,
            message=message,
            version=version,
        )


def parse_version_line(line: str) -> Optional[str]:
    """Extract the version text from the first line of version output.

    "git version 2.39.3 (Apple Git-146)" becomes "2.39.3 (Apple Git-146)";
    "Homebrew 4.2.0" becomes "4.2.0". Lines without a digit yield None.

    Args:
        line: First non-empty stdout line of the version command.

    Returns:
        The version text, or None if the line carries no version.
    """
    words = line.split()
    for index, word in enumerate(words):
        if any(ch.isdigit() for ch in word):
            return " ".join(words[index:])
    return None
