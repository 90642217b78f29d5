"""Package manager strategies for installing a missing tool.

Each strategy knows how to detect its package manager, how to bootstrap
it when absent, and how to install a package with it. The installer
drives the two phases; strategies only describe commands.

- HomebrewStrategy: macOS (and Linuxbrew). Bootstraps with the official
  install script in non-interactive mode.
- AptStrategy: Debian-family Linux. apt-get cannot be bootstrapped, so
  its absence fails the package manager phase. Package lists are
  refreshed before every install.

Only the Homebrew bootstrap goes through a shell, and its command string
is a constant: no repository URL or other user input reaches it.
"""

import os
import shutil
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

HOMEBREW_INSTALL_SCRIPT_URL = (
    "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
)

# Where the Homebrew installer puts brew; none of these are guaranteed
# to be on PATH in the current process after a fresh install
HOMEBREW_PREFIX_BINARIES = (
    "/opt/homebrew/bin/brew",
    "/usr/local/bin/brew",
    "/home/linuxbrew/.linuxbrew/bin/brew",
)


@dataclass(frozen=True)
class CommandSpec:
    """A command a strategy wants the installer to run.

    Attributes:
        command: Executable, or the full command string when shell=True.
        args: Argument vector for non-shell commands.
        shell: Run through /bin/sh. Only used for constant strings.
        env: Extra environment variables for the child.
    """

    command: str
    args: Tuple[str, ...] = ()
    shell: bool = False
    env: Dict[str, str] = field(default_factory=dict)


class InstallStrategy(ABC):
    """A package manager that can install the version-control client.

    Attributes:
        name: Setting value that selects the strategy.
        display_name: Human-readable package manager name.
        manager_version_args: Arguments for the manager's version probe.
    """

    name: str = ""
    display_name: str = ""
    manager_version_args: Tuple[str, ...] = ("--version",)

    @abstractmethod
    def manager_binary(self) -> str:
        """Return the executable used to probe and drive the manager."""

    @abstractmethod
    def bootstrap_command(self) -> Optional[CommandSpec]:
        """Return the command that installs the manager, or None if it cannot be installed."""

    @abstractmethod
    def install_command(self, package: str, manager_binary: str) -> CommandSpec:
        """Return the command that installs one package."""

    def refresh_command(self, manager_binary: str) -> Optional[CommandSpec]:
        """Return the command that refreshes package metadata before an install, if any."""
        return None

    def manual_hints(self, tool: str) -> List[str]:
        """Return manual installation steps shown when installation fails."""
        return [f"Install {tool} manually, then run the provisioning again"]

    def package_for(self, tool: str) -> str:
        """Map a tool name to the package that provides it."""
        return tool


class HomebrewStrategy(InstallStrategy):
    """Installs tools with Homebrew, bootstrapping Homebrew when absent."""

    name = "homebrew"
    display_name = "Homebrew"

    def __init__(self, which: Callable[[str], Optional[str]] = shutil.which):
        self._which = which

    def manager_binary(self) -> str:
        found = self._which("brew")
        if found:
            return found
        for candidate in HOMEBREW_PREFIX_BINARIES:
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate
        return "brew"

    def bootstrap_command(self) -> Optional[CommandSpec]:
        return CommandSpec(
            command=f'/bin/bash -c "$(curl -fsSL {HOMEBREW_INSTALL_SCRIPT_URL})"',
            shell=True,
            env={"NONINTERACTIVE": "1"},
        )

    def install_command(self, package: str, manager_binary: str) -> CommandSpec:
        return CommandSpec(
            command=manager_binary,
            args=("install", package),
            env={"HOMEBREW_NO_AUTO_UPDATE": "1"},
        )

    def manual_hints(self, tool: str) -> List[str]:
        hints = []
        if sys.platform == "darwin" and tool == "git":
            hints.append("Open Terminal and run: xcode-select --install")
        hints.extend(
            [
                f"Or install Homebrew from https://brew.sh and run: brew install {self.package_for(tool)}",
                "Run the provisioning again after the installation finishes",
            ]
        )
        return hints


class AptStrategy(InstallStrategy):
    """Installs tools with apt-get on Debian-family systems.

    Attributes:
        use_sudo: Prefix apt-get commands with non-interactive sudo.
            Defaults to True unless running as root.
    """

    name = "apt"
    display_name = "apt"

    def __init__(self, use_sudo: Optional[bool] = None):
        if use_sudo is None:
            use_sudo = hasattr(os, "geteuid") and os.geteuid() != 0
        self.use_sudo = use_sudo

    def manager_binary(self) -> str:
        return "apt-get"

    def bootstrap_command(self) -> Optional[CommandSpec]:
        return None

    def refresh_command(self, manager_binary: str) -> Optional[CommandSpec]:
        # Fresh images ship without package lists
        return self._command([manager_binary, "update"])

    def install_command(self, package: str, manager_binary: str) -> CommandSpec:
        return self._command([manager_binary, "install", "-y", package])

    def _command(self, argv: List[str]) -> CommandSpec:
        if self.use_sudo:
            argv = ["sudo", "-n"] + argv
        return CommandSpec(
            command=argv[0],
            args=tuple(argv[1:]),
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )

    def manual_hints(self, tool: str) -> List[str]:
        return [
            f"Run: sudo apt-get update && sudo apt-get install -y {self.package_for(tool)}",
            "Run the provisioning again after the installation finishes",
        ]


STRATEGIES: Dict[str, type] = {
    HomebrewStrategy.name: HomebrewStrategy,
    AptStrategy.name: AptStrategy,
}


def select_strategy(
    name: str = "auto",
    platform: Optional[str] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> InstallStrategy:
    """Pick the install strategy for a setting value and platform.

    "auto" chooses Homebrew on macOS, apt on Linux when apt-get is on
    PATH, and Homebrew everywhere else.

    Args:
        name: "auto", "homebrew" or "apt".
        platform: sys.platform value; defaults to the running platform.
        which: PATH lookup function, replaceable in tests.

    Returns:
        A new strategy instance.

    Raises:
        ValueError: If the name is not a known strategy.
    """
    if name == "auto":
        platform = platform or sys.platform
        if platform.startswith("linux") and which("apt-get"):
            return AptStrategy()
        return HomebrewStrategy(which=which)

    strategy_cls = STRATEGIES.get(name)
    if strategy_cls is None:
        raise ValueError(
            f"Unknown package manager {name!r}, expected one of: "
            f"auto, {', '.join(sorted(STRATEGIES))}"
        )
    if strategy_cls is HomebrewStrategy:
        return HomebrewStrategy(which=which)
    return strategy_cls()


def resolve_tool_path(
    tool: str,
    manager_binary: str,
    which: Callable[..., Optional[str]] = shutil.which,
) -> str:
    """Locate a freshly installed tool.

    The package manager's bin directory may not be on PATH yet in this
    process, so it is searched as a fallback.
    """
    found = which(tool)
    if found:
        return found
    manager_dir = os.path.dirname(manager_binary)
    if manager_dir:
        found = which(tool, path=manager_dir)
        if found:
            return found
    return tool


def command_display(spec: CommandSpec) -> str:
    """Short form of a command for log lines."""
    if spec.shell:
        return spec.command
    parts: Sequence[str] = (spec.command,) + spec.args
    return " ".join(parts)
