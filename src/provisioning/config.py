"""Provisioning configuration using pydantic-settings.

Settings are read from environment variables with the PROVISION_ prefix
(e.g. PROVISION_PACKAGE_MANAGER=apt). Nothing here is required: every
field has a default that reproduces the standard behavior of cloning a
repository and running its bootstrap.sh.

The settings object is passed explicitly to the orchestrator and its
collaborators; there is no module-level instance.
"""

import tempfile
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProvisioningSettings(BaseSettings):
    """Provisioning configuration from environment variables.

    All environment variables are prefixed with PROVISION_
    (e.g., PROVISION_CLONE_DEPTH, PROVISION_TEMP_ROOT).
    """

    model_config = SettingsConfigDict(
        env_prefix="PROVISION_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Bootstrap script
    # -------------------------------------------------------------------------
    # Filename looked up at the root of the cloned repository
    bootstrap_script_name: str = "bootstrap.sh"

    # Prefix prepended to every stderr line of the bootstrap script
    stderr_prefix: str = "ERROR: "

    # -------------------------------------------------------------------------
    # Workspace
    # -------------------------------------------------------------------------
    # Directory name prefix for temporary workspaces
    workspace_prefix: str = "bootstrap-"

    # Parent directory for workspaces; None means the OS temp root
    temp_root: Optional[str] = None

    # -------------------------------------------------------------------------
    # Version control client
    # -------------------------------------------------------------------------
    vcs_binary: str = "git"
    vcs_version_args: List[str] = ["--version"]

    # None clones full history; a positive value passes --depth
    clone_depth: Optional[int] = None

    # -------------------------------------------------------------------------
    # Package manager
    # -------------------------------------------------------------------------
    # "auto" picks a strategy for the current platform
    package_manager: Literal["auto", "homebrew", "apt"] = "auto"

    # Upper bound for --version probes; installs and the bootstrap
    # script are never time-limited
    version_check_timeout_seconds: int = 60

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # Optional Prometheus textfile written after each run
    metrics_file: Optional[str] = None

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("bootstrap_script_name", "workspace_prefix")
    @classmethod
    def validate_bare_name(cls, v: str) -> str:
        """Validate that names used inside the workspace are bare filenames."""
        if not v or not v.strip():
            raise ValueError("name cannot be empty")
        if "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError("name must not contain path separators")
        return v

    @field_validator("temp_root")
    @classmethod
    def validate_temp_root(cls, v: Optional[str]) -> Optional[str]:
        """Validate that an explicit temp root is an absolute path."""
        if v is None:
            return v
        if not Path(v).is_absolute():
            raise ValueError("temp_root must be an absolute path")
        return v

    @field_validator("clone_depth")
    @classmethod
    def validate_clone_depth(cls, v: Optional[int]) -> Optional[int]:
        """Validate that a shallow clone depth is positive."""
        if v is not None and v < 1:
            raise ValueError("clone_depth must be at least 1")
        return v

    @field_validator("version_check_timeout_seconds")
    @classmethod
    def validate_version_timeout(cls, v: int) -> int:
        """Validate that the version probe timeout is positive."""
        if v < 1:
            raise ValueError("version_check_timeout_seconds must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalise the log level name."""
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def workspace_root(self) -> Path:
        """Directory under which workspaces are created."""
        return Path(self.temp_root or tempfile.gettempdir())


def get_settings(**overrides) -> ProvisioningSettings:
    """Create a ProvisioningSettings instance.

    Reads the environment, then applies keyword overrides (used by the
    CLI for command-line flags).

    Returns:
        ProvisioningSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If a value is invalid.
    """
    return ProvisioningSettings(**{k: v for k, v in overrides.items() if v is not None})
