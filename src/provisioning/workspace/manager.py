"""Temporary workspace creation and removal.

Each run gets a fresh directory named from a fixed prefix, a millisecond
timestamp and a random suffix, so concurrent runs never collide.
Removal is recursive and forced: read-only entries (git object files)
are made writable and retried, and directories a script locked down
are opened up to their owner and removed again. A directory that still
cannot be removed is reported as a CleanupWarning value and never raised.
"""

import logging
import os
import shutil
import stat
import sys
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Set, Union

from src.provisioning.errors import CleanupWarning, WorkspaceError

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """A temporary directory owned by one provisioning run.

    Attributes:
        path: Absolute path of the directory.
        created_at: When the directory was created (UTC).
    """

    path: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class WorkspaceManager:
    """Creates and removes per-run workspaces.

    Attributes:
        root: Parent directory for workspaces.
        prefix: Directory name prefix.
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        prefix: str = "bootstrap-",
    ):
        self.root = Path(root) if root is not None else Path(tempfile.gettempdir())
        self.prefix = prefix

    def create(self) -> Workspace:
        """Allocate a new, empty, uniquely named workspace.

        The directory is created private to the current user (mode 0700).

        Returns:
            The created Workspace.

        Raises:
            WorkspaceError: If the directory cannot be created.
        """
        stamp = int(time.time() * 1000)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            # mkdtemp retries on name collisions, so concurrent runs are safe
            path = tempfile.mkdtemp(prefix=f"{self.prefix}{stamp}-", dir=self.root)
        except OSError as exc:
            raise WorkspaceError(self.root, exc) from exc

        workspace = Workspace(path=Path(path))
        logger.info("Created workspace", extra={"workspace": path})
        return workspace

    def cleanup(self, workspace: Workspace) -> Optional[CleanupWarning]:
        """Remove a workspace and everything in it.

        Safe to call more than once and on a directory that was never
        populated.

        Args:
            workspace: The workspace to remove.

        Returns:
            None when the directory is gone, otherwise a CleanupWarning.
        """
        path = workspace.path
        if not path.exists():
            return None

        errors: List[str] = []
        reopened: Set[str] = set()

        def force_remove(function, failed_path, exc_info):
            exc = exc_info if isinstance(exc_info, BaseException) else exc_info[1]
            try:
                _grant_owner(os.path.dirname(failed_path), stat.S_IWUSR | stat.S_IXUSR)
                if os.path.isdir(failed_path) and not os.path.islink(failed_path):
                    # Unreadable or unwritable directory: open it up and start over
                    if failed_path in reopened:
                        errors.append(f"{failed_path}: {exc}")
                        return
                    reopened.add(failed_path)
                    os.chmod(failed_path, stat.S_IRWXU)
                    _rmtree(failed_path, force_remove)
                elif function in _RETRYABLE:
                    if os.path.lexists(failed_path) and not os.path.islink(failed_path):
                        _grant_owner(failed_path, stat.S_IWUSR)
                    function(failed_path)
                else:
                    errors.append(f"{failed_path}: {exc}")
            except FileNotFoundError:
                pass
            except Exception as retry_exc:
                errors.append(f"{failed_path}: {retry_exc}")

        try:
            _rmtree(str(path), force_remove)
        except Exception as exc:
            errors.append(f"{path}: {exc}")

        if path.exists():
            reason = errors[0] if errors else "directory still exists"
            logger.warning(
                "Failed to remove workspace",
                extra={"workspace": str(path), "error": reason},
            )
            return CleanupWarning(path=path, reason=reason)

        logger.info("Removed workspace", extra={"workspace": str(path)})
        return None


_RETRYABLE = (os.unlink, os.remove, os.rmdir)


def _grant_owner(path: str, bits: int) -> None:
    os.chmod(path, os.stat(path).st_mode | bits)


def _rmtree(path: str, handler) -> None:
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=handler)
    else:
        shutil.rmtree(path, onerror=handler)
