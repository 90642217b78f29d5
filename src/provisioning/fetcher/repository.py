"""Repository cloning.

Runs ``git clone`` as a child process with an explicit argument vector;
the URL never passes through a shell. Progress output from git is
forwarded line by line. Clones are full (no --depth) unless a depth is
configured, so bootstrap scripts can rely on history and tags.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from src.provisioning.errors import CloneError, ProcessStartError
from src.provisioning.runner.process import OutputCallback, OutputChunk, ProcessRunner

logger = logging.getLogger(__name__)

# A clone that needs credentials fails instead of waiting on a prompt
CLONE_ENV = {"GIT_TERMINAL_PROMPT": "0"}

# Keeps the failure message short when git prints a lot before failing
ERROR_TAIL_LINES = 5


class RepositoryFetcher:
    """Clones remote repositories into workspace directories.

    Attributes:
        runner: Process runner for git.
        vcs_binary: Path or name of the git executable.
        clone_depth: Pass --depth N when set; None clones full history.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        vcs_binary: str = "git",
        clone_depth: Optional[int] = None,
    ):
        self.runner = runner
        self.vcs_binary = vcs_binary
        self.clone_depth = clone_depth

    async def clone(
        self,
        url: str,
        dest_dir: Union[str, Path],
        on_output: Optional[OutputCallback] = None,
        vcs_binary: Optional[str] = None,
    ) -> None:
        """Clone a repository's default branch into dest_dir.

        Args:
            url: Validated http(s) repository URL.
            dest_dir: Target directory. Must be empty or absent.
            on_output: Receives each output line of git.
            vcs_binary: Overrides the configured git executable, e.g. one
                just installed outside PATH.

        Raises:
            CloneError: If git cannot be started or exits nonzero.
        """
        binary = vcs_binary or self.vcs_binary
        stderr_tail: List[str] = []

        async def forward(chunk: OutputChunk) -> None:
            if chunk.is_stderr and chunk.text.strip():
                stderr_tail.append(chunk.text.strip())
                del stderr_tail[:-ERROR_TAIL_LINES]
            if on_output is not None:
                await on_output(chunk)

        args = self.build_clone_args(url, dest_dir)
        logger.info(
            "Cloning repository",
            extra={"url": url, "target": str(dest_dir)},
        )

        try:
            outcome = await self.runner.run(
                binary,
                args,
                env=CLONE_ENV,
                on_output=forward,
            )
        except ProcessStartError as exc:
            raise CloneError(url, f"failed to execute {binary}: {exc.cause}") from exc

        if not outcome.success:
            detail = stderr_tail[-1] if stderr_tail else "no error output"
            raise CloneError(
                url,
                f"{binary} exited with code {outcome.exit_code}: {detail}",
                exit_code=outcome.exit_code,
            )

        logger.info(
            "Cloned repository",
            extra={"url": url, "target": str(dest_dir)},
        )

    def build_clone_args(self, url: str, dest_dir: Union[str, Path]) -> List[str]:
        """Build the git argument vector for a clone.

        "--" ends option parsing so a URL can never be read as a flag.
        """
        args = ["clone"]
        if self.clone_depth is not None:
            args.extend(["--depth", str(self.clone_depth)])
        args.extend(["--", url, str(dest_dir)])
        return args
