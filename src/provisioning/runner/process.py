"""External command execution with live output streaming.

Runs one command as an async subprocess, forwards stdout and stderr line
by line to a caller-supplied callback as the bytes arrive, and resolves
with the exit status. Nothing is accumulated beyond the current partial
line, so commands that print a lot of output (package installs,
bootstrap scripts) do not grow memory.

A command that cannot be started raises ProcessStartError; a command
that starts and exits nonzero returns a ProcessOutcome with that code.
"""

import asyncio
import codecs
import logging
import os
import re
import shlex
import signal
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from src.provisioning.errors import ProcessStartError

logger = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"

READ_CHUNK_BYTES = 4096
MAX_PENDING_CHARS = 16384

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class OutputChunk:
    """One line of output from a running command.

    Attributes:
        stream: STDOUT or STDERR.
        text: The line without its trailing line terminator.
    """

    stream: str
    text: str

    @property
    def is_stderr(self) -> bool:
        return self.stream == STDERR


@dataclass
class ProcessOutcome:
    """Exit status of a finished command.

    Output is not retained here; it has already been forwarded.

    Attributes:
        command: Display form of the command line.
        exit_code: Process exit code (negative when killed by a signal).
        duration_seconds: Wall-clock execution time.
        timed_out: True when the runner killed the process on timeout.
    """

    command: str
    exit_code: int
    duration_seconds: float
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


OutputCallback = Callable[[OutputChunk], Awaitable[None]]


class ProcessRunner:
    """Spawns external commands and streams their output.

    The runner never blocks the event loop: output is consumed with
    asyncio stream readers and the caller awaits completion.

    Attributes:
        read_chunk_bytes: Bytes requested per read from each pipe.
    """

    def __init__(self, read_chunk_bytes: int = READ_CHUNK_BYTES):
        self.read_chunk_bytes = read_chunk_bytes

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        shell: bool = False,
        on_output: Optional[OutputCallback] = None,
        timeout_seconds: Optional[float] = None,
    ) -> ProcessOutcome:
        """Run a command to completion, streaming its output.

        Args:
            command: Executable name or path. With shell=True, a shell
                command string.
            args: Arguments passed as an explicit argument vector.
            cwd: Working directory for the child process.
            env: Variables added on top of the inherited environment.
            shell: Run through /bin/sh. Only for fixed command strings.
            on_output: Awaited once per output line, in arrival order.
            timeout_seconds: Kill the process after this many seconds.
                None means no limit.

        Returns:
            ProcessOutcome with the exit code.

        Raises:
            ProcessStartError: If the command could not be started.
        """
        display = self._display_command(command, args)
        start_time = time.monotonic()

        process = await self._start_process(command, args, cwd, env, shell, display)

        try:
            await asyncio.wait_for(
                self._stream_until_exit(process, on_output),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self._terminate(process)
            duration = time.monotonic() - start_time
            logger.warning(
                "Command timed out",
                extra={"command": display, "timeout": timeout_seconds},
            )
            return ProcessOutcome(
                command=display,
                exit_code=process.returncode if process.returncode is not None else -1,
                duration_seconds=duration,
                timed_out=True,
            )
        except asyncio.CancelledError:
            logger.info("Command cancelled", extra={"command": display})
            await self._terminate(process)
            raise

        duration = time.monotonic() - start_time
        exit_code = process.returncode if process.returncode is not None else -1
        logger.debug(
            "Command finished",
            extra={
                "command": display,
                "exit_code": exit_code,
                "duration": round(duration, 3),
            },
        )
        return ProcessOutcome(
            command=display,
            exit_code=exit_code,
            duration_seconds=duration,
        )

    async def _start_process(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[str],
        env: Optional[Mapping[str, str]],
        shell: bool,
        display: str,
    ) -> asyncio.subprocess.Process:
        """Launch the child with piped stdout/stderr and no stdin.

        Raises:
            ProcessStartError: If the OS refuses to start the process.
        """
        child_env = self._build_env(env)
        options = {
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": cwd,
            "env": child_env,
        }
        if os.name == "posix":
            # Own process group so the whole tree can be killed on cancel
            options["start_new_session"] = True

        logger.debug("Starting command", extra={"command": display, "cwd": cwd})

        try:
            if shell:
                return await asyncio.create_subprocess_shell(display, **options)
            return await asyncio.create_subprocess_exec(command, *args, **options)
        except OSError as exc:
            logger.info(
                "Command could not start",
                extra={"command": display, "error": str(exc)},
            )
            raise ProcessStartError(command, exc) from exc

    async def _stream_until_exit(
        self,
        process: asyncio.subprocess.Process,
        on_output: Optional[OutputCallback],
    ) -> None:
        """Pump both pipes concurrently, then wait for the exit status."""
        await asyncio.gather(
            self._pump(process.stdout, STDOUT, on_output),
            self._pump(process.stderr, STDERR, on_output),
        )
        await process.wait()

    async def _pump(
        self,
        stream: Optional[asyncio.StreamReader],
        stream_name: str,
        on_output: Optional[OutputCallback],
    ) -> None:
        """Read one pipe to EOF, forwarding each completed line."""
        if stream is None:
            return

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""

        while True:
            data = await stream.read(self.read_chunk_bytes)
            if not data:
                break
            pending += decoder.decode(data)
            lines, pending = split_complete_lines(pending)
            for line in lines:
                await self._forward(stream_name, line, on_output)
            if len(pending) > MAX_PENDING_CHARS:
                await self._forward(stream_name, pending, on_output)
                pending = ""

        pending += decoder.decode(b"", final=True)
        if pending:
            await self._forward(stream_name, pending.rstrip("\r"), on_output)

    async def _forward(
        self,
        stream_name: str,
        line: str,
        on_output: Optional[OutputCallback],
    ) -> None:
        logger.debug("%s: %s", stream_name, line)
        if on_output is not None:
            await on_output(OutputChunk(stream=stream_name, text=line))

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Kill the child (and its process group) and reap it."""
        if process.returncode is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    @staticmethod
    def _build_env(overrides: Optional[Mapping[str, str]]) -> Dict[str, str]:
        env = dict(os.environ)
        if overrides:
            env.update(overrides)
        return env

    @staticmethod
    def _display_command(command: str, args: Sequence[str]) -> str:
        if not args:
            return command
        return " ".join([command, shlex.join(list(args))])


def split_complete_lines(buffer: str) -> Tuple[List[str], str]:
    """Split a text buffer into finished lines and a trailing remainder.

    Lines end at \\n, \\r\\n or a lone \\r. A \\r at the very end of the
    buffer stays in the remainder because the matching \\n may arrive
    with the next read.

    Args:
        buffer: Decoded text accumulated from a pipe.

    Returns:
        Tuple of (lines without terminators, unfinished remainder).
    """
    lines: List[str] = []
    start = 0
    for match in _LINE_BREAK.finditer(buffer):
        if match.group() == "\r" and match.end() == len(buffer):
            break
        lines.append(buffer[start:match.start()])
        start = match.end()
    return lines, buffer[start:]
