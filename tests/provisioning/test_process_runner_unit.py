"""Unit tests for the process runner.

Runs real sh children to check streaming order, exit codes, the
distinction between a failed start and a nonzero exit, timeouts and
cancellation.
"""

import asyncio
import os
import stat
import time
from typing import List

import pytest

from src.provisioning.errors import ProcessStartError
from src.provisioning.runner.process import (
    MAX_PENDING_CHARS,
    STDERR,
    STDOUT,
    OutputChunk,
    ProcessRunner,
    split_complete_lines,
)

pytestmark = pytest.mark.posix


def run_async(coro):
    return asyncio.run(coro)


class Collector:
    def __init__(self):
        self.chunks: List[OutputChunk] = []

    async def __call__(self, chunk: OutputChunk) -> None:
        self.chunks.append(chunk)

    @property
    def pairs(self):
        return [(c.stream, c.text) for c in self.chunks]


@pytest.fixture
def runner():
    return ProcessRunner()


class TestExitCodes:
    def test_zero_exit_is_success(self, runner):
        outcome = run_async(runner.run("sh", ["-c", "exit 0"]))

        assert outcome.exit_code == 0
        assert outcome.success is True
        assert outcome.timed_out is False

    def test_nonzero_exit_carries_code(self, runner):
        outcome = run_async(runner.run("sh", ["-c", "exit 3"]))

        assert outcome.exit_code == 3
        assert outcome.success is False

    def test_command_display_includes_args(self, runner):
        outcome = run_async(runner.run("sh", ["-c", "exit 0"]))

        assert outcome.command == "sh -c 'exit 0'"


class TestStartFailures:
    def test_missing_binary_raises_process_start_error(self, runner):
        with pytest.raises(ProcessStartError) as exc_info:
            run_async(runner.run("/nonexistent/definitely-not-a-binary"))

        assert isinstance(exc_info.value.cause, FileNotFoundError)
        assert "definitely-not-a-binary" in exc_info.value.message

    def test_non_executable_file_raises_process_start_error(self, runner, tmp_path):
        script = tmp_path / "not-executable.sh"
        script.write_text("#!/bin/sh\necho hi\n")
        script.chmod(stat.S_IRUSR | stat.S_IWUSR)

        with pytest.raises(ProcessStartError) as exc_info:
            run_async(runner.run(str(script)))

        assert isinstance(exc_info.value.cause, PermissionError)

    def test_missing_working_directory_raises_process_start_error(self, runner, tmp_path):
        with pytest.raises(ProcessStartError):
            run_async(runner.run("sh", ["-c", "exit 0"], cwd=str(tmp_path / "missing")))


class TestStreaming:
    def test_lines_are_forwarded_without_terminators(self, runner):
        collector = Collector()

        run_async(runner.run("sh", ["-c", "printf 'one\\ntwo\\r\\nthree'"], on_output=collector))

        assert collector.pairs == [
            (STDOUT, "one"),
            (STDOUT, "two"),
            (STDOUT, "three"),
        ]

    def test_interleaved_stdout_and_stderr_keep_production_order(self, runner):
        collector = Collector()
        script = (
            "echo out1; sleep 0.2; "
            "echo err1 >&2; sleep 0.2; "
            "echo out2; sleep 0.2; "
            "echo err2 >&2"
        )

        run_async(runner.run("sh", ["-c", script], on_output=collector))

        assert collector.pairs == [
            (STDOUT, "out1"),
            (STDERR, "err1"),
            (STDOUT, "out2"),
            (STDERR, "err2"),
        ]

    def test_stderr_chunks_are_tagged(self, runner):
        collector = Collector()

        run_async(runner.run("sh", ["-c", "echo warning >&2"], on_output=collector))

        assert len(collector.chunks) == 1
        assert collector.chunks[0].is_stderr

    def test_output_arrives_before_process_exits(self, runner):
        seen_at = []

        async def record(chunk):
            seen_at.append(time.monotonic())

        started = time.monotonic()
        outcome = run_async(
            runner.run("sh", ["-c", "echo early; sleep 1"], on_output=record)
        )

        assert outcome.success
        assert seen_at and seen_at[0] - started < 0.9

    def test_very_long_line_is_flushed_in_pieces(self, runner):
        collector = Collector()
        size = MAX_PENDING_CHARS * 3

        run_async(
            runner.run(
                "sh",
                ["-c", f"head -c {size} /dev/zero | tr '\\000' a"],
                on_output=collector,
            )
        )

        assert len(collector.chunks) > 1
        assert all(len(c.text) <= MAX_PENDING_CHARS + 4096 for c in collector.chunks)
        assert sum(len(c.text) for c in collector.chunks) == size

    def test_invalid_utf8_is_replaced(self, runner):
        collector = Collector()

        run_async(runner.run("sh", ["-c", "printf 'bad \\377 byte\\n'"], on_output=collector))

        assert collector.chunks[0].text == "bad � byte"

    def test_env_overrides_are_added_to_inherited_environment(self, runner):
        collector = Collector()

        run_async(
            runner.run(
                "sh",
                ["-c", 'echo "$PROVISION_TEST_VALUE:${PATH:+has-path}"'],
                env={"PROVISION_TEST_VALUE": "x"},
                on_output=collector,
            )
        )

        assert collector.pairs == [(STDOUT, "x:has-path")]

    def test_cwd_is_applied(self, runner, tmp_path):
        collector = Collector()

        run_async(runner.run("pwd", cwd=str(tmp_path), on_output=collector))

        assert os.path.realpath(collector.chunks[0].text) == os.path.realpath(str(tmp_path))

    def test_shell_mode_runs_command_string(self, runner):
        collector = Collector()

        outcome = run_async(
            runner.run("echo a && echo b", shell=True, on_output=collector)
        )

        assert outcome.success
        assert [c.text for c in collector.chunks] == ["a", "b"]


class TestTimeoutAndCancellation:
    def test_timeout_kills_process(self, runner):
        started = time.monotonic()

        outcome = run_async(runner.run("sleep", ["30"], timeout_seconds=0.5))

        assert outcome.timed_out is True
        assert outcome.success is False
        assert time.monotonic() - started < 10

    def test_cancellation_kills_child_and_propagates(self, runner, tmp_path):
        pid_file = tmp_path / "pid"

        async def scenario():
            task = asyncio.create_task(
                runner.run("sh", ["-c", f"echo $$ > {pid_file}; exec sleep 30"])
            )
            for _ in range(100):
                if pid_file.exists() and pid_file.read_text().strip():
                    break
                await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        run_async(scenario())

        pid = int(pid_file.read_text().strip())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)


class TestSplitCompleteLines:
    def test_keeps_unterminated_tail(self):
        assert split_complete_lines("a\nb\npartial") == (["a", "b"], "partial")

    def test_crlf_is_one_terminator(self):
        assert split_complete_lines("a\r\nb\r\n") == (["a", "b"], "")

    def test_lone_carriage_return_ends_a_line(self):
        assert split_complete_lines("10%\r20%\rdone\n") == (["10%", "20%", "done"], "")

    def test_trailing_carriage_return_waits_for_next_read(self):
        assert split_complete_lines("line\r") == ([], "line\r")

    def test_empty_lines_are_kept(self):
        assert split_complete_lines("\n\nx\n") == (["", "", "x"], "")
