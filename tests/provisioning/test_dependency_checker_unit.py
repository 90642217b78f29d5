"""Unit tests for tool presence detection."""

import asyncio
import stat

import pytest

from fakes import RecordingRunner
from src.provisioning.dependencies.checker import (
    DependencyChecker,
    parse_version_line,
)
from src.provisioning.runner.process import ProcessRunner


def run_async(coro):
    return asyncio.run(coro)


def write_tool(directory, name, body):
    path = directory / name
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(stat.S_IRWXU)
    return str(path)


@pytest.mark.posix
class TestCheckToolWithRealProcesses:
    """Probes fake tools written as small sh scripts."""

    def test_installed_tool_reports_version(self, tmp_path):
        tool = write_tool(tmp_path, "git", 'echo "git version 2.39.3 (Apple Git-146)"')
        checker = DependencyChecker(ProcessRunner())

        status = run_async(checker.check_tool(tool))

        assert status.installed is True
        assert status.version == "2.39.3 (Apple Git-146)"
        assert status.message == f"{tool} is installed (2.39.3 (Apple Git-146))"

    def test_stderr_warnings_do_not_matter(self, tmp_path):
        tool = write_tool(
            tmp_path,
            "git",
            'echo "warning: locale not set" >&2\necho "git version 2.40.0"',
        )
        checker = DependencyChecker(ProcessRunner())

        status = run_async(checker.check_tool(tool))

        assert status.installed is True
        assert status.version == "2.40.0"

    def test_missing_tool_is_not_installed(self, tmp_path):
        checker = DependencyChecker(ProcessRunner())
        missing = str(tmp_path / "no-such-tool")

        status = run_async(checker.check_tool(missing))

        assert status.installed is False
        assert status.message == f"{missing} is not installed"

    def test_nonzero_version_check_is_not_installed(self, tmp_path):
        tool = write_tool(tmp_path, "git", "exit 1")
        checker = DependencyChecker(ProcessRunner())

        status = run_async(checker.check_tool(tool))

        assert status.installed is False
        assert "exited with code 1" in status.message

    def test_hanging_tool_times_out(self, tmp_path):
        tool = write_tool(tmp_path, "git", "sleep 30")
        checker = DependencyChecker(ProcessRunner(), timeout_seconds=0.5)

        status = run_async(checker.check_tool(tool))

        assert status.installed is False
        assert "did not respond" in status.message

    def test_installed_tool_without_output_has_no_version(self, tmp_path):
        tool = write_tool(tmp_path, "quiet", "exit 0")
        checker = DependencyChecker(ProcessRunner())

        status = run_async(checker.check_tool(tool))

        assert status.installed is True
        assert status.version is None
        assert status.message == f"{tool} is installed"


class TestCheckToolArguments:
    def test_passes_version_args_and_timeout(self):
        runner = RecordingRunner()
        checker = DependencyChecker(runner, timeout_seconds=5)

        run_async(checker.check_tool("brew", ("--version",)))

        assert runner.calls[0]["command"] == "brew"
        assert runner.calls[0]["args"] == ["--version"]
        assert runner.calls[0]["timeout_seconds"] == 5

    def test_custom_version_args(self):
        runner = RecordingRunner()
        checker = DependencyChecker(runner)

        run_async(checker.check_tool("hg", ("version", "-q")))

        assert runner.calls[0]["args"] == ["version", "-q"]


class TestParseVersionLine:
    @pytest.mark.parametrize(
        "line,expected",
        [
            ("git version 2.39.3 (Apple Git-146)", "2.39.3 (Apple Git-146)"),
            ("Homebrew 4.2.0", "4.2.0"),
            ("apt 2.6.1 (amd64)", "2.6.1 (amd64)"),
            ("1.2.3", "1.2.3"),
            ("no version here", None),
            ("", None),
        ],
    )
    def test_extracts_text_from_first_versioned_word(self, line, expected):
        assert parse_version_line(line) == expected
