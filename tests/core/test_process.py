"""
Unit tests for external process invocation.
"""

import subprocess
from unittest.mock import patch

import pytest

from provisionkit.core.exceptions import CommandTimeout
from provisionkit.core.process import EXIT_NOT_FOUND, CommandResult, run_command, tail


class TestTail:
    """Test output tails."""

    def test_last_lines(self):
        text = "\n".join(f"line {i}" for i in range(100))

        assert tail(text, 3) == "line 97\nline 98\nline 99"

    def test_bytes_and_empty(self):
        assert tail(b"a\nb\n") == "a\nb"
        assert tail(None) == ""
        assert tail("") == ""


class TestCommandResult:
    """Test CommandResult helpers."""

    def test_output_tail_falls_back_to_stdout(self):
        result = CommandResult(["/usr/bin/make"], 2, stdout="out", stderr="")

        assert not result.ok
        assert result.output_tail == "out"
        assert result.tool == "make"

    def test_stderr_preferred(self):
        result = CommandResult(["make"], 2, stdout="out", stderr="err")
        assert result.output_tail == "err"


class TestRunCommand:
    """Test run_command with a mocked subprocess."""

    @patch("provisionkit.core.process.subprocess.run")
    def test_success(self, mock_run, completed, tmp_path):
        mock_run.return_value = completed(0, stdout="cmake version 3.28.1\n")

        result = run_command(["cmake", "--version"], cwd=tmp_path, timeout=30)

        assert result.ok
        assert result.stdout.startswith("cmake version")
        args, kwargs = mock_run.call_args
        assert args[0] == ["cmake", "--version"]
        assert kwargs["timeout"] == 30
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["env"] is None

    @patch("provisionkit.core.process.subprocess.run")
    def test_env_layered_on_process_environment(self, mock_run, completed, monkeypatch):
        monkeypatch.setenv("EXISTING", "1")
        mock_run.return_value = completed(0)

        run_command(["make"], env={"CXXFLAGS": "-O2"})

        env = mock_run.call_args.kwargs["env"]
        assert env["CXXFLAGS"] == "-O2"
        assert env["EXISTING"] == "1"

    @patch("provisionkit.core.process.subprocess.run")
    def test_nonzero_exit(self, mock_run, completed):
        mock_run.return_value = completed(1, stderr="error: boom\n")

        result = run_command(["make"])

        assert result.exit_code == 1
        assert result.stderr_tail == "error: boom"

    @patch("provisionkit.core.process.subprocess.run", side_effect=FileNotFoundError("no such file"))
    def test_missing_executable(self, _mock_run):
        result = run_command(["no-such-tool"])

        assert result.exit_code == EXIT_NOT_FOUND
        assert "no such file" in result.stderr

    @patch("provisionkit.core.process.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["msbuild"], 5, stderr=b"still building")

        with pytest.raises(CommandTimeout) as exc_info:
            run_command(["msbuild"], timeout=5)

        assert exc_info.value.timeout == 5
        assert exc_info.value.diagnostic == "still building"

    def test_paths_stringified(self, tmp_path):
        with patch("provisionkit.core.process.subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess([], 0, "", "")
            run_command([tmp_path / "tool", "--flag"])

        assert mock_run.call_args.args[0] == [str(tmp_path / "tool"), "--flag"]
