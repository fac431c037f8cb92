"""
Unit tests for the Chocolatey integration.
"""

from unittest.mock import patch

import pytest

from provisionkit.core.exceptions import InstallError
from provisionkit.packages import ChocolateyManager, ManagerKind, PackageSpec

RUN = "provisionkit.core.process.subprocess.run"


@pytest.fixture
def choco(fake_exe):
    return ChocolateyManager(executable=fake_exe, timeout=60)


def spec(name="nasm", version=None):
    return PackageSpec(name, ManagerKind.CHOCOLATEY, version=version)


class TestChocolateyQuery:
    """Test installed-package queries."""

    @patch(RUN)
    def test_installed(self, mock_run, choco, completed):
        mock_run.return_value = completed(0, stdout="nasm|2.16.01\n")

        assert choco.is_installed(spec())
        command = mock_run.call_args.args[0]
        assert command[1:] == ["list", "--exact", "nasm", "--limit-output"]
        assert mock_run.call_args.kwargs["timeout"] == 60

    @patch(RUN)
    def test_version_mismatch(self, mock_run, choco, completed):
        mock_run.return_value = completed(0, stdout="cmake|3.26.0\n")

        assert not choco.is_installed(spec("cmake", "3.27.7"))

    @patch(RUN)
    def test_not_installed(self, mock_run, choco, completed):
        mock_run.return_value = completed(0, stdout="")

        assert not choco.is_installed(spec())


class TestChocolateyInstall:
    """Test installs and tolerated exit codes."""

    @patch(RUN)
    def test_install_command(self, mock_run, choco, completed):
        mock_run.return_value = completed(0)

        choco.install(PackageSpec("cmake", ManagerKind.CHOCOLATEY, "3.27.7", options=("--force",)))

        assert mock_run.call_args.args[0][1:] == [
            "install",
            "cmake",
            "-y",
            "--no-progress",
            "--version=3.27.7",
            "--force",
        ]

    @pytest.mark.parametrize("code", [1641, 3010])
    @patch(RUN)
    def test_reboot_codes_tolerated(self, mock_run, code, choco, completed):
        """Test that reboot-required exits count as success."""
        mock_run.return_value = completed(code, stdout="reboot required")

        result = choco.install(spec())

        assert result.exit_code == code

    @patch(RUN)
    def test_already_installed_tolerated(self, mock_run, choco, completed):
        mock_run.return_value = completed(1, stdout="nasm v2.16.01 already installed.")

        choco.install(spec())

    @patch(RUN)
    def test_failure_raises(self, mock_run, choco, completed):
        mock_run.return_value = completed(1, stderr="The package was not found")

        with pytest.raises(InstallError) as exc_info:
            choco.install(spec())

        assert exc_info.value.exit_code == 1
        assert exc_info.value.manager == "chocolatey"
        assert "not found" in exc_info.value.diagnostic

    def test_no_refresh_needed(self, choco):
        assert choco.refresh_command() is None
