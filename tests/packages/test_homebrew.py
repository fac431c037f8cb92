"""
Unit tests for the Homebrew integration.
"""

from unittest.mock import patch

import pytest

from provisionkit.core.exceptions import InstallError
from provisionkit.packages import HomebrewManager, ManagerKind, PackageSpec
from provisionkit.packages.homebrew import formula_name

RUN = "provisionkit.core.process.subprocess.run"


@pytest.fixture
def brew(fake_exe):
    return HomebrewManager(executable=fake_exe)


class TestFormulaName:
    """Test versioned formula naming."""

    def test_pinned(self):
        assert formula_name(PackageSpec("openssl", ManagerKind.HOMEBREW, "3")) == "openssl@3"

    def test_already_versioned(self):
        assert formula_name(PackageSpec("openssl@3", ManagerKind.HOMEBREW, "3")) == "openssl@3"

    def test_unpinned(self):
        assert formula_name(PackageSpec("boost", ManagerKind.HOMEBREW)) == "boost"


class TestHomebrew:
    """Test brew commands."""

    @patch(RUN)
    def test_installed(self, mock_run, brew, completed):
        mock_run.return_value = completed(0, stdout="log4cpp 1.1.4\n")

        assert brew.is_installed(PackageSpec("log4cpp", ManagerKind.HOMEBREW))
        assert mock_run.call_args.args[0][1:] == ["list", "--versions", "log4cpp"]

    @patch(RUN)
    def test_not_installed(self, mock_run, brew, completed):
        mock_run.return_value = completed(1)

        assert not brew.is_installed(PackageSpec("log4cpp", ManagerKind.HOMEBREW))

    @patch(RUN)
    def test_auto_update_disabled(self, mock_run, brew, completed):
        mock_run.return_value = completed(0)

        brew.install(PackageSpec("yaml-cpp", ManagerKind.HOMEBREW))

        assert mock_run.call_args.kwargs["env"]["HOMEBREW_NO_AUTO_UPDATE"] == "1"
        assert mock_run.call_args.args[0][1:] == ["install", "yaml-cpp"]

    @patch(RUN)
    def test_already_installed_tolerated(self, mock_run, brew, completed):
        mock_run.return_value = completed(
            1, stderr="Warning: boost 1.84.0 is already installed and up-to-date."
        )

        brew.install(PackageSpec("boost", ManagerKind.HOMEBREW))

    @patch(RUN)
    def test_refresh_runs_update(self, mock_run, brew, completed):
        mock_run.return_value = completed(0)

        brew.refresh()

        assert mock_run.call_args.args[0][1:] == ["update"]

    @patch(RUN)
    def test_refresh_failure(self, mock_run, brew, completed):
        mock_run.return_value = completed(1, stderr="fatal: unable to access")

        with pytest.raises(InstallError):
            brew.refresh()
