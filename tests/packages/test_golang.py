"""
Unit tests for the Go toolchain integration.
"""

import os
from unittest.mock import patch

import pytest

from provisionkit.core.filesystem import IS_WINDOWS
from provisionkit.packages import GoToolchainManager, ManagerKind, PackageSpec
from provisionkit.packages.golang import binary_name

RUN = "provisionkit.core.process.subprocess.run"
NFPM = "github.com/goreleaser/nfpm/v2/cmd/nfpm"


def go_spec(name=NFPM, version=None, executable=None):
    return PackageSpec(name, ManagerKind.LANGUAGE_TOOLCHAIN, version=version, executable=executable)


class TestBinaryName:
    """Test command names derived from package paths."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            (NFPM, "nfpm"),
            ("github.com/swaggo/swag/cmd/swag", "swag"),
            ("example.com/tool/v3", "tool"),
        ],
    )
    def test_derived(self, name, expected):
        assert binary_name(go_spec(name)) == expected

    def test_explicit(self):
        assert binary_name(go_spec(executable="goreleaser")) == "goreleaser"


@pytest.mark.skipif(IS_WINDOWS, reason="uses POSIX execute bits")
class TestGoManager:
    """Test presence checks and install commands."""

    @pytest.fixture
    def gopath(self, tmp_path):
        bin_dir = tmp_path / "gopath" / "bin"
        bin_dir.mkdir(parents=True)
        return tmp_path / "gopath"

    @pytest.fixture
    def go(self, fake_exe, gopath):
        return GoToolchainManager(executable=fake_exe, env={"GOPATH": str(gopath)})

    def _install_binary(self, gopath, name="nfpm"):
        binary = gopath / "bin" / name
        binary.write_text("")
        binary.chmod(0o755)
        return binary

    def test_absent_without_binary(self, go):
        with patch("provisionkit.packages.golang.find_executable", side_effect=[None, None]):
            assert not go.is_installed(go_spec())

    def test_present_unpinned(self, go, gopath):
        self._install_binary(gopath)

        assert go.is_installed(go_spec())

    @patch(RUN)
    def test_pinned_version_checked(self, mock_run, go, gopath, completed):
        binary = self._install_binary(gopath)
        mock_run.return_value = completed(
            0,
            stdout=(
                f"{binary}: go1.22.0\n"
                "\tpath\tgithub.com/goreleaser/nfpm/v2/cmd/nfpm\n"
                "\tmod\tgithub.com/goreleaser/nfpm/v2\tv2.35.3\th1:abc=\n"
            ),
        )

        assert go.is_installed(go_spec(version="v2.35.3"))
        assert not go.is_installed(go_spec(version="v2.36.0"))
        assert mock_run.call_args.args[0][1:] == ["version", "-m", str(binary)]

    @patch(RUN)
    def test_install_command(self, mock_run, go, completed):
        mock_run.return_value = completed(0)

        go.install(go_spec(version="v2.35.3"))

        assert mock_run.call_args.args[0][1:] == ["install", f"{NFPM}@v2.35.3"]

    @patch(RUN)
    def test_install_latest(self, mock_run, go, completed):
        mock_run.return_value = completed(0)

        go.install(go_spec())

        assert mock_run.call_args.args[0][-1] == f"{NFPM}@latest"

    def test_gobin_first(self, fake_exe, tmp_path):
        manager = GoToolchainManager(
            executable=fake_exe, env={"GOBIN": str(tmp_path / "gobin"), "GOPATH": str(tmp_path / "gp")}
        )

        assert manager.bin_dirs() == [tmp_path / "gobin", tmp_path / "gp" / "bin"]
