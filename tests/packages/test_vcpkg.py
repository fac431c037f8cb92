"""
Unit tests for the vcpkg integration.
"""

from unittest.mock import patch

import pytest

from provisionkit.packages import ManagerKind, PackageSpec, VcpkgManager

RUN = "provisionkit.core.process.subprocess.run"


@pytest.fixture
def vcpkg(fake_exe):
    return VcpkgManager(executable=fake_exe, os_name="windows", arch="x64")


class TestTriplet:
    """Test triplet selection."""

    def test_derived_from_target(self, vcpkg):
        assert vcpkg.get_triplet(PackageSpec("openssl", ManagerKind.VCPKG)) == "x64-windows"

    def test_override(self, vcpkg):
        spec = PackageSpec("openssl", ManagerKind.VCPKG, triplet="x64-windows-static")
        assert vcpkg.get_triplet(spec) == "x64-windows-static"


class TestVcpkgQuery:
    """Test vcpkg list parsing."""

    @patch(RUN)
    def test_exact_match(self, mock_run, vcpkg, completed):
        mock_run.return_value = completed(
            0,
            stdout=(
                "openssl-extra:x64-windows   1.0   something\n"
                "openssl:x64-windows          3.1.2#1  OpenSSL is an open source project\n"
            ),
        )

        assert vcpkg.is_installed(PackageSpec("openssl", ManagerKind.VCPKG))
        assert vcpkg.is_installed(PackageSpec("openssl", ManagerKind.VCPKG, version="3.1.2"))
        assert not vcpkg.is_installed(PackageSpec("openssl", ManagerKind.VCPKG, version="3.0.0"))
        assert mock_run.call_args.args[0][1:] == ["list", "openssl:x64-windows"]

    @patch(RUN)
    def test_substring_not_matched(self, mock_run, vcpkg, completed):
        mock_run.return_value = completed(0, stdout="openssl-extra:x64-windows 1.0 x\n")

        assert not vcpkg.is_installed(PackageSpec("openssl", ManagerKind.VCPKG))

    @patch(RUN)
    def test_install_command(self, mock_run, vcpkg, completed):
        mock_run.return_value = completed(0)

        vcpkg.install(PackageSpec("cpprestsdk", ManagerKind.VCPKG, options=("--recurse",)))

        assert mock_run.call_args.args[0][1:] == ["install", "cpprestsdk:x64-windows", "--recurse"]


class TestFindRoot:
    """Test vcpkg root discovery."""

    def test_explicit_root(self, tmp_path):
        manager = VcpkgManager(vcpkg_root=tmp_path, os_name="linux", arch="x64")
        assert manager.find_root() == tmp_path

    def test_explicit_root_missing(self, tmp_path):
        manager = VcpkgManager(vcpkg_root=tmp_path / "nope", os_name="linux", arch="x64")
        assert manager.find_root() is None
        assert manager.locate() is None

    def test_env_root(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VCPKG_ROOT", str(tmp_path))
        manager = VcpkgManager(os_name="linux", arch="x64")

        assert manager.find_root() == tmp_path
