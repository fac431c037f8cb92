"""
Unit tests for platform detection and architecture mapping.
"""

from unittest.mock import patch

import pytest

from provisionkit.core.platform import (
    PlatformInfo,
    cmake_platform_name,
    detect_platform,
    msbuild_platform_name,
    normalize_arch,
    vcpkg_triplet,
)


class TestNormalizeArch:
    """Test architecture normalization."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("AMD64", "x64"),
            ("x86_64", "x64"),
            ("aarch64", "arm64"),
            ("arm64", "arm64"),
            ("Win32", "x86"),
            ("i686", "x86"),
            ("armv7l", "arm"),
        ],
    )
    def test_aliases(self, value, expected):
        assert normalize_arch(value) == expected

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown architecture"):
            normalize_arch("sparc")


class TestDetectPlatform:
    """Test host detection."""

    @patch("provisionkit.core.platform.platform.machine", return_value="AMD64")
    @patch("provisionkit.core.platform.platform.system", return_value="Windows")
    def test_windows(self, _system, _machine):
        info = detect_platform()

        assert info == PlatformInfo("windows", "x64")
        assert str(info) == "windows-x64"

    @patch("provisionkit.core.platform.platform.machine", return_value="arm64")
    @patch("provisionkit.core.platform.platform.system", return_value="Darwin")
    def test_macos(self, _system, _machine):
        assert detect_platform().platform_string() == "macos-arm64"

    @patch("provisionkit.core.platform.platform.system", return_value="Haiku")
    def test_unsupported_os(self, _system):
        with pytest.raises(RuntimeError):
            detect_platform()

    @patch("provisionkit.core.platform.platform.machine", return_value="riscv64")
    @patch("provisionkit.core.platform.platform.system", return_value="Linux")
    def test_unknown_arch_passed_through(self, _system, _machine):
        assert detect_platform().arch == "riscv64"


class TestToolSpellings:
    """Test per-tool architecture names."""

    def test_cmake_and_msbuild(self):
        assert cmake_platform_name("x86") == "Win32"
        assert msbuild_platform_name("arm64") == "ARM64"
        assert msbuild_platform_name("x64") == "x64"

    @pytest.mark.parametrize(
        "os_name,arch,triplet",
        [
            ("windows", "x64", "x64-windows"),
            ("windows", "x86", "x86-windows"),
            ("macos", "arm64", "arm64-osx"),
            ("linux", "x64", "x64-linux"),
        ],
    )
    def test_vcpkg_triplet(self, os_name, arch, triplet):
        assert vcpkg_triplet(os_name, arch) == triplet
