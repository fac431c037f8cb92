"""
Platform detection for ProvisionKit.

Detects the host operating system and CPU architecture and maps architecture
names onto the spellings each native tool expects (CMake ``-A``, MSBuild
``/p:Platform``, vcpkg triplets).

Usage:
    from provisionkit.core.platform import detect_platform, normalize_arch

    info = detect_platform()
    print(info.platform_string())   # e.g. 'windows-x64'
    normalize_arch("AMD64")          # 'x64'
"""

import functools
import platform
from dataclasses import dataclass

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "win32": "x86",
}

SUPPORTED_ARCHES = ("x64", "x86", "arm64", "arm")


@dataclass(frozen=True)
class PlatformInfo:
    """
    Host platform information.

    Attributes:
        os: Operating system ('windows', 'linux', 'macos')
        arch: CPU architecture ('x64', 'arm64', 'x86', 'arm')
    """

    os: str
    arch: str

    def platform_string(self) -> str:
        return f"{self.os}-{self.arch}"

    def __str__(self) -> str:
        return self.platform_string()


def normalize_arch(value: str) -> str:
    """
    Normalize an architecture name.

    Args:
        value: Architecture as spelled by any tool ('AMD64', 'aarch64', 'Win32')

    Returns:
        Canonical architecture ('x64', 'arm64', 'x86', 'arm')

    Raises:
        ValueError: If the architecture is not recognized
    """
    key = value.strip().lower()
    if key in _ARCH_ALIASES:
        return _ARCH_ALIASES[key]
    if key.startswith("arm"):
        return "arm"
    raise ValueError(
        f"Unknown architecture '{value}'. Expected one of: {', '.join(SUPPORTED_ARCHES)}"
    )


@functools.lru_cache(maxsize=1)
def detect_platform() -> PlatformInfo:
    """
    Detect current platform information.

    This function is cached - it only runs detection once per process.
    """
    return PlatformInfo(os=_detect_os(), arch=_detect_architecture())


def _detect_os() -> str:
    system = platform.system().lower()

    if system == "windows":
        return "windows"
    elif system == "darwin":
        return "macos"
    elif system == "linux":
        return "linux"
    else:
        raise RuntimeError(f"Unsupported operating system: {system}")


def _detect_architecture() -> str:
    machine = platform.machine()
    try:
        return normalize_arch(machine)
    except ValueError:
        return machine.lower()


def cmake_platform_name(arch: str) -> str:
    """CMake ``-A`` value for Visual Studio generators."""
    return {"x64": "x64", "x86": "Win32", "arm64": "ARM64", "arm": "ARM"}[arch]


def msbuild_platform_name(arch: str) -> str:
    """MSBuild ``/p:Platform`` value."""
    return {"x64": "x64", "x86": "Win32", "arm64": "ARM64", "arm": "ARM"}[arch]


def vcpkg_triplet(os_name: str, arch: str) -> str:
    """
    Get vcpkg triplet for platform.

    Example:
        >>> vcpkg_triplet("windows", "x64")
        'x64-windows'
        >>> vcpkg_triplet("macos", "arm64")
        'arm64-osx'
    """
    os_part = {"windows": "windows", "macos": "osx", "linux": "linux"}.get(
        os_name, "linux"
    )
    return f"{arch}-{os_part}"


def clear_platform_cache() -> None:
    """Clear the cached platform detection (useful in tests)."""
    detect_platform.cache_clear()
