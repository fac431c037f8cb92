"""
Package manager integrations for ProvisionKit.

Available Components:
--------------------
- PackageManager: Abstract base class for package manager implementations
- PackageSpec / ManagerKind: What to install and with which manager
- ChocolateyManager, HomebrewManager, VcpkgManager, GoToolchainManager
- PackageInstaller: Probe-first installation facade

Example Usage:
-------------
    from provisionkit.packages import PackageInstaller, PackageSpec, ManagerKind

    installer = PackageInstaller.for_platform(os_name="macos", arch="arm64")
    installer.install(PackageSpec("yaml-cpp", ManagerKind.HOMEBREW))
"""

from provisionkit.packages.base import ManagerKind, PackageManager, PackageSpec
from provisionkit.packages.chocolatey import ChocolateyManager
from provisionkit.packages.golang import GoToolchainManager
from provisionkit.packages.homebrew import HomebrewManager
from provisionkit.packages.installer import InstallOutcome, PackageInstaller
from provisionkit.packages.vcpkg import VcpkgManager

__all__ = [
    "ManagerKind",
    "PackageManager",
    "PackageSpec",
    "ChocolateyManager",
    "GoToolchainManager",
    "HomebrewManager",
    "VcpkgManager",
    "InstallOutcome",
    "PackageInstaller",
]
