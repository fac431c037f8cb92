"""
Package installation facade.

:class:`PackageInstaller` routes a :class:`PackageSpec` to its manager, always
probing first and invoking the manager only when the package is absent.

Example:
    installer = PackageInstaller.for_platform(os_name="windows", arch="x64")
    outcome = installer.install(PackageSpec("nasm", ManagerKind.CHOCOLATEY))
    if outcome is InstallOutcome.ALREADY_PRESENT:
        print("nothing to do")
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Optional, Set

from provisionkit.core.process import DEFAULT_TIMEOUT
from provisionkit.probe import PackageProbe, ProbeResult, probe
from provisionkit.packages.base import ManagerKind, PackageManager, PackageSpec
from provisionkit.packages.chocolatey import ChocolateyManager
from provisionkit.packages.golang import GoToolchainManager
from provisionkit.packages.homebrew import HomebrewManager
from provisionkit.packages.vcpkg import VcpkgManager

logger = logging.getLogger(__name__)


class InstallOutcome(Enum):
    INSTALLED = "installed"
    ALREADY_PRESENT = "already-present"


class PackageInstaller:
    """
    Installs packages through registered package managers.

    Attributes:
        managers: Registered managers keyed by kind
    """

    def __init__(self, managers: Iterable[PackageManager] = ()):
        self.managers: Dict[ManagerKind, PackageManager] = {}
        self._refreshed: Set[ManagerKind] = set()
        for manager in managers:
            self.register(manager)

    @classmethod
    def for_platform(
        cls,
        os_name: str,
        arch: str,
        vcpkg_root: Optional[Path] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "PackageInstaller":
        """Create an installer with every built-in manager registered."""
        return cls(
            [
                ChocolateyManager(timeout=timeout),
                HomebrewManager(timeout=timeout),
                VcpkgManager(vcpkg_root=vcpkg_root, os_name=os_name, arch=arch, timeout=timeout),
                GoToolchainManager(timeout=timeout),
            ]
        )

    def register(self, manager: PackageManager) -> None:
        if not isinstance(manager, PackageManager):
            raise TypeError(
                f"manager must be PackageManager instance, got {type(manager)}"
            )
        self.managers[manager.kind] = manager

    def manager_for(self, spec: PackageSpec) -> PackageManager:
        try:
            return self.managers[spec.manager]
        except KeyError:
            raise ValueError(f"No package manager registered for {spec.manager.value}")

    def probe(self, spec: PackageSpec) -> ProbeResult:
        return probe(PackageProbe(self.manager_for(spec), spec))

    def install(self, spec: PackageSpec) -> InstallOutcome:
        """
        Install ``spec`` unless it is already present.

        Raises:
            InstallError: If the manager reports a failure
            ToolNotFoundError: If the manager itself is missing
            CommandTimeout: If the manager does not finish in time
        """
        if self.probe(spec) is ProbeResult.PRESENT:
            logger.info(f"{spec} already installed ({spec.manager.value})")
            return InstallOutcome.ALREADY_PRESENT

        self.manager_for(spec).install(spec)
        return InstallOutcome.INSTALLED

    def refresh(self, spec: PackageSpec, once: bool = False) -> None:
        """
        Refresh the state of the manager owning ``spec``.

        Args:
            spec: Package whose manager is refreshed
            once: Skip the refresh if this installer already refreshed the manager
        """
        if once and spec.manager in self._refreshed:
            return
        self.manager_for(spec).refresh()
        self._refreshed.add(spec.manager)
