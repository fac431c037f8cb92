"""
Chocolatey package manager integration (Windows).

Example:
    choco = ChocolateyManager()
    spec = PackageSpec("cmake", ManagerKind.CHOCOLATEY, version="3.27.7")
    if not choco.is_installed(spec):
        choco.install(spec)
"""

import os
from pathlib import Path
from typing import List, Optional

from provisionkit.core.filesystem import find_executable
from provisionkit.core.process import CommandResult
from provisionkit.packages.base import ManagerKind, PackageManager, PackageSpec

DEFAULT_CHOCOLATEY_ROOT = Path("C:/ProgramData/chocolatey")


class ChocolateyManager(PackageManager):
    """
    Chocolatey integration.

    ``choco`` exits 1641 (reboot initiated) and 3010 (reboot required) when a
    package installed fine but wants a reboot; both count as success, as does
    an "already installed" report.
    """

    kind = ManagerKind.CHOCOLATEY
    noop_exit_codes = frozenset({1641, 3010})
    noop_markers = ("already installed",)

    def get_name(self) -> str:
        return "chocolatey"

    def locate(self) -> Optional[Path]:
        found = find_executable("choco")
        if found:
            return found

        root = Path(os.environ.get("ChocolateyInstall", DEFAULT_CHOCOLATEY_ROOT))
        candidate = root / "bin" / "choco.exe"
        return candidate if candidate.exists() else None

    def list_command(self, spec: PackageSpec) -> List[str]:
        # Chocolatey 2.x lists local packages only; -r prints "name|version"
        return ["list", "--exact", spec.name, "--limit-output"]

    def parse_installed(self, spec: PackageSpec, result: CommandResult) -> bool:
        if not result.ok:
            return False

        for line in result.stdout.splitlines():
            name, _, version = line.strip().partition("|")
            if name.lower() != spec.name.lower():
                continue
            if spec.version is None or version.strip() == spec.version:
                return True
        return False

    def install_command(self, spec: PackageSpec) -> List[str]:
        args = ["install", spec.name, "-y", "--no-progress"]
        if spec.version:
            args.append(f"--version={spec.version}")
        args.extend(spec.options)
        return args
