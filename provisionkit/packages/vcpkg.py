"""
vcpkg package manager integration for ProvisionKit.

Packages are installed in classic mode as ``<name>:<triplet>``, with the
triplet derived from the target OS and architecture unless the package
overrides it.

Classes:
    VcpkgManager: vcpkg package manager implementation

Example:
    from provisionkit.packages.vcpkg import VcpkgManager

    vcpkg = VcpkgManager(os_name="windows", arch="x64")
    spec = PackageSpec("openssl", ManagerKind.VCPKG)
    vcpkg.get_triplet(spec)   # 'x64-windows'
    vcpkg.install(spec)
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from provisionkit.core.filesystem import IS_WINDOWS, find_executable
from provisionkit.core.platform import detect_platform, vcpkg_triplet
from provisionkit.core.process import CommandResult
from provisionkit.packages.base import ManagerKind, PackageManager, PackageSpec

logger = logging.getLogger(__name__)

COMMON_VCPKG_ROOTS = (
    Path("C:/vcpkg"),
    Path("C:/src/vcpkg"),
    Path.home() / "vcpkg",
    Path("/usr/local/vcpkg"),
    Path("/opt/vcpkg"),
)


class VcpkgManager(PackageManager):
    """
    vcpkg package manager integration.

    Attributes:
        vcpkg_root: Explicit vcpkg root (overrides VCPKG_ROOT and PATH lookup)
        os_name: Target OS used for triplet selection
        arch: Target architecture used for triplet selection
    """

    kind = ManagerKind.VCPKG

    def __init__(
        self,
        vcpkg_root: Optional[Path] = None,
        os_name: Optional[str] = None,
        arch: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.vcpkg_root = Path(vcpkg_root) if vcpkg_root else None
        host = detect_platform() if (os_name is None or arch is None) else None
        self.os_name = os_name or host.os
        self.arch = arch or host.arch

    def get_name(self) -> str:
        return "vcpkg"

    def find_root(self) -> Optional[Path]:
        """
        Find vcpkg installation directory.

        Searches, in order: the explicit root, ``VCPKG_ROOT``, the directory
        of a ``vcpkg`` executable on PATH, then common locations.
        """
        if self.vcpkg_root:
            return self.vcpkg_root if self.vcpkg_root.exists() else None

        root_env = os.getenv("VCPKG_ROOT")
        if root_env and Path(root_env).exists():
            return Path(root_env)

        on_path = find_executable("vcpkg")
        if on_path:
            return on_path.resolve().parent

        for path in COMMON_VCPKG_ROOTS:
            if (path / self._exe_name()).exists():
                return path

        return None

    def locate(self) -> Optional[Path]:
        root = self.find_root()
        if root is None:
            return None
        exe = root / self._exe_name()
        return exe if exe.exists() else None

    def get_triplet(self, spec: PackageSpec) -> str:
        return spec.triplet or vcpkg_triplet(self.os_name, self.arch)

    def list_command(self, spec: PackageSpec) -> List[str]:
        return ["list", f"{spec.name}:{self.get_triplet(spec)}"]

    def parse_installed(self, spec: PackageSpec, result: CommandResult) -> bool:
        if not result.ok:
            return False

        # vcpkg list filters by substring; match the exact "name:triplet" column
        wanted = f"{spec.name}:{self.get_triplet(spec)}".lower()
        for line in result.stdout.splitlines():
            columns = line.split()
            if columns and columns[0].lower() == wanted:
                if spec.version is None:
                    return True
                # Versions carry a port revision suffix ("3.1.2#1")
                return len(columns) > 1 and columns[1].split("#")[0] == spec.version
        return False

    def install_command(self, spec: PackageSpec) -> List[str]:
        if spec.version:
            logger.warning(
                f"vcpkg classic mode cannot pin {spec.name} to {spec.version}; "
                "the version is fixed by the vcpkg checkout"
            )
        return ["install", f"{spec.name}:{self.get_triplet(spec)}", *spec.options]

    def _exe_name(self) -> str:
        return "vcpkg.exe" if IS_WINDOWS else "vcpkg"
