"""
Go toolchain integration: installs command-line tools with ``go install``.

A package is a Go package path (``github.com/goreleaser/nfpm/v2/cmd/nfpm``);
the installed binary lands in ``GOBIN`` or ``GOPATH/bin``. Presence is decided
by that binary, and a pinned version is verified from the module information
``go version -m`` embeds in it.
"""

import os
from pathlib import Path
from typing import List, Optional

from provisionkit.core.filesystem import IS_WINDOWS, find_executable
from provisionkit.core.process import CommandResult
from provisionkit.packages.base import ManagerKind, PackageManager, PackageSpec


def binary_name(spec: PackageSpec) -> str:
    """Name of the command a Go package installs."""
    if spec.executable:
        return spec.executable
    parts = [p for p in spec.name.split("/") if p]
    # Major-version suffix directories are not the command name
    while len(parts) > 1 and parts[-1].startswith("v") and parts[-1][1:].isdigit():
        parts.pop()
    return parts[-1]


class GoToolchainManager(PackageManager):
    """``go install`` integration."""

    kind = ManagerKind.LANGUAGE_TOOLCHAIN

    def get_name(self) -> str:
        return "go"

    def locate(self) -> Optional[Path]:
        found = find_executable("go")
        if found:
            return found
        default = Path("C:/Program Files/Go/bin/go.exe") if IS_WINDOWS else Path("/usr/local/go/bin/go")
        return default if default.exists() else None

    def bin_dirs(self) -> List[Path]:
        """Directories ``go install`` writes binaries into."""
        dirs: List[Path] = []
        gobin = self.env.get("GOBIN") or os.environ.get("GOBIN")
        if gobin:
            dirs.append(Path(gobin))
        gopath = self.env.get("GOPATH") or os.environ.get("GOPATH") or str(Path.home() / "go")
        dirs.extend(Path(p) / "bin" for p in gopath.split(os.pathsep) if p)
        return dirs

    def find_binary(self, spec: PackageSpec) -> Optional[Path]:
        name = binary_name(spec)
        return find_executable(name, self.bin_dirs()) or find_executable(name)

    def is_installed(self, spec: PackageSpec) -> bool:
        binary = self.find_binary(spec)
        if binary is None:
            return False
        if spec.version is None or spec.version == "latest":
            return True
        return super().is_installed(spec)

    def list_command(self, spec: PackageSpec) -> List[str]:
        binary = self.find_binary(spec)
        return ["version", "-m", str(binary) if binary else binary_name(spec)]

    def parse_installed(self, spec: PackageSpec, result: CommandResult) -> bool:
        if not result.ok:
            return False
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) >= 3 and fields[0] == "mod":
                return spec.version is None or fields[2] == spec.version
        return False

    def install_command(self, spec: PackageSpec) -> List[str]:
        return ["install", *spec.options, f"{spec.name}@{spec.version or 'latest'}"]
