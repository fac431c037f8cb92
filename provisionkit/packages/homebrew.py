"""
Homebrew package manager integration (macOS, Linuxbrew).

Versioned formulae follow Homebrew's own naming: a pinned version ``3`` of
``openssl`` is the formula ``openssl@3``.
"""

from pathlib import Path
from typing import List, Optional

from provisionkit.core.filesystem import find_executable
from provisionkit.core.process import CommandResult
from provisionkit.packages.base import ManagerKind, PackageManager, PackageSpec

HOMEBREW_PREFIXES = (
    Path("/opt/homebrew/bin"),
    Path("/usr/local/bin"),
    Path("/home/linuxbrew/.linuxbrew/bin"),
)


def formula_name(spec: PackageSpec) -> str:
    """Return the Homebrew formula for ``spec`` (``name@version`` when pinned)."""
    if spec.version and "@" not in spec.name:
        return f"{spec.name}@{spec.version}"
    return spec.name


class HomebrewManager(PackageManager):
    """Homebrew integration; ``brew update`` refreshes state before a retry."""

    kind = ManagerKind.HOMEBREW
    noop_markers = ("is already installed", "already installed and up-to-date")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Index updates happen only through refresh()
        self.env.setdefault("HOMEBREW_NO_AUTO_UPDATE", "1")

    def get_name(self) -> str:
        return "homebrew"

    def locate(self) -> Optional[Path]:
        return find_executable("brew") or find_executable("brew", list(HOMEBREW_PREFIXES))

    def list_command(self, spec: PackageSpec) -> List[str]:
        return ["list", "--versions", formula_name(spec)]

    def parse_installed(self, spec: PackageSpec, result: CommandResult) -> bool:
        # brew exits 1 with no output when the formula isn't installed
        return result.ok and bool(result.stdout.strip())

    def install_command(self, spec: PackageSpec) -> List[str]:
        return ["install", *spec.options, formula_name(spec)]

    def refresh_command(self) -> Optional[List[str]]:
        return ["update"]
