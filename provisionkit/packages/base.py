"""
Base package manager abstraction for ProvisionKit.

This module provides the abstract base class shared by the system package
manager integrations (Chocolatey, Homebrew, vcpkg, language toolchains).

Classes:
    ManagerKind: Supported package manager families
    PackageSpec: A package to install, optionally pinned to a version
    PackageManager: Abstract base class for package manager implementations

A manager answers two questions through its own command-line surface:
"is this package installed?" (its list/query command) and "install it"
(its install command). Manager-specific no-op exits (already installed,
reboot pending) are tolerated as success.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Mapping, Optional, Tuple

from provisionkit.core.exceptions import InstallError, ToolNotFoundError
from provisionkit.core.process import DEFAULT_TIMEOUT, CommandResult, run_command

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================


class ManagerKind(Enum):
    """Package manager families."""

    CHOCOLATEY = "chocolatey"
    HOMEBREW = "homebrew"
    VCPKG = "vcpkg"
    LANGUAGE_TOOLCHAIN = "go"

    @classmethod
    def parse(cls, value: str) -> "ManagerKind":
        aliases = {"choco": "chocolatey", "brew": "homebrew", "golang": "go"}
        key = aliases.get(value.lower(), value.lower())
        for kind in cls:
            if kind.value == key:
                return kind
        raise ValueError(
            f"Unknown package manager '{value}'. "
            f"Expected one of: {', '.join(k.value for k in cls)}"
        )


@dataclass(frozen=True)
class PackageSpec:
    """
    A package to install.

    Attributes:
        name: Package (or module) name as the manager spells it
        manager: Owning package manager
        version: Optional pinned version
        options: Extra arguments passed to the manager's install command
        triplet: vcpkg triplet override
        executable: Command the package provides (language toolchains)

    Example:
        spec = PackageSpec(name='openssl', manager=ManagerKind.CHOCOLATEY, version='3.1.1')
    """

    name: str
    manager: ManagerKind
    version: Optional[str] = None
    options: Tuple[str, ...] = field(default_factory=tuple)
    triplet: Optional[str] = None
    executable: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Package name cannot be empty")

    def __str__(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


# =============================================================================
# Abstract Package Manager
# =============================================================================


class PackageManager(ABC):
    """
    Abstract base class for package manager implementations.

    Subclasses provide the command lines; this class runs them with a
    timeout, interprets exit codes and raises :class:`InstallError` on
    failure.

    Attributes:
        timeout: Timeout in seconds for every manager invocation
        env: Extra environment variables for manager invocations
        noop_exit_codes: Non-zero exit codes that still mean success
        noop_markers: Output phrases that turn a non-zero exit into success
    """

    kind: ManagerKind
    noop_exit_codes: FrozenSet[int] = frozenset()
    noop_markers: Tuple[str, ...] = ()

    def __init__(
        self,
        executable: Optional[Path] = None,
        timeout: float = DEFAULT_TIMEOUT,
        env: Optional[Mapping[str, str]] = None,
    ):
        self._executable = Path(executable) if executable else None
        self.timeout = timeout
        self.env = dict(env) if env else {}

    @abstractmethod
    def get_name(self) -> str:
        """Get the package manager name."""

    @abstractmethod
    def locate(self) -> Optional[Path]:
        """Find the manager executable, or None if it is not installed."""

    @abstractmethod
    def list_command(self, spec: PackageSpec) -> List[str]:
        """Arguments (after the executable) of the "list installed" query."""

    @abstractmethod
    def parse_installed(self, spec: PackageSpec, result: CommandResult) -> bool:
        """Interpret the list query's result."""

    @abstractmethod
    def install_command(self, spec: PackageSpec) -> List[str]:
        """Arguments (after the executable) of the install command."""

    def refresh_command(self) -> Optional[List[str]]:
        """Arguments of the state-refresh command, or None if not needed."""
        return None

    # -------------------------------------------------------------------------

    @property
    def executable(self) -> Path:
        """
        Resolved manager executable.

        Raises:
            ToolNotFoundError: If the manager is not installed
        """
        if self._executable is None or not self._executable.exists():
            self._executable = self.locate()
        if self._executable is None:
            raise ToolNotFoundError(
                f"{self.get_name()} not found. Add a tool_check step that "
                f"bootstraps it, or put it on PATH."
            )
        return self._executable

    def is_installed(self, spec: PackageSpec) -> bool:
        """
        Query the manager's installed-package surface.

        Raises:
            ToolNotFoundError: If the manager is not installed
            CommandTimeout: If the query times out
        """
        result = self._run(self.list_command(spec))
        return self.parse_installed(spec, result)

    def install(self, spec: PackageSpec) -> CommandResult:
        """
        Install a package.

        Raises:
            InstallError: If the manager exits with a failure code
            ToolNotFoundError: If the manager is not installed
            CommandTimeout: If the install times out
        """
        logger.info(f"Installing {spec} with {self.get_name()}")
        result = self._run(self.install_command(spec))

        if result.ok:
            return result
        if self.is_tolerated(result):
            logger.info(
                f"{self.get_name()} exited with {result.exit_code} for {spec}, "
                "treating as success"
            )
            return result

        raise InstallError(
            self.get_name(), result.exit_code, str(spec), result.output_tail
        )

    def refresh(self) -> None:
        """
        Refresh the manager's package index before a retried install.

        Raises:
            InstallError: If the refresh command fails
        """
        command = self.refresh_command()
        if not command:
            return
        logger.info(f"Refreshing {self.get_name()} state")
        result = self._run(command)
        if not result.ok:
            raise InstallError(self.get_name(), result.exit_code, "", result.output_tail)

    def is_tolerated(self, result: CommandResult) -> bool:
        """Return True if a non-zero exit is a manager-specific no-op."""
        if result.exit_code in self.noop_exit_codes:
            return True
        output = f"{result.stdout}\n{result.stderr}".lower()
        return any(marker.lower() in output for marker in self.noop_markers)

    def _run(self, args: List[str]) -> CommandResult:
        return run_command(
            [self.executable, *args], env=self.env or None, timeout=self.timeout
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.get_name()!r}>"
