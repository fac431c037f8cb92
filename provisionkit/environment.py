"""
Environment publication.

:class:`EnvironmentPublisher` is the only component that turns a plan's
:class:`~provisionkit.plan.context.Context` into real environment state. It
keeps two scopes apart:

- process scope: the current process environment (``os.environ`` or an
  injected mapping), used by the rest of the run and by child processes
- persistent scope: variables explicitly marked ``persist`` in the plan,
  written through a :class:`PersistentEnvironment` backend so that future
  sessions see them

Both scopes are idempotent: publishing the same context twice changes
nothing the second time and never duplicates a PATH entry. The publisher also
writes the toolchain descriptor.

Example:
    >>> publisher = EnvironmentPublisher(
    ...     persistent=default_persistent_environment(install_root),
    ...     descriptor_path=Path("build/provisionkit-deps.cmake"),
    ... )
    >>> report = publisher.publish(context)
"""

import logging
import os
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, MutableMapping, Optional

from provisionkit.cmake.descriptor import ToolchainDescriptor, write_descriptor
from provisionkit.core.filesystem import IS_WINDOWS, atomic_write
from provisionkit.core.locking import STATE_DIR_NAME
from provisionkit.plan.context import Context, path_key

logger = logging.getLogger(__name__)

PROFILE_SCRIPT_NAME = "env.sh"


def _split_path(value: Optional[str], separator: str = os.pathsep) -> List[str]:
    return [entry for entry in (value or "").split(separator) if entry]


def _missing_entries(entries: Iterable[str], current: Iterable[str]) -> List[str]:
    seen = {path_key(entry) for entry in current}
    missing = []
    for entry in entries:
        key = path_key(entry)
        if key not in seen:
            seen.add(key)
            missing.append(entry)
    return missing


# ============================================================================
# Persistent Backends
# ============================================================================


class PersistentEnvironment(ABC):
    """Storage for variables that must outlive the current process."""

    @abstractmethod
    def describe(self) -> str:
        """Where the variables are stored."""

    @abstractmethod
    def set_variables(self, variables: Dict[str, str]) -> List[str]:
        """Store ``variables``; returns the names whose value changed."""

    @abstractmethod
    def add_path_entries(self, entries: List[str]) -> List[str]:
        """Append PATH entries not yet present; returns the entries added."""

    @abstractmethod
    def holds(self, variables: Dict[str, str], entries: Iterable[str]) -> bool:
        """True if every variable has its value and every PATH entry is present."""


class WindowsRegistryEnvironment(PersistentEnvironment):
    """
    User or machine environment in the Windows registry.

    Changes become visible to newly started processes; running processes are
    not notified.
    """

    USER_KEY = "Environment"
    MACHINE_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"

    def __init__(self, machine: bool = False):
        import winreg

        self._winreg = winreg
        self.machine = machine
        self.root = winreg.HKEY_LOCAL_MACHINE if machine else winreg.HKEY_CURRENT_USER
        self.subkey = self.MACHINE_KEY if machine else self.USER_KEY

    def describe(self) -> str:
        return f"{'machine' if self.machine else 'user'} registry environment"

    def get(self, name: str) -> Optional[str]:
        winreg = self._winreg
        try:
            with winreg.OpenKey(self.root, self.subkey, 0, winreg.KEY_READ) as key:
                value, _ = winreg.QueryValueEx(key, name)
                return value
        except FileNotFoundError:
            return None

    def set(self, name: str, value: str) -> None:
        winreg = self._winreg
        value_type = winreg.REG_EXPAND_SZ if "%" in value else winreg.REG_SZ
        with winreg.OpenKey(self.root, self.subkey, 0, winreg.KEY_SET_VALUE) as key:
            winreg.SetValueEx(key, name, 0, value_type, value)

    def set_variables(self, variables: Dict[str, str]) -> List[str]:
        changed = []
        for name, value in variables.items():
            if self.get(name) != value:
                self.set(name, value)
                changed.append(name)
        return changed

    def add_path_entries(self, entries: List[str]) -> List[str]:
        current = _split_path(self.get("Path"), ";")
        missing = _missing_entries(entries, current)
        if missing:
            self.set("Path", ";".join(current + missing))
        return missing

    def holds(self, variables: Dict[str, str], entries: Iterable[str]) -> bool:
        if any(self.get(name) != value for name, value in variables.items()):
            return False
        return not _missing_entries(entries, _split_path(self.get("Path"), ";"))


class ProfileScriptEnvironment(PersistentEnvironment):
    """
    POSIX shell script exporting the persisted variables.

    Users source it from their shell profile. The script is regenerated from
    its previous content merged with the new values and rewritten only when
    it changes.
    """

    HEADER = [
        "# Generated by ProvisionKit",
        "# Source this file from your shell profile, e.g.:",
    ]

    def __init__(self, script_path: Path):
        self.script_path = Path(script_path)

    def describe(self) -> str:
        return f"profile script {self.script_path}"

    def load(self):
        """Return the variables and PATH entries the script currently holds."""
        variables: Dict[str, str] = {}
        path_entries: List[str] = []
        if not self.script_path.exists():
            return variables, path_entries

        with open(self.script_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.rstrip("\n")
                if line.startswith("# path: "):
                    path_entries.append(line[len("# path: "):])
                elif line.startswith("export ") and not line.startswith("export PATH="):
                    name, _, value = shlex.split(line[len("export "):])[0].partition("=")
                    variables[name] = value
        return variables, path_entries

    def render(self, variables: Dict[str, str], path_entries: List[str]) -> str:
        lines = self.HEADER + [f"#   . {shlex.quote(str(self.script_path))}", ""]
        for name in sorted(variables):
            lines.append(f"export {name}={shlex.quote(variables[name])}")
        for entry in path_entries:
            quoted = shlex.quote(entry)
            lines.append(f"# path: {entry}")
            lines.append(
                f'case ":$PATH:" in *:{quoted}:*) ;; *) export PATH={quoted}":$PATH" ;; esac'
            )
        return "\n".join(lines) + "\n"

    def _write(self, variables: Dict[str, str], path_entries: List[str]) -> None:
        atomic_write(self.script_path, self.render(variables, path_entries))
        logger.info(f"Updated {self.script_path}")

    def set_variables(self, variables: Dict[str, str]) -> List[str]:
        current, path_entries = self.load()
        changed = [name for name, value in variables.items() if current.get(name) != value]
        if changed:
            current.update(variables)
            self._write(current, path_entries)
        return changed

    def add_path_entries(self, entries: List[str]) -> List[str]:
        variables, current = self.load()
        missing = _missing_entries(entries, current)
        if missing:
            self._write(variables, current + missing)
        return missing

    def holds(self, variables: Dict[str, str], entries: Iterable[str]) -> bool:
        current, path_entries = self.load()
        if any(current.get(name) != value for name, value in variables.items()):
            return False
        return not _missing_entries(entries, path_entries)


def default_persistent_environment(install_root: Path) -> PersistentEnvironment:
    """Registry (user scope) on Windows, a profile script in the install root elsewhere."""
    if IS_WINDOWS:
        return WindowsRegistryEnvironment()
    return ProfileScriptEnvironment(Path(install_root) / STATE_DIR_NAME / PROFILE_SCRIPT_NAME)


# ============================================================================
# Publisher
# ============================================================================


@dataclass
class PublishReport:
    """
    What a publish changed.

    Attributes:
        process_vars: Process variables whose value changed
        path_added: PATH entries prepended to the process PATH
        persisted_vars: Persistent variables whose value changed
        persisted_paths: PATH entries added to the persistent PATH
        descriptor: Descriptor path, if one was written
        descriptor_changed: Whether the descriptor content changed
    """

    process_vars: List[str] = field(default_factory=list)
    path_added: List[str] = field(default_factory=list)
    persisted_vars: List[str] = field(default_factory=list)
    persisted_paths: List[str] = field(default_factory=list)
    descriptor: Optional[Path] = None
    descriptor_changed: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.process_vars
            or self.path_added
            or self.persisted_vars
            or self.persisted_paths
            or self.descriptor_changed
        )


class EnvironmentPublisher:
    """
    Writes a context's environment and toolchain descriptor.

    Attributes:
        environ: Process environment mapping (default ``os.environ``)
        persistent: Backend for persisted variables; None disables persistence
        descriptor_path: Where to write the toolchain descriptor; None skips it
    """

    def __init__(
        self,
        environ: Optional[MutableMapping[str, str]] = None,
        persistent: Optional[PersistentEnvironment] = None,
        descriptor_path: Optional[Path] = None,
    ):
        self.environ = environ if environ is not None else os.environ
        self.persistent = persistent
        self.descriptor_path = Path(descriptor_path) if descriptor_path else None

    def publish(self, context: Context) -> PublishReport:
        """
        Publish ``context``.

        Returns:
            PublishReport listing what changed
        """
        report = PublishReport()
        self._publish_process(context, report)
        if self.persistent is not None:
            self._publish_persistent(context, report)
        if self.descriptor_path is not None:
            report.descriptor = self.descriptor_path
            report.descriptor_changed = write_descriptor(
                ToolchainDescriptor.from_context(context), self.descriptor_path
            )
        return report

    def _publish_process(self, context: Context, report: PublishReport) -> None:
        for name, value in context.env.items():
            if self.environ.get(name) != value:
                self.environ[name] = value
                report.process_vars.append(name)

        current = _split_path(self.environ.get("PATH"))
        missing = _missing_entries(context.path_entries, current)
        if missing:
            self.environ["PATH"] = os.pathsep.join(missing + current)
            report.path_added = missing
            for entry in missing:
                logger.debug(f"PATH += {entry}")

    def _publish_persistent(self, context: Context, report: PublishReport) -> None:
        variables = context.persistent_env()
        if not variables and not context.persistent_paths:
            logger.debug("No variables marked for persistence")
            return

        report.persisted_vars = self.persistent.set_variables(variables)
        report.persisted_paths = self.persistent.add_path_entries(
            list(context.persistent_paths)
        )
        if report.persisted_vars or report.persisted_paths:
            logger.info(
                f"Persisted {len(report.persisted_vars)} variable(s) and "
                f"{len(report.persisted_paths)} PATH entries to {self.persistent.describe()}"
            )


__all__ = [
    "PersistentEnvironment",
    "WindowsRegistryEnvironment",
    "ProfileScriptEnvironment",
    "default_persistent_environment",
    "PublishReport",
    "EnvironmentPublisher",
]
