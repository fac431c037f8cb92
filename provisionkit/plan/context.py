"""
Shared provisioning context.

The :class:`Context` is an explicit value threaded through a plan run instead
of mutating the process environment: steps register variables, PATH entries,
include/library directories and definitions here, and only the
:class:`~provisionkit.environment.EnvironmentPublisher` turns it into real
environment state and a toolchain descriptor.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from provisionkit.core.platform import vcpkg_triplet

ENV_INSTALL_ROOT = "PROVISIONKIT_INSTALL_ROOT"
ENV_ARCH = "PROVISIONKIT_ARCH"
ENV_TOOLCHAIN_FILE = "PROVISIONKIT_TOOLCHAIN_FILE"

PathLike = Union[str, Path]


def path_key(entry: str) -> str:
    return os.path.normcase(os.path.normpath(entry))


def _append_unique(entries: List[str], entry: PathLike) -> bool:
    value = str(entry)
    key = path_key(value)
    if any(path_key(existing) == key for existing in entries):
        return False
    entries.append(value)
    return True


@dataclass
class Context:
    """
    Environment overlay and build settings accumulated during a run.

    Attributes:
        install_root: Shared install root
        arch: Target architecture
        platform: Target OS name ('windows', 'macos', 'linux')
        cxx_standard: C++ language standard for the descriptor
        env: Variables to publish (name -> value)
        path_entries: Directories to put on PATH, de-duplicated, in order
        include_dirs: Include search directories
        library_dirs: Library search directories
        definitions: Preprocessor definitions
        persistent: Variable names to persist beyond the current process
        persistent_paths: PATH entries to persist beyond the current process
    """

    install_root: Path
    arch: str
    platform: str
    cxx_standard: Optional[int] = None
    env: Dict[str, str] = field(default_factory=dict)
    path_entries: List[str] = field(default_factory=list)
    include_dirs: List[str] = field(default_factory=list)
    library_dirs: List[str] = field(default_factory=list)
    definitions: List[str] = field(default_factory=list)
    persistent: Set[str] = field(default_factory=set)
    persistent_paths: List[str] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        install_root: PathLike,
        arch: str,
        platform: str,
        cxx_standard: Optional[int] = None,
        definitions: Optional[List[str]] = None,
    ) -> "Context":
        """Create the context a run starts from."""
        context = cls(
            install_root=Path(install_root),
            arch=arch,
            platform=platform,
            cxx_standard=cxx_standard,
        )
        context.set_env(ENV_INSTALL_ROOT, str(context.install_root))
        context.set_env(ENV_ARCH, arch)
        for definition in definitions or []:
            context.add_definition(definition)
        return context

    @property
    def triplet(self) -> str:
        return vcpkg_triplet(self.platform, self.arch)

    def resolve(self, path: PathLike) -> Path:
        """Resolve ``path`` against the install root."""
        path = Path(path)
        return path if path.is_absolute() else self.install_root / path

    def set_env(self, name: str, value: str, persist: bool = False) -> None:
        self.env[name] = str(value)
        if persist:
            self.persistent.add(name)

    def add_path(self, entry: PathLike, persist: bool = False) -> bool:
        """Add a PATH entry once; returns False if it was already registered."""
        added = _append_unique(self.path_entries, entry)
        if persist:
            _append_unique(self.persistent_paths, entry)
        return added

    def add_include_dir(self, path: PathLike) -> bool:
        return _append_unique(self.include_dirs, path)

    def add_library_dir(self, path: PathLike) -> bool:
        return _append_unique(self.library_dirs, path)

    def add_definition(self, definition: str) -> bool:
        if definition in self.definitions:
            return False
        self.definitions.append(definition)
        return True

    def persistent_env(self) -> Dict[str, str]:
        """Variables marked persistent, with their values."""
        return {name: self.env[name] for name in sorted(self.persistent) if name in self.env}

    def to_dict(self) -> dict:
        return {
            "install_root": str(self.install_root),
            "arch": self.arch,
            "platform": self.platform,
            "cxx_standard": self.cxx_standard,
            "env": dict(self.env),
            "path_entries": list(self.path_entries),
            "include_dirs": list(self.include_dirs),
            "library_dirs": list(self.library_dirs),
            "definitions": list(self.definitions),
            "persistent": sorted(self.persistent),
            "persistent_paths": list(self.persistent_paths),
        }


__all__ = [
    "Context",
    "path_key",
    "ENV_INSTALL_ROOT",
    "ENV_ARCH",
    "ENV_TOOLCHAIN_FILE",
]
