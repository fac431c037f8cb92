"""
Kind-specific step actions.

Each action carries the configuration of one step and answers three
questions for the plan:

- ``probe(context)``: how to tell whether the step's effect already holds
- ``execute(context)``: how to produce the effect (delegating to
  PackageInstaller, ArchiveFetcher or SourceBuilder)
- ``register(context)``: which paths, variables and directories the effect
  makes available; called on success and on skip alike

Actions never mutate the context from ``execute``; fetches may run on worker
threads while the plan applies context effects on the main thread.
"""

import logging
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from provisionkit.build.builder import BuildRecipe, SourceBuilder
from provisionkit.build.patch import PatchOp, apply_patches, is_patch_applied
from provisionkit.core.exceptions import InstallError, ToolNotFoundError
from provisionkit.core.filesystem import IS_WINDOWS, find_executable
from provisionkit.core.process import DEFAULT_TIMEOUT, run_command
from provisionkit.fetch import ArchiveFetcher, ArchiveSpec
from provisionkit.packages.base import PackageSpec
from provisionkit.packages.installer import PackageInstaller
from provisionkit.packages.vcpkg import VcpkgManager
from provisionkit.plan.context import Context
from provisionkit.plan.step import StepKind
from provisionkit.probe import (
    CallableProbe,
    ExecutableProbe,
    PackageProbe,
    Probe,
    ProbeResult,
    probe,
)

logger = logging.getLogger(__name__)


class StepAction(ABC):
    """Base class for step actions."""

    kind: StepKind
    #: Default retryability of steps using this action
    retryable: bool = False

    @abstractmethod
    def describe(self) -> str:
        """One-line description for logs and dry-run output."""

    @abstractmethod
    def probe(self, context: Context) -> Probe:
        """Probe deciding whether the step's effect already holds."""

    @abstractmethod
    def execute(self, context: Context) -> None:
        """Produce the step's effect. Raises on failure."""

    def is_satisfied(self, context: Context) -> bool:
        return probe(self.probe(context)) is ProbeResult.PRESENT

    def register(self, context: Context) -> None:
        """Record the effect's paths and variables in ``context``."""

    def refresh(self) -> None:
        """Refresh external state before a retry."""


# ============================================================================
# Tool checks
# ============================================================================


class ToolCheckAction(StepAction):
    """
    Requires an executable, optionally bootstrapping it when absent.

    Args:
        tool: Executable name
        search_paths: Extra directories searched after PATH; a directory that
            holds the tool is registered as a PATH entry
        bootstrap: Command installing the tool (argv list or shell-style string)
        timeout: Bootstrap command timeout
    """

    kind = StepKind.TOOL_CHECK

    def __init__(
        self,
        tool: str,
        search_paths: Iterable[Union[str, Path]] = (),
        bootstrap: Optional[Union[str, Sequence[str]]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.tool = tool
        self.search_paths = [Path(p) for p in search_paths]
        if isinstance(bootstrap, str):
            bootstrap = shlex.split(bootstrap, posix=not IS_WINDOWS)
        self.bootstrap: Optional[List[str]] = list(bootstrap) if bootstrap else None
        self.timeout = timeout

    def describe(self) -> str:
        return f"require {self.tool}"

    def probe(self, context: Context) -> Probe:
        return ExecutableProbe(self.tool, self.search_paths)

    def execute(self, context: Context) -> None:
        if not self.bootstrap:
            raise ToolNotFoundError(
                f"Required tool '{self.tool}' not found on PATH"
                + (f" or in {', '.join(map(str, self.search_paths))}" if self.search_paths else "")
            )

        logger.info(f"Bootstrapping {self.tool}: {' '.join(self.bootstrap)}")
        result = run_command(self.bootstrap, timeout=self.timeout)
        if not result.ok:
            raise InstallError("bootstrap", result.exit_code, self.tool, result.output_tail)

        if not self.is_satisfied(context):
            error = ToolNotFoundError(
                f"Tool '{self.tool}' still not found after running its bootstrap command"
            )
            error.diagnostic = result.output_tail
            raise error

    def register(self, context: Context) -> None:
        for directory in self.search_paths:
            if find_executable(self.tool, [directory]) is not None:
                context.add_path(directory)


# ============================================================================
# Packages
# ============================================================================


class PackageInstallAction(StepAction):
    """
    Installs a package through its manager; retried once after a refresh.

    With ``refresh_first`` the manager state is refreshed (e.g. ``brew update``)
    before the first install attempt as well, at most once per installer.
    Satisfied steps skip both.
    """

    kind = StepKind.PACKAGE_INSTALL
    retryable = True

    def __init__(self, installer: PackageInstaller, spec: PackageSpec, refresh_first: bool = False):
        self.installer = installer
        self.spec = spec
        self.refresh_first = refresh_first

    def describe(self) -> str:
        return f"install {self.spec} ({self.spec.manager.value})"

    def probe(self, context: Context) -> Probe:
        return PackageProbe(self.installer.manager_for(self.spec), self.spec)

    def execute(self, context: Context) -> None:
        if self.refresh_first:
            self.installer.refresh(self.spec, once=True)
        self.installer.install(self.spec)

    def refresh(self) -> None:
        self.installer.refresh(self.spec)

    def register(self, context: Context) -> None:
        manager = self.installer.manager_for(self.spec)
        if not isinstance(manager, VcpkgManager):
            return
        root = manager.find_root()
        if root is None:
            return
        installed = root / "installed" / manager.get_triplet(self.spec)
        context.add_include_dir(installed / "include")
        context.add_library_dir(installed / "lib")


# ============================================================================
# Fetches
# ============================================================================


def _register_dirs(
    context: Context,
    base: Path,
    include_dirs: Iterable[str],
    library_dirs: Iterable[str],
    path: Iterable[str],
) -> None:
    for entry in include_dirs:
        context.add_include_dir(base / entry)
    for entry in library_dirs:
        context.add_library_dir(base / entry)
    for entry in path:
        context.add_path(base / entry)


class FetchAction(StepAction):
    """
    Downloads and extracts an archive.

    ``include_dirs``, ``library_dirs`` and ``path`` are relative to the
    archive's destination and registered once the content is in place.
    """

    kind = StepKind.FETCH
    retryable = True

    def __init__(
        self,
        fetcher: ArchiveFetcher,
        spec: ArchiveSpec,
        include_dirs: Iterable[str] = (),
        library_dirs: Iterable[str] = (),
        path: Iterable[str] = (),
    ):
        self.fetcher = fetcher
        self.spec = spec
        self.include_dirs = list(include_dirs)
        self.library_dirs = list(library_dirs)
        self.path = list(path)

    def describe(self) -> str:
        return f"fetch {self.spec.url} -> {self.spec.destination}"

    def probe(self, context: Context) -> Probe:
        return CallableProbe(
            lambda: self.fetcher.is_fetched(self.spec),
            f"fetched {self.spec.marker or self.spec.destination}",
        )

    def execute(self, context: Context) -> None:
        self.fetcher.fetch(self.spec)

    def register(self, context: Context) -> None:
        _register_dirs(
            context, Path(self.spec.destination), self.include_dirs, self.library_dirs, self.path
        )


# ============================================================================
# Builds and patches
# ============================================================================


class BuildAction(StepAction):
    """
    Builds a source tree, fetching it first when a source archive is given.

    ``include_dirs``, ``library_dirs`` and ``path`` are relative to the
    install root.
    """

    kind = StepKind.BUILD
    retryable = True

    def __init__(
        self,
        builder: SourceBuilder,
        recipe: BuildRecipe,
        source_root: Path,
        source: Optional[ArchiveSpec] = None,
        fetcher: Optional[ArchiveFetcher] = None,
        include_dirs: Iterable[str] = ("include",),
        library_dirs: Iterable[str] = ("lib",),
        path: Iterable[str] = (),
    ):
        if source is not None and fetcher is None:
            raise ValueError("A fetcher is required when a source archive is given")
        self.builder = builder
        self.recipe = recipe
        self.source_root = Path(source_root)
        self.source = source
        self.fetcher = fetcher
        self.include_dirs = list(include_dirs)
        self.library_dirs = list(library_dirs)
        self.path = list(path)

    def describe(self) -> str:
        return f"{self.recipe.system.value} build of {self.source_root}"

    def probe(self, context: Context) -> Probe:
        artifacts = ", ".join(self.recipe.artifacts) or "build stamp"
        return CallableProbe(
            lambda: self.builder.is_built(self.recipe, self.source_root), f"built ({artifacts})"
        )

    def execute(self, context: Context) -> None:
        if self.source is not None:
            self.fetcher.fetch(self.source)
        self.builder.build(self.source_root, self.recipe)

    def register(self, context: Context) -> None:
        _register_dirs(
            context, self.builder.install_root, self.include_dirs, self.library_dirs, self.path
        )


class PatchAction(StepAction):
    """Applies patches to an existing source tree."""

    kind = StepKind.PATCH

    def __init__(self, ops: Iterable[PatchOp], source_root: Path):
        self.ops = list(ops)
        if not self.ops:
            raise ValueError("A patch step needs at least one patch")
        self.source_root = Path(source_root)

    def describe(self) -> str:
        return f"patch {len(self.ops)} target(s) under {self.source_root}"

    def probe(self, context: Context) -> Probe:
        return CallableProbe(
            lambda: all(is_patch_applied(op, self.source_root) for op in self.ops),
            f"patches applied under {self.source_root}",
        )

    def execute(self, context: Context) -> None:
        apply_patches(self.ops, self.source_root)


# ============================================================================
# Environment
# ============================================================================


class EnvSetAction(StepAction):
    """
    Adds variables and PATH entries to the context.

    The process-scope effect is applied by ``register`` on every run, skipped
    or not, and published with the rest of the context, so such a step always
    holds. A persisted step holds when the persistent backend already stores
    every value and PATH entry.

    Args:
        variables: Variables to set
        path: Directories to put on PATH
        persist: Also persist these beyond the current process
        persistent: Persistent environment backend consulted by the probe;
            None when persistence is disabled for the run
    """

    kind = StepKind.ENV_SET

    def __init__(
        self,
        variables: Optional[Mapping[str, str]] = None,
        path: Iterable[Union[str, Path]] = (),
        persist: bool = False,
        persistent=None,
    ):
        self.variables: Dict[str, str] = {k: str(v) for k, v in (variables or {}).items()}
        self.path = [str(p) for p in path]
        self.persist = persist
        self.persistent = persistent

    def describe(self) -> str:
        names = list(self.variables) + (["PATH"] if self.path else [])
        scope = "persistent" if self.persist else "process"
        return f"set {', '.join(names) or 'nothing'} ({scope})"

    def probe(self, context: Context) -> Probe:
        return CallableProbe(self._already_set, self.describe())

    def _already_set(self) -> bool:
        if not self.persist or self.persistent is None:
            return True
        return self.persistent.holds(self.variables, self.path)

    def execute(self, context: Context) -> None:
        logger.debug(f"Registering {self.describe()}")

    def register(self, context: Context) -> None:
        for name, value in self.variables.items():
            context.set_env(name, value, persist=self.persist)
        for entry in self.path:
            context.add_path(entry, persist=self.persist)


__all__ = [
    "StepAction",
    "ToolCheckAction",
    "PackageInstallAction",
    "FetchAction",
    "BuildAction",
    "PatchAction",
    "EnvSetAction",
]
