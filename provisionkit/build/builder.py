"""
Native source builds for dependencies without a usable prebuilt package.

:class:`SourceBuilder` drives one dependency from source to install root:

1. apply the recipe's patches (each at most once per file)
2. run the generator / configure step with architecture and toolset
3. run the compiler/linker driver
4. copy headers, libraries and binaries into the install root

Every sub-command runs through :func:`run_command` with a timeout; a failing
one raises :class:`BuildError` naming the sub-command and carrying the tail
of its output, since native build failures need a human to read them.

Example:
    builder = SourceBuilder(install_root, os_name="windows", arch="x64")
    recipe = BuildRecipe(
        system=BuildSystem.MSBUILD,
        project="msvc10/msvc10.sln",
        toolset="v143",
        install=InstallRules(headers=("include/log4cpp",), libraries=("msvc10/**/*.lib",)),
        artifacts=("lib/log4cpp.lib",),
    )
    builder.build(source_root, recipe)
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from provisionkit.build.patch import PatchOp, apply_patches
from provisionkit.core.exceptions import BuildError
from provisionkit.core.filesystem import FilesystemError, atomic_write, copy_matching
from provisionkit.core.locking import STATE_DIR_NAME
from provisionkit.core.platform import cmake_platform_name, msbuild_platform_name
from provisionkit.core.process import DEFAULT_TIMEOUT, run_command

logger = logging.getLogger(__name__)

BUILD_STAMP_DIR = "built"


class BuildSystem(Enum):
    CMAKE = "cmake"
    MSBUILD = "msbuild"
    AUTOTOOLS = "autotools"
    COMMAND = "command"


@dataclass(frozen=True)
class InstallRules:
    """
    Glob patterns, relative to the source root, copied into the install root.

    Headers go to ``include/``, libraries to ``lib/`` and binaries to ``bin/``.
    Matched directories keep their layout; files of matched library and
    binary directories are flattened.
    """

    headers: Tuple[str, ...] = ()
    libraries: Tuple[str, ...] = ()
    binaries: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.headers or self.libraries or self.binaries)


@dataclass(frozen=True)
class BuildRecipe:
    """
    How to build one source tree.

    Attributes:
        system: Build system family
        build_type: Configuration ('Release', 'Debug', ...)
        build_dir: Build directory relative to the source root
        generator: CMake generator (``-G``)
        toolset: Toolset (CMake ``-T`` / MSBuild ``PlatformToolset``)
        project: MSBuild solution/project relative to the source root
        configure_args: Extra generator/configure arguments
        build_args: Extra build driver arguments
        commands: Explicit command lines for ``BuildSystem.COMMAND``
        patches: Patches applied before configuring
        install: Files copied into the install root afterwards
        run_install: Run the build system's own install target (cmake/autotools)
        env: Extra environment for every sub-command
        artifacts: Paths relative to the install root proving the build is done
    """

    system: BuildSystem
    build_type: str = "Release"
    build_dir: str = "build"
    generator: Optional[str] = None
    toolset: Optional[str] = None
    project: Optional[str] = None
    configure_args: Tuple[str, ...] = ()
    build_args: Tuple[str, ...] = ()
    commands: Tuple[Tuple[str, ...], ...] = ()
    patches: Tuple[PatchOp, ...] = ()
    install: InstallRules = field(default_factory=InstallRules)
    run_install: bool = True
    env: Dict[str, str] = field(default_factory=dict)
    artifacts: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.system is BuildSystem.MSBUILD and not self.project:
            raise ValueError("msbuild recipes require a project")
        if self.system is BuildSystem.COMMAND and not self.commands:
            raise ValueError("command recipes require at least one command")


@dataclass
class ArtifactPaths:
    """Files a build placed in the install root."""

    headers: List[Path] = field(default_factory=list)
    libraries: List[Path] = field(default_factory=list)
    binaries: List[Path] = field(default_factory=list)

    def all(self) -> List[Path]:
        return [*self.headers, *self.libraries, *self.binaries]


@dataclass(frozen=True)
class BuildCommand:
    """One sub-command of a build."""

    phase: str
    argv: List[str]
    cwd: Path

    @property
    def tool(self) -> str:
        return f"{Path(self.argv[0]).name} ({self.phase})"


class SourceBuilder:
    """
    Builds source trees into a shared install root.

    Attributes:
        install_root: Install root receiving headers/libraries/binaries
        os_name: Target OS ('windows', 'macos', 'linux')
        arch: Target architecture ('x64', 'x86', 'arm64', 'arm')
        timeout: Timeout per sub-command in seconds
        jobs: Parallel build jobs
    """

    def __init__(
        self,
        install_root: Path,
        os_name: str,
        arch: str,
        timeout: float = DEFAULT_TIMEOUT,
        jobs: Optional[int] = None,
    ):
        self.install_root = Path(install_root)
        self.os_name = os_name
        self.arch = arch
        self.timeout = timeout
        self.jobs = jobs or os.cpu_count() or 4

    def is_built(self, recipe: BuildRecipe, source_root: Optional[Path] = None) -> bool:
        """
        True if the recipe's effect is already in the install root.

        With declared artifacts, every artifact must exist. Without them, the
        build stamp written by the last successful :meth:`build` of the same
        source root and recipe decides.
        """
        if recipe.artifacts:
            return all((self.install_root / a).exists() for a in recipe.artifacts)
        if source_root is None:
            return False
        return self.stamp_path(source_root, recipe).is_file()

    def stamp_path(self, source_root: Path, recipe: BuildRecipe) -> Path:
        """Build stamp for ``recipe`` applied to ``source_root``."""
        key = f"{Path(source_root).as_posix()}\n{recipe!r}"
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.install_root / STATE_DIR_NAME / BUILD_STAMP_DIR / digest

    def build(self, source_root: Path, recipe: BuildRecipe) -> ArtifactPaths:
        """
        Patch, configure, build and install ``source_root``.

        Returns:
            Paths copied into the install root by the recipe's install rules

        Raises:
            PatchError: If a patch cannot be applied
            BuildError: If a sub-command fails or install rules match nothing
            CommandTimeout: If a sub-command exceeds the timeout
        """
        source_root = Path(source_root)
        if not source_root.is_dir():
            raise BuildError("source", None, f"Source root not found: {source_root}")

        if recipe.patches:
            apply_patches(recipe.patches, source_root)

        for command in self.commands(source_root, recipe):
            self._run(command, recipe)

        artifacts = self._install(source_root, recipe)
        atomic_write(self.stamp_path(source_root, recipe), f"{source_root.as_posix()}\n")
        logger.info(
            f"Built {source_root.name}: {len(artifacts.all())} file(s) copied to {self.install_root}"
        )
        return artifacts

    def commands(self, source_root: Path, recipe: BuildRecipe) -> List[BuildCommand]:
        """Sub-commands the recipe runs, in order."""
        source_root = Path(source_root)
        build_dir = source_root / recipe.build_dir

        if recipe.system is BuildSystem.CMAKE:
            return self._cmake_commands(source_root, build_dir, recipe)
        if recipe.system is BuildSystem.MSBUILD:
            return self._msbuild_commands(source_root, recipe)
        if recipe.system is BuildSystem.AUTOTOOLS:
            return self._autotools_commands(source_root, recipe)
        return [
            BuildCommand("command", list(argv), source_root) for argv in recipe.commands
        ]

    # -------------------------------------------------------------------------

    def _cmake_commands(
        self, source_root: Path, build_dir: Path, recipe: BuildRecipe
    ) -> List[BuildCommand]:
        configure = ["cmake", "-S", str(source_root), "-B", str(build_dir)]
        if recipe.generator:
            configure += ["-G", recipe.generator]
        if self._uses_visual_studio(recipe):
            configure += ["-A", cmake_platform_name(self.arch)]
        if recipe.toolset:
            configure += ["-T", recipe.toolset]
        configure += [
            f"-DCMAKE_BUILD_TYPE={recipe.build_type}",
            f"-DCMAKE_INSTALL_PREFIX={self.install_root.as_posix()}",
            f"-DCMAKE_PREFIX_PATH={self.install_root.as_posix()}",
            *recipe.configure_args,
        ]

        build = [
            "cmake", "--build", str(build_dir),
            "--config", recipe.build_type,
            "--parallel", str(self.jobs),
            *recipe.build_args,
        ]

        commands = [
            BuildCommand("configure", configure, source_root),
            BuildCommand("build", build, source_root),
        ]
        if recipe.run_install:
            commands.append(
                BuildCommand(
                    "install",
                    ["cmake", "--install", str(build_dir), "--config", recipe.build_type],
                    source_root,
                )
            )
        return commands

    def _msbuild_commands(self, source_root: Path, recipe: BuildRecipe) -> List[BuildCommand]:
        argv = [
            "msbuild",
            str(source_root / recipe.project),
            f"/p:Configuration={recipe.build_type}",
            f"/p:Platform={msbuild_platform_name(self.arch)}",
        ]
        if recipe.toolset:
            argv.append(f"/p:PlatformToolset={recipe.toolset}")
        argv += ["/m", "/nologo", *recipe.build_args]
        return [BuildCommand("build", argv, source_root)]

    def _autotools_commands(self, source_root: Path, recipe: BuildRecipe) -> List[BuildCommand]:
        commands = [
            BuildCommand(
                "configure",
                [
                    str(source_root / "configure"),
                    f"--prefix={self.install_root.as_posix()}",
                    *recipe.configure_args,
                ],
                source_root,
            ),
            BuildCommand("build", ["make", f"-j{self.jobs}", *recipe.build_args], source_root),
        ]
        if recipe.run_install:
            commands.append(BuildCommand("install", ["make", "install"], source_root))
        return commands

    def _uses_visual_studio(self, recipe: BuildRecipe) -> bool:
        if recipe.generator:
            return recipe.generator.startswith("Visual Studio")
        # CMake's default generator on Windows is Visual Studio
        return self.os_name == "windows"

    def _run(self, command: BuildCommand, recipe: BuildRecipe) -> None:
        logger.info(f"[{command.phase}] {' '.join(command.argv)}")
        result = run_command(
            command.argv, cwd=command.cwd, env=recipe.env or None, timeout=self.timeout
        )
        if not result.ok:
            raise BuildError(
                command.tool, result.exit_code, result.output_tail, command.argv
            )

    def _install(self, source_root: Path, recipe: BuildRecipe) -> ArtifactPaths:
        rules = recipe.install
        artifacts = ArtifactPaths()
        if rules.is_empty():
            return artifacts

        try:
            artifacts.headers = copy_matching(
                source_root, rules.headers, self.install_root / "include"
            )
            artifacts.libraries = copy_matching(
                source_root, rules.libraries, self.install_root / "lib", flatten=True
            )
            artifacts.binaries = copy_matching(
                source_root, rules.binaries, self.install_root / "bin", flatten=True
            )
        except FilesystemError as e:
            raise BuildError("install", None, str(e)) from e

        return artifacts
