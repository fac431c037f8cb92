"""YAML plan file parser for ProvisionKit.

This module loads ``provision.yaml`` plan files, resolves overrides
(command line > environment > file), expands ``${...}`` substitutions and
turns step entries into :class:`~provisionkit.plan.step.Step` objects.

Supported substitutions in string values:

- ``${install_root}``: resolved install root (forward slashes)
- ``${arch}``: target architecture ('x64', 'arm64', ...)
- ``${triplet}``: vcpkg triplet for the target ('x64-windows', 'arm64-osx', ...)
- ``${os}``: target OS ('windows', 'macos', 'linux')
- ``${env:NAME}``: value of environment variable NAME (must be set)
"""

import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from provisionkit.build.builder import BuildRecipe, BuildSystem, InstallRules, SourceBuilder
from provisionkit.build.patch import PatchOp
from provisionkit.core.exceptions import ConfigError
from provisionkit.core.filesystem import IS_WINDOWS, compute_file_hash
from provisionkit.core.locking import STATE_DIR_NAME
from provisionkit.core.platform import detect_platform, normalize_arch, vcpkg_triplet
from provisionkit.environment import PersistentEnvironment, default_persistent_environment
from provisionkit.fetch import ArchiveFetcher, ArchiveSpec
from provisionkit.packages.base import ManagerKind, PackageSpec
from provisionkit.packages.installer import PackageInstaller
from provisionkit.plan.actions import (
    BuildAction,
    EnvSetAction,
    FetchAction,
    PackageInstallAction,
    PatchAction,
    ToolCheckAction,
)
from provisionkit.plan.context import ENV_ARCH, ENV_INSTALL_ROOT, ENV_TOOLCHAIN_FILE, Context
from provisionkit.plan.plan import CancellationToken, ProvisionPlan, RetryPolicy
from provisionkit.plan.step import Step, StepKind

logger = logging.getLogger(__name__)

DEFAULT_PLAN_FILE = "provision.yaml"
DEFAULT_INSTALL_ROOT = "third_party/install"
FETCH_STAMP_DIR = "fetched"

_SUBSTITUTION = re.compile(r"\$\{([^}]+)\}")


@dataclass
class PlanSettings:
    """Execution settings of a plan."""

    fetch_attempts: int = 3
    fetch_workers: int = 1
    fetch_timeout: float = 600.0  # total deadline per download
    socket_timeout: float = 30.0
    command_timeout: float = 3600.0
    lock_timeout: float = 60.0
    persist_env: bool = True


@dataclass
class PlanConfig:
    """A loaded, substituted plan file."""

    version: int
    source: Path
    project_root: Path
    install_root: Path
    arch: str
    os_name: str
    cxx_standard: Optional[int] = None
    definitions: List[str] = field(default_factory=list)
    descriptor: Optional[Path] = None
    vcpkg_root: Optional[Path] = None
    settings: PlanSettings = field(default_factory=PlanSettings)
    steps: List[Dict[str, Any]] = field(default_factory=list)
    plan_hash: Optional[str] = None

    @property
    def triplet(self) -> str:
        return vcpkg_triplet(self.os_name, self.arch)


# ============================================================================
# Loading
# ============================================================================


def load_plan_config(
    config_path: Path,
    project_root: Optional[Path] = None,
    arch: Optional[str] = None,
    install_root: Optional[Path] = None,
    os_name: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PlanConfig:
    """
    Load and validate a plan file.

    Args:
        config_path: Path to the plan file
        project_root: Root for relative paths (default: the file's directory)
        arch: Architecture override (command line)
        install_root: Install root override (command line)
        os_name: Target OS (default: host OS)
        environ: Environment for overrides and ``${env:...}`` (default: os.environ)

    Returns:
        Parsed plan configuration

    Raises:
        ConfigError: If the file is missing or invalid
    """
    config_path = Path(config_path)
    environ = os.environ if environ is None else environ

    if not config_path.exists():
        raise ConfigError(f"Plan file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")

    if data is None:
        raise ConfigError(f"Plan file is empty: {config_path}")
    if not isinstance(data, dict):
        raise ConfigError("Plan file must contain a mapping at the top level")

    project_root = Path(project_root or config_path.parent).resolve()
    config = _parse_and_validate(data, config_path, project_root, arch, install_root, os_name, environ)
    config.plan_hash = f"sha256:{compute_file_hash(config_path)}"
    return config


def _parse_and_validate(
    data: dict,
    config_path: Path,
    project_root: Path,
    arch_override: Optional[str],
    install_root_override: Optional[Path],
    os_name: Optional[str],
    environ: Mapping[str, str],
) -> PlanConfig:
    """Parse and validate plan data."""
    if "version" not in data:
        raise ConfigError("Missing required field: version")
    if data["version"] != 1:
        raise ConfigError(f"Unsupported version: {data['version']} (expected 1)")

    host = detect_platform()
    os_name = os_name or host.os

    raw_arch = arch_override or environ.get(ENV_ARCH) or data.get("arch") or host.arch
    try:
        arch = normalize_arch(str(raw_arch))
    except ValueError as e:
        raise ConfigError(f"arch: {e}")

    raw_root = (
        install_root_override
        or environ.get(ENV_INSTALL_ROOT)
        or data.get("install_root")
        or DEFAULT_INSTALL_ROOT
    )
    raw_root = _substitute(str(raw_root), {}, environ, "install_root")
    install_root = _resolve(project_root, raw_root)

    variables = {
        "install_root": install_root.as_posix(),
        "arch": arch,
        "triplet": vcpkg_triplet(os_name, arch),
        "os": os_name,
    }

    def expand(value, where):
        return _expand(value, variables, environ, where)

    cxx_standard = data.get("cxx_standard")
    if cxx_standard is not None and not isinstance(cxx_standard, int):
        raise ConfigError(f"cxx_standard must be an integer, got {cxx_standard!r}")

    definitions = expand(data.get("definitions") or [], "definitions")
    if not isinstance(definitions, list):
        raise ConfigError("definitions must be a list")

    descriptor = data.get("descriptor")
    descriptor = _resolve(project_root, expand(descriptor, "descriptor")) if descriptor else None

    vcpkg_root = data.get("vcpkg_root")
    vcpkg_root = _resolve(project_root, expand(vcpkg_root, "vcpkg_root")) if vcpkg_root else None

    steps = data.get("steps")
    if not steps or not isinstance(steps, list):
        raise ConfigError("At least one step must be defined under 'steps'")

    parsed_steps = []
    for index, step in enumerate(steps):
        if not isinstance(step, dict):
            raise ConfigError(f"steps[{index}] must be a mapping")
        step_id = step.get("id")
        if not step_id or not isinstance(step_id, str):
            raise ConfigError(f"steps[{index}] is missing a string 'id'")
        parsed_steps.append(expand(step, f"step '{step_id}'"))

    return PlanConfig(
        version=data["version"],
        source=config_path,
        project_root=project_root,
        install_root=install_root,
        arch=arch,
        os_name=os_name,
        cxx_standard=cxx_standard,
        definitions=[str(d) for d in definitions],
        descriptor=descriptor,
        vcpkg_root=vcpkg_root,
        settings=_parse_settings(data.get("settings") or {}),
        steps=parsed_steps,
    )


def _parse_settings(data: dict) -> PlanSettings:
    """Parse the settings section."""
    if not isinstance(data, dict):
        raise ConfigError("settings must be a mapping")

    defaults = PlanSettings()
    unknown = set(data) - set(vars(defaults))
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")

    def number(name, kind, minimum):
        value = data.get(name, getattr(defaults, name))
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"settings.{name} must be a number, got {value!r}")
        if value < minimum:
            raise ConfigError(f"settings.{name} must be at least {minimum}")
        return kind(value)

    persist_env = data.get("persist_env", defaults.persist_env)
    if not isinstance(persist_env, bool):
        raise ConfigError("settings.persist_env must be true or false")

    return PlanSettings(
        fetch_attempts=number("fetch_attempts", int, 1),
        fetch_workers=number("fetch_workers", int, 1),
        fetch_timeout=number("fetch_timeout", float, 1),
        socket_timeout=number("socket_timeout", float, 1),
        command_timeout=number("command_timeout", float, 1),
        lock_timeout=number("lock_timeout", float, 0),
        persist_env=persist_env,
    )


def _resolve(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base / path).resolve()


# ============================================================================
# Substitution
# ============================================================================


def _substitute(text: str, variables: Dict[str, str], environ: Mapping[str, str], where: str) -> str:
    def replace(match):
        name = match.group(1).strip()
        if name.startswith("env:"):
            env_name = name[len("env:"):]
            if env_name not in environ:
                raise ConfigError(f"{where}: environment variable {env_name} is not set")
            return environ[env_name]
        if name not in variables:
            raise ConfigError(f"{where}: unknown substitution ${{{name}}}")
        return variables[name]

    return _SUBSTITUTION.sub(replace, text)


def _expand(value: Any, variables: Dict[str, str], environ: Mapping[str, str], where: str) -> Any:
    """Apply substitutions to every string in ``value``."""
    if isinstance(value, str):
        return _substitute(value, variables, environ, where)
    if isinstance(value, list):
        return [_expand(v, variables, environ, where) for v in value]
    if isinstance(value, dict):
        return {k: _expand(v, variables, environ, f"{where}.{k}") for k, v in value.items()}
    return value


# ============================================================================
# Step construction
# ============================================================================


def _field(step: dict, name: str, kind=str, required: bool = True, default=None):
    where = f"step '{step['id']}'"
    if name not in step or step[name] is None:
        if required:
            raise ConfigError(f"{where}: missing required field '{name}'")
        return default
    value = step[name]
    if kind is list and isinstance(value, str):
        value = [value]
    if not isinstance(value, kind):
        raise ConfigError(f"{where}: field '{name}' must be a {kind.__name__}")
    return value


def _argv(value, where: str) -> List[str]:
    if isinstance(value, str):
        return shlex.split(value, posix=not IS_WINDOWS)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"{where}: command must be a string or a list of strings")


class StepFactory:
    """
    Creates steps from plan entries, sharing one installer, fetcher and builder.

    Attributes:
        config: Loaded plan configuration
        installer: Package installer
        fetcher: Archive fetcher
        builder: Source builder
        persistent: Persistent environment backend consulted by env_set
            probes; derived from ``settings.persist_env`` when not given
    """

    def __init__(
        self,
        config: PlanConfig,
        installer: Optional[PackageInstaller] = None,
        fetcher: Optional[ArchiveFetcher] = None,
        builder: Optional[SourceBuilder] = None,
        persistent: Optional[PersistentEnvironment] = None,
    ):
        settings = config.settings
        self.config = config
        self.installer = installer or PackageInstaller.for_platform(
            config.os_name, config.arch, vcpkg_root=config.vcpkg_root, timeout=settings.command_timeout
        )
        self.fetcher = fetcher or ArchiveFetcher(
            timeout=settings.socket_timeout,
            deadline=settings.fetch_timeout,
            stamp_dir=config.install_root / STATE_DIR_NAME / FETCH_STAMP_DIR,
        )
        self.builder = builder or SourceBuilder(
            config.install_root, config.os_name, config.arch, timeout=settings.command_timeout
        )
        if persistent is None and settings.persist_env:
            persistent = default_persistent_environment(config.install_root)
        self.persistent = persistent

    def create_steps(self) -> List[Step]:
        return [self.create_step(entry) for entry in self.config.steps]

    def create_step(self, entry: dict) -> Step:
        where = f"step '{entry['id']}'"
        try:
            kind = StepKind.parse(str(_field(entry, "kind")))
        except ValueError as e:
            raise ConfigError(f"{where}: {e}")

        builders = {
            StepKind.TOOL_CHECK: self._tool_check,
            StepKind.PACKAGE_INSTALL: self._package_install,
            StepKind.FETCH: self._fetch,
            StepKind.BUILD: self._build,
            StepKind.PATCH: self._patch,
            StepKind.ENV_SET: self._env_set,
        }
        try:
            action = builders[kind](entry)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{where}: {e}")

        retryable = _field(entry, "retryable", bool, required=False)
        return Step.create(
            entry["id"],
            action,
            depends_on=[str(d) for d in _field(entry, "depends_on", list, required=False, default=[])],
            retryable=retryable,
            description=_field(entry, "description", required=False, default=""),
        )

    def _path(self, value: str) -> Path:
        return _resolve(self.config.install_root, value)

    def _tool_check(self, entry: dict) -> ToolCheckAction:
        bootstrap = entry.get("bootstrap")
        return ToolCheckAction(
            tool=_field(entry, "tool"),
            search_paths=[self._path(p) for p in _field(entry, "search_paths", list, False, [])],
            bootstrap=_argv(bootstrap, f"step '{entry['id']}'.bootstrap") if bootstrap else None,
            timeout=self.config.settings.command_timeout,
        )

    def _package_install(self, entry: dict) -> PackageInstallAction:
        package = _field(entry, "package", dict)
        if "name" not in package or "manager" not in package:
            raise ValueError("package requires 'name' and 'manager'")
        version = package.get("version")
        spec = PackageSpec(
            name=str(package["name"]),
            manager=ManagerKind.parse(str(package["manager"])),
            version=str(version) if version is not None else None,
            options=tuple(str(o) for o in package.get("options") or ()),
            triplet=package.get("triplet"),
            executable=package.get("executable"),
        )
        return PackageInstallAction(
            self.installer, spec, refresh_first=_field(entry, "refresh", bool, False, False)
        )

    def _archive(self, data: dict, where: str) -> ArchiveSpec:
        if "url" not in data or "destination" not in data:
            raise ValueError(f"{where} requires 'url' and 'destination'")
        return ArchiveSpec(
            url=str(data["url"]),
            destination=self._path(str(data["destination"])),
            expected_entry=data.get("expected_entry"),
            sha256=data.get("sha256"),
            filename=data.get("filename"),
        )

    def _fetch(self, entry: dict) -> FetchAction:
        return FetchAction(
            self.fetcher,
            self._archive(entry, "fetch"),
            include_dirs=_field(entry, "include_dirs", list, False, []),
            library_dirs=_field(entry, "library_dirs", list, False, []),
            path=_field(entry, "path", list, False, []),
        )

    def _patches(self, data: List[dict]) -> List[PatchOp]:
        ops = []
        for patch in data:
            if not isinstance(patch, dict):
                raise ValueError("each patch must be a mapping")
            ops.append(
                PatchOp(
                    target=str(patch.get("target", "")),
                    pattern=str(patch.get("pattern", "")),
                    replacement=str(patch.get("replacement", "")),
                    marker=patch.get("marker"),
                    regex=bool(patch.get("regex", True)),
                    count=int(patch.get("count", 0)),
                )
            )
        return ops

    def _recipe(self, data: dict, patches: List[PatchOp]) -> BuildRecipe:
        install = data.get("install") or {}
        commands = tuple(
            tuple(_argv(c, "recipe.commands")) for c in data.get("commands") or ()
        )
        return BuildRecipe(
            system=BuildSystem(str(data.get("system", "cmake")).lower()),
            build_type=str(data.get("build_type", "Release")),
            build_dir=str(data.get("build_dir", "build")),
            generator=data.get("generator"),
            toolset=data.get("toolset"),
            project=data.get("project"),
            configure_args=tuple(str(a) for a in data.get("configure_args") or ()),
            build_args=tuple(str(a) for a in data.get("build_args") or ()),
            commands=commands,
            patches=tuple(patches),
            install=InstallRules(
                headers=tuple(install.get("headers") or ()),
                libraries=tuple(install.get("libraries") or ()),
                binaries=tuple(install.get("binaries") or ()),
            ),
            run_install=bool(data.get("run_install", True)),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            artifacts=tuple(data.get("artifacts") or ()),
        )

    def _build(self, entry: dict) -> BuildAction:
        recipe_data = _field(entry, "recipe", dict)
        patches = self._patches(
            _field(entry, "patches", list, False, []) + list(recipe_data.get("patches") or [])
        )
        source = entry.get("source")
        return BuildAction(
            self.builder,
            self._recipe(recipe_data, patches),
            source_root=self._path(_field(entry, "source_root")),
            source=self._archive(source, "source") if source else None,
            fetcher=self.fetcher,
            include_dirs=_field(entry, "include_dirs", list, False, ["include"]),
            library_dirs=_field(entry, "library_dirs", list, False, ["lib"]),
            path=_field(entry, "path", list, False, []),
        )

    def _patch(self, entry: dict) -> PatchAction:
        return PatchAction(
            self._patches(_field(entry, "patches", list)),
            source_root=self._path(_field(entry, "source_root")),
        )

    def _env_set(self, entry: dict) -> EnvSetAction:
        variables = _field(entry, "variables", dict, False, {})
        return EnvSetAction(
            variables={str(k): str(v) for k, v in variables.items()},
            path=[str(self._path(p)) for p in _field(entry, "path", list, False, [])],
            persist=_field(entry, "persist", bool, False, False),
            persistent=self.persistent,
        )


# ============================================================================
# Plan assembly
# ============================================================================


def create_context(config: PlanConfig) -> Context:
    """Create the starting context for ``config``."""
    context = Context.create(
        config.install_root,
        config.arch,
        config.os_name,
        cxx_standard=config.cxx_standard,
        definitions=config.definitions,
    )
    if config.descriptor:
        context.set_env(ENV_TOOLCHAIN_FILE, str(config.descriptor))
    return context


def create_plan(
    config: PlanConfig,
    cancel_token: Optional[CancellationToken] = None,
    factory: Optional[StepFactory] = None,
) -> ProvisionPlan:
    """
    Build a ready-to-run plan from ``config``.

    Raises:
        ConfigError: If a step entry is invalid
        PlanDefinitionError: On duplicate ids or dependency cycles
    """
    factory = factory or StepFactory(config)
    return ProvisionPlan(
        factory.create_steps(),
        create_context(config),
        retry_policy=RetryPolicy(fetch_attempts=config.settings.fetch_attempts),
        fetch_workers=config.settings.fetch_workers,
        cancel_token=cancel_token,
    )


__all__ = [
    "DEFAULT_PLAN_FILE",
    "PlanSettings",
    "PlanConfig",
    "load_plan_config",
    "StepFactory",
    "create_context",
    "create_plan",
]
