"""
Core functionality for ProvisionKit.

This package contains the foundational modules that other components depend on:
exceptions, process execution, filesystem helpers, downloads, locking,
platform detection and the run-state record.
"""

from .exceptions import (
    ProvisionKitError,
    PlanError,
    ConfigError,
    PlanDefinitionError,
    DependencyUnsatisfiedError,
    PlanCancelled,
    StepError,
    FetchError,
    ExtractError,
    InstallError,
    BuildError,
    PatchError,
    ToolNotFoundError,
    StepTimeout,
    FetchTimeout,
    CommandTimeout,
    LockTimeout,
)

from .platform import (
    PlatformInfo,
    detect_platform,
    normalize_arch,
    clear_platform_cache,
)

from .process import CommandResult, run_command

from .locking import install_root_lock

from .state import RunState, StateManager

__all__ = [
    "ProvisionKitError",
    "PlanError",
    "ConfigError",
    "PlanDefinitionError",
    "DependencyUnsatisfiedError",
    "PlanCancelled",
    "StepError",
    "FetchError",
    "ExtractError",
    "InstallError",
    "BuildError",
    "PatchError",
    "ToolNotFoundError",
    "StepTimeout",
    "FetchTimeout",
    "CommandTimeout",
    "LockTimeout",
    "PlatformInfo",
    "detect_platform",
    "normalize_arch",
    "clear_platform_cache",
    "CommandResult",
    "run_command",
    "install_root_lock",
    "RunState",
    "StateManager",
]
