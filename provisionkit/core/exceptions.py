"""
Centralized exception hierarchy for ProvisionKit.

Errors fall into three groups that callers (and CI systems reading the exit
code) treat differently:

- Plan errors: the plan itself is wrong (cycles, unknown dependencies, invalid
  plan file). Never retried.
- Step errors: the environment refused a step (network, package manager,
  native build). Some are retried by the plan's retry policy.
- Timeouts: a bounded wait expired. Transient for fetches, fatal for builds.
"""

from typing import Iterable, Optional


# ============================================================================
# Base Exceptions
# ============================================================================


class ProvisionKitError(Exception):
    """Base exception for all ProvisionKit errors."""

    pass


# ============================================================================
# Plan Exceptions
# ============================================================================


class PlanError(ProvisionKitError):
    """Base exception for plan-authoring errors."""

    pass


class ConfigError(PlanError):
    """Plan file parsing or validation error."""

    pass


class PlanDefinitionError(PlanError):
    """Raised when the step graph is malformed (duplicate ids, cycles)."""

    pass


class DependencyUnsatisfiedError(PlanError):
    """Raised when steps depend on step ids the plan does not define."""

    def __init__(self, missing: dict):
        # step id -> sorted list of unknown dependency ids
        self.missing = {k: sorted(v) for k, v in missing.items()}
        details = ", ".join(
            f"{step_id} -> {', '.join(deps)}" for step_id, deps in self.missing.items()
        )
        super().__init__(f"Unsatisfiable dependencies: {details}")


class PlanCancelled(ProvisionKitError):
    """Raised when a plan is cancelled between steps."""

    def __init__(self, last_completed: Optional[str]):
        self.last_completed = last_completed
        super().__init__(
            f"Plan cancelled (last completed step: {last_completed or 'none'})"
        )


# ============================================================================
# Step Exceptions
# ============================================================================


class StepError(ProvisionKitError):
    """Base exception for failures raised while executing a step."""

    #: Tail of captured diagnostic output, if any.
    diagnostic: str = ""


class FetchError(StepError):
    """Raised when a download fails (network error or non-2xx response)."""

    def __init__(self, url: str, cause: object):
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to fetch {url}: {cause}")


class ExtractError(StepError):
    """Raised when an archive cannot be extracted or yields no entries."""

    def __init__(self, archive: object, cause: object):
        self.archive = archive
        self.cause = cause
        super().__init__(f"Failed to extract {archive}: {cause}")


class InstallError(StepError):
    """Raised when a package manager reports a failed installation."""

    def __init__(
        self,
        manager: str,
        exit_code: Optional[int],
        package: str = "",
        output_tail: str = "",
    ):
        self.manager = manager
        self.exit_code = exit_code
        self.package = package
        self.diagnostic = output_tail
        target = f" {package}" if package else ""
        super().__init__(f"{manager} install{target} failed with exit code {exit_code}")


class BuildError(StepError):
    """Raised when a native build sub-command exits non-zero."""

    def __init__(
        self,
        tool: str,
        exit_code: Optional[int],
        stderr_tail: str = "",
        command: Optional[Iterable[str]] = None,
    ):
        self.tool = tool
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        self.command = list(command) if command else []
        self.diagnostic = stderr_tail
        msg = f"{tool} failed with exit code {exit_code}"
        if self.command:
            msg += f"\nCommand: {' '.join(self.command)}"
        super().__init__(msg)


class PatchError(StepError):
    """Raised when a patch cannot be applied to its target files."""

    pass


class ToolNotFoundError(StepError):
    """Raised when a required tool is absent and cannot be bootstrapped."""

    pass


# ============================================================================
# Timeouts
# ============================================================================


class StepTimeout(ProvisionKitError):
    """Base exception for bounded waits that expired."""

    def __init__(self, what: str, timeout: float):
        self.what = what
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s: {what}")


class FetchTimeout(StepTimeout):
    """A download exceeded its socket timeout or total deadline."""

    pass


class CommandTimeout(StepTimeout):
    """An external process exceeded its timeout."""

    def __init__(self, what: str, timeout: float, output_tail: str = ""):
        super().__init__(what, timeout)
        self.diagnostic = output_tail


class LockTimeout(ProvisionKitError):
    """Raised when the install-root lock cannot be acquired in time."""

    pass


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
]
