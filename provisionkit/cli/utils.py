"""
Shared utilities for CLI commands.

Provides exit code mapping, plan file resolution and consistent output
formatting for the provisioning commands.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from provisionkit.config.parser import DEFAULT_PLAN_FILE
from provisionkit.core.exceptions import (
    BuildError,
    ExtractError,
    FetchError,
    InstallError,
    LockTimeout,
    PlanCancelled,
    PlanError,
    StepTimeout,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Exit Codes
# ============================================================================

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PLAN_ERROR = 2
EXIT_FETCH_FAILED = 3
EXIT_INSTALL_FAILED = 4
EXIT_BUILD_FAILED = 5
EXIT_TIMEOUT = 6
EXIT_STEP_FAILED = 7
EXIT_LOCK_TIMEOUT = 8
EXIT_CANCELLED = 130  # Standard exit code for SIGINT


def exit_code_for(error: Optional[BaseException]) -> int:
    """
    Map the error that stopped a run to a process exit code.

    Plan errors (unsatisfied dependencies, cycles, invalid plan file) get a
    code distinct from environmental failures so CI systems can decide
    whether a retry makes sense.

    Example:
        >>> exit_code_for(None)
        0
        >>> exit_code_for(BuildError("msbuild (build)", 1))
        5
    """
    if error is None:
        return EXIT_OK
    if isinstance(error, PlanCancelled):
        return EXIT_CANCELLED
    if isinstance(error, PlanError):
        return EXIT_PLAN_ERROR
    if isinstance(error, (FetchError, ExtractError)):
        return EXIT_FETCH_FAILED
    if isinstance(error, InstallError):
        return EXIT_INSTALL_FAILED
    if isinstance(error, BuildError):
        return EXIT_BUILD_FAILED
    if isinstance(error, StepTimeout):
        return EXIT_TIMEOUT
    if isinstance(error, LockTimeout):
        return EXIT_LOCK_TIMEOUT
    return EXIT_STEP_FAILED


# ============================================================================
# Path Utilities
# ============================================================================


def resolve_project_root(path: Optional[Path] = None) -> Path:
    """
    Resolve project root directory.

    Args:
        path: Optional path (defaults to current directory)

    Returns:
        Resolved absolute path
    """
    if path is None:
        path = Path.cwd()
    return Path(path).resolve()


def resolve_plan_path(project_root: Path, config: Optional[Path] = None) -> Path:
    """Plan file from ``--config``, or ``provision.yaml`` in the project root."""
    if config:
        config = Path(config)
        return config if config.is_absolute() else project_root / config
    return project_root / DEFAULT_PLAN_FILE


# ============================================================================
# User Interface / Output Formatting
# ============================================================================


def print_box(text: str, width: int = 70, char: str = "="):
    """Print text in a box for emphasis."""
    print(char * width)
    print(text)
    print(char * width)


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)


def safe_print(message: str, file=None):
    """
    Print message with safe encoding handling for Windows console.

    Falls back to ASCII-safe characters if Unicode marks can't be encoded.
    """
    try:
        print(message, file=file)
    except UnicodeEncodeError:
        safe_message = message.replace("✓", "[OK]").replace("✗", "[--]")
        print(safe_message, file=file)
