"""
Typed wrapper around external process invocation.

Every package manager call, generator run and compiler driver invocation goes
through :func:`run_command`, which always applies a timeout and returns a
:class:`CommandResult` carrying the exit code and the tail of the captured
output instead of leaving callers to inspect raw exit codes.

Example:
    >>> result = run_command(["cmake", "--version"], timeout=30)
    >>> if not result.ok:
    ...     print(result.stderr_tail)
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from provisionkit.core.exceptions import CommandTimeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3600.0
DEFAULT_TAIL_LINES = 40

#: Exit code reported when the executable itself cannot be started.
EXIT_NOT_FOUND = 127


def tail(text: Optional[Union[str, bytes]], lines: int = DEFAULT_TAIL_LINES) -> str:
    """Return the last ``lines`` lines of ``text``."""
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return "\n".join(text.rstrip().splitlines()[-lines:])


@dataclass(frozen=True)
class CommandResult:
    """
    Outcome of an external process.

    Attributes:
        command: Command line that was executed
        exit_code: Process exit code
        stdout: Full captured standard output
        stderr: Full captured standard error
        duration: Wall-clock duration in seconds
    """

    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def stdout_tail(self) -> str:
        return tail(self.stdout)

    @property
    def stderr_tail(self) -> str:
        return tail(self.stderr)

    @property
    def output_tail(self) -> str:
        """Tail of stderr, falling back to stdout when stderr is empty."""
        return self.stderr_tail or self.stdout_tail

    @property
    def tool(self) -> str:
        return Path(self.command[0]).name if self.command else ""


def run_command(
    command: Sequence[Union[str, Path]],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> CommandResult:
    """
    Run an external command and capture its output.

    Args:
        command: Command and arguments
        cwd: Working directory
        env: Variables layered on top of the current process environment
        timeout: Maximum run time in seconds

    Returns:
        CommandResult for the finished process. A missing executable is
        reported as exit code 127 rather than an exception.

    Raises:
        CommandTimeout: If the process exceeds ``timeout``
    """
    cmd = [str(part) for part in command]
    full_env: Optional[Dict[str, str]] = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    logger.debug(f"Running: {' '.join(cmd)}" + (f" (cwd={cwd})" if cwd else ""))
    start = time.monotonic()

    try:
        completed = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=full_env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandTimeout(
            " ".join(cmd), timeout or 0, output_tail=tail(e.stderr) or tail(e.stdout)
        ) from e
    except (FileNotFoundError, PermissionError) as e:
        logger.debug(f"Could not start {cmd[0]}: {e}")
        return CommandResult(
            command=cmd,
            exit_code=EXIT_NOT_FOUND,
            stderr=str(e),
            duration=time.monotonic() - start,
        )

    result = CommandResult(
        command=cmd,
        exit_code=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration=time.monotonic() - start,
    )
    logger.debug(f"{result.tool} exited with {result.exit_code} in {result.duration:.1f}s")
    return result
