"""
Concurrent access control for the install root.

A provisioning run mutates the shared install root (extracted archives,
copied headers and libraries, the toolchain descriptor). This module provides
a cross-process file lock, based on the ``filelock`` library, so that two
provisioning processes on the same host never modify it at the same time.

Usage:
    from provisionkit.core.locking import install_root_lock

    with install_root_lock(install_root, timeout=60):
        plan.run()
"""

import logging
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

from provisionkit.core.exceptions import LockTimeout

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".provisionkit"
LOCK_FILE_NAME = "install-root.lock"


def lock_path_for(install_root: Path) -> Path:
    """Return the lock file path guarding ``install_root``."""
    return Path(install_root) / STATE_DIR_NAME / LOCK_FILE_NAME


@contextmanager
def install_root_lock(install_root: Path, timeout: float = 60):
    """
    Acquire the install-root lock for the duration of a provisioning run.

    Args:
        install_root: Install root directory
        timeout: Maximum wait time in seconds (negative: wait forever)

    Yields:
        Path to the lock file

    Raises:
        LockTimeout: If lock can't be acquired within timeout

    Example:
        >>> with install_root_lock(Path("third_party/install"), timeout=30):
        ...     # Safely provision into the install root
        ...     pass
    """
    lock_path = lock_path_for(install_root)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(lock_path), timeout=timeout)

    try:
        with lock:
            logger.debug(f"Acquired install-root lock: {lock_path}")
            yield lock_path
            logger.debug(f"Released install-root lock: {lock_path}")
    except Timeout as e:
        logger.error(
            f"Could not acquire install-root lock after {timeout}s. "
            "Another provisioning process may be running."
        )
        raise LockTimeout(
            f"Could not acquire install-root lock {lock_path} after {timeout}s. "
            "Another provisioning process may be running."
        ) from e


__all__ = ["install_root_lock", "lock_path_for", "STATE_DIR_NAME"]
