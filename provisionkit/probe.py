"""
Tool and artifact presence probes.

Every step decides whether its effect already holds through a probe with a
single :class:`ProbeResult` outcome. Probes are side-effect free, and probing
never raises: an inconclusive probe (unexpected error, timed-out query) is
reported as ABSENT so the step reinstalls rather than wrongly skipping.

Example:
    >>> from provisionkit.probe import ExecutableProbe, PathProbe, AllOf, probe
    >>> probe(ExecutableProbe("cmake"))
    <ProbeResult.PRESENT: 'present'>
    >>> probe(AllOf([PathProbe(root / "include" / "nlohmann"), ExecutableProbe("go")]))
    <ProbeResult.ABSENT: 'absent'>
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from provisionkit.core.filesystem import find_executable

logger = logging.getLogger(__name__)


class ProbeResult(Enum):
    """Outcome of a presence probe."""

    PRESENT = "present"
    ABSENT = "absent"

    def __bool__(self) -> bool:
        return self is ProbeResult.PRESENT

    @classmethod
    def from_bool(cls, present: bool) -> "ProbeResult":
        return cls.PRESENT if present else cls.ABSENT


class Probe(ABC):
    """Base class for presence checks."""

    @abstractmethod
    def check(self) -> bool:
        """Return True if the probed tool/artifact is present. May raise."""

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description used in logs and dry-run output."""

    def __str__(self) -> str:
        return self.describe()


def probe(spec: Probe) -> ProbeResult:
    """
    Evaluate a probe, converting any failure into ABSENT.

    Args:
        spec: Probe to evaluate

    Returns:
        ProbeResult.PRESENT or ProbeResult.ABSENT
    """
    try:
        result = ProbeResult.from_bool(bool(spec.check()))
    except Exception as e:
        logger.debug(f"Probe '{spec.describe()}' was inconclusive, treating as absent: {e}")
        return ProbeResult.ABSENT

    logger.debug(f"Probe '{spec.describe()}': {result.value}")
    return result


class ExecutableProbe(Probe):
    """Checks that a command resolves on PATH (or in extra directories)."""

    def __init__(self, name: str, search_paths: Optional[Iterable[Path]] = None):
        self.name = name
        self.search_paths = [Path(p) for p in search_paths] if search_paths else []

    def check(self) -> bool:
        if find_executable(self.name) is not None:
            return True
        if self.search_paths:
            return find_executable(self.name, self.search_paths) is not None
        return False

    def describe(self) -> str:
        return f"executable {self.name}"


class PathProbe(Probe):
    """
    Checks that a path exists and is non-empty.

    Directories must contain at least one entry; files must have a non-zero
    size.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def check(self) -> bool:
        if self.path.is_dir():
            return any(self.path.iterdir())
        if self.path.is_file():
            return self.path.stat().st_size > 0
        return False

    def describe(self) -> str:
        return f"path {self.path}"


class PackageProbe(Probe):
    """Asks the owning package manager whether a package is installed."""

    def __init__(self, manager, spec):
        self.manager = manager
        self.spec = spec

    def check(self) -> bool:
        return self.manager.is_installed(self.spec)

    def describe(self) -> str:
        return f"{self.manager.get_name()} package {self.spec}"


class CallableProbe(Probe):
    """Wraps an arbitrary predicate."""

    def __init__(self, predicate: Callable[[], bool], description: str):
        self.predicate = predicate
        self.description = description

    def check(self) -> bool:
        return self.predicate()

    def describe(self) -> str:
        return self.description


class AllOf(Probe):
    """Present only if every wrapped probe is present."""

    def __init__(self, probes: Iterable[Probe]):
        self.probes: List[Probe] = list(probes)

    def check(self) -> bool:
        # An empty AllOf proves nothing
        if not self.probes:
            return False
        return all(probe(p) is ProbeResult.PRESENT for p in self.probes)

    def describe(self) -> str:
        return " and ".join(p.describe() for p in self.probes) or "nothing"


__all__ = [
    "ProbeResult",
    "Probe",
    "probe",
    "ExecutableProbe",
    "PathProbe",
    "PackageProbe",
    "CallableProbe",
    "AllOf",
]
