"""
Declarative, idempotent source patches.

A :class:`PatchOp` rewrites files matching a glob by pattern substitution.
Each op carries a marker (by default its replacement text); a file that
already contains the marker is left untouched, so applying the same op any
number of times yields the same bytes as applying it once.

Example:
    >>> op = PatchOp(
    ...     target="msvc10/log4cpp/log4cpp.vcxproj",
    ...     pattern="<PlatformToolset>v100</PlatformToolset>",
    ...     replacement="<PlatformToolset>v143</PlatformToolset>",
    ...     regex=False,
    ... )
    >>> apply_patch(op, source_root)
    [PosixPath('.../msvc10/log4cpp/log4cpp.vcxproj')]
"""

import logging
import os
import re
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from provisionkit.core.exceptions import PatchError
from provisionkit.core.filesystem import atomic_write

logger = logging.getLogger(__name__)

_BACKREFERENCE = re.compile(r"\\(\d+|g<[^>]+>)")


@dataclass(frozen=True)
class PatchOp:
    """
    One substitution applied to every file matching ``target``.

    Attributes:
        target: Glob relative to the source root
        pattern: Regular expression (or literal text when ``regex`` is False)
        replacement: Replacement text (may use backreferences in regex mode)
        marker: Text whose presence means the patch is already applied;
            defaults to ``replacement``
        regex: Treat ``pattern`` as a regular expression
        count: Maximum substitutions per file (0: all)
    """

    target: str
    pattern: str
    replacement: str
    marker: Optional[str] = None
    regex: bool = True
    count: int = 0

    def __post_init__(self):
        if not self.target:
            raise ValueError("Patch target cannot be empty")
        if not self.pattern:
            raise ValueError("Patch pattern cannot be empty")
        if self.marker is None and self.regex and _BACKREFERENCE.search(self.replacement):
            raise ValueError(
                f"Patch for '{self.target}' uses backreferences; an explicit marker is required"
            )
        if not self.applied_marker:
            raise ValueError(f"Patch for '{self.target}' needs a non-empty marker")
        if self.regex:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"Invalid patch pattern '{self.pattern}': {e}")

    @property
    def applied_marker(self) -> str:
        return self.marker if self.marker is not None else self.replacement

    def is_applied_to(self, text: str) -> bool:
        return self.applied_marker in text

    def substitute(self, text: str) -> Tuple[str, int]:
        """Return the patched text and the number of substitutions."""
        if self.regex:
            return re.subn(self.pattern, self.replacement, text, count=self.count)
        occurrences = text.count(self.pattern)
        if self.count:
            occurrences = min(occurrences, self.count)
        return text.replace(self.pattern, self.replacement, self.count or -1), occurrences


def _read(path: Path) -> str:
    # newline="" keeps CRLF project files byte-identical outside the patch
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        return f.read()


def _matching_files(op: PatchOp, source_root: Path) -> List[Path]:
    files = sorted(p for p in Path(source_root).glob(op.target) if p.is_file())
    if not files:
        raise PatchError(f"Patch target '{op.target}' matched no files under {source_root}")
    return files


def is_patch_applied(op: PatchOp, source_root: Path) -> bool:
    """Return True if every file matching the op already carries its marker."""
    try:
        files = _matching_files(op, source_root)
    except PatchError:
        return False
    return all(op.is_applied_to(_read(path)) for path in files)


def apply_patch(op: PatchOp, source_root: Path) -> List[Path]:
    """
    Apply ``op`` to the files it targets, at most once per file.

    Args:
        op: Patch to apply
        source_root: Root the op's glob is evaluated against

    Returns:
        Files that were modified (empty when everything was already patched)

    Raises:
        PatchError: If the glob matches nothing, the pattern is absent from
            an unpatched file, or the marker is missing after substitution
    """
    changed: List[Path] = []

    for path in _matching_files(op, source_root):
        text = _read(path)
        if op.is_applied_to(text):
            logger.debug(f"Patch already applied: {path}")
            continue

        patched, substitutions = op.substitute(text)
        if substitutions == 0:
            raise PatchError(f"Pattern '{op.pattern}' not found in {path}")
        if not op.is_applied_to(patched):
            raise PatchError(
                f"Marker '{op.applied_marker}' absent from {path} after patching; "
                "the patch could not be detected on rerun"
            )

        mode = stat.S_IMODE(path.stat().st_mode)
        atomic_write(path, patched.encode("utf-8", errors="surrogateescape"))
        os.chmod(path, mode)
        logger.info(f"Patched {path} ({substitutions} substitution(s))")
        changed.append(path)

    return changed


def apply_patches(ops: Iterable[PatchOp], source_root: Path) -> List[Path]:
    """Apply several ops in order; returns every modified file."""
    changed: List[Path] = []
    for op in ops:
        for path in apply_patch(op, source_root):
            if path not in changed:
                changed.append(path)
    return changed
