"""
CMake toolchain descriptor generation.

The descriptor is a CMake include file recording what provisioning made
available: install root, architecture, C++ standard, include and library
search directories and preprocessor definitions. A downstream build consumes
it with ``include()`` or ``-DCMAKE_PROJECT_TOP_LEVEL_INCLUDES``.

Generated content lives in a managed block delimited by marker comments. The
first run prepends the block to an existing file; later runs replace the
block in place, so hand-written content around it survives and regenerating
with an unchanged context leaves the file byte-identical.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import List, Optional

from provisionkit.core.exceptions import ProvisionKitError
from provisionkit.core.filesystem import atomic_write, is_relative_to

logger = logging.getLogger(__name__)

BLOCK_BEGIN = "# >>> provisionkit managed block >>>"
BLOCK_END = "# <<< provisionkit managed block <<<"


class DescriptorError(ProvisionKitError):
    """Raised when an existing descriptor has a damaged managed block."""

    pass


@dataclass
class ToolchainDescriptor:
    """
    Build settings handed to the downstream native build.

    Attributes:
        install_root: Shared install root
        arch: Target architecture
        platform: Target OS name
        cxx_standard: C++ language standard (None: leave to the project)
        include_dirs: Include search directories
        library_dirs: Library search directories
        definitions: Preprocessor definitions ('NAME' or 'NAME=value')
    """

    install_root: Path
    arch: str
    platform: str
    cxx_standard: Optional[int] = None
    include_dirs: List[str] = field(default_factory=list)
    library_dirs: List[str] = field(default_factory=list)
    definitions: List[str] = field(default_factory=list)

    @classmethod
    def from_context(cls, context) -> "ToolchainDescriptor":
        """Build a descriptor from a :class:`~provisionkit.plan.context.Context`."""
        return cls(
            install_root=Path(context.install_root),
            arch=context.arch,
            platform=context.platform,
            cxx_standard=context.cxx_standard,
            include_dirs=list(context.include_dirs),
            library_dirs=list(context.library_dirs),
            definitions=list(context.definitions),
        )

    def _cmake_path(self, path: str) -> str:
        # Paths under the install root stay relative to it
        path = Path(path)
        if path.is_absolute() and is_relative_to(path, self.install_root):
            relative = PurePath(path).relative_to(self.install_root).as_posix()
            return "${PROVISIONKIT_INSTALL_ROOT}" + ("" if relative == "." else f"/{relative}")
        return path.as_posix()

    def render(self) -> str:
        """Render the managed block, markers included."""
        lines = [
            BLOCK_BEGIN,
            "# Generated by ProvisionKit",
            "# DO NOT EDIT inside this block - it is rewritten on every provisioning run",
            f'set(PROVISIONKIT_INSTALL_ROOT "{Path(self.install_root).as_posix()}")',
            f'set(PROVISIONKIT_ARCH "{self.arch}")',
            f'set(PROVISIONKIT_PLATFORM "{self.platform}")',
            'list(APPEND CMAKE_PREFIX_PATH "${PROVISIONKIT_INSTALL_ROOT}")',
        ]

        if self.cxx_standard:
            lines += [
                f"set(CMAKE_CXX_STANDARD {self.cxx_standard})",
                "set(CMAKE_CXX_STANDARD_REQUIRED ON)",
            ]

        if self.include_dirs:
            dirs = " ".join(f'"{self._cmake_path(d)}"' for d in self.include_dirs)
            lines += [
                f"list(APPEND CMAKE_INCLUDE_PATH {dirs})",
                f"include_directories(SYSTEM {dirs})",
            ]

        if self.library_dirs:
            dirs = " ".join(f'"{self._cmake_path(d)}"' for d in self.library_dirs)
            lines += [
                f"list(APPEND CMAKE_LIBRARY_PATH {dirs})",
                f"link_directories({dirs})",
            ]

        if self.definitions:
            lines.append(f"add_compile_definitions({' '.join(self.definitions)})")

        lines.append(BLOCK_END)
        return "\n".join(lines) + "\n"


def merge_managed_block(existing: str, block: str) -> str:
    """
    Insert ``block`` into ``existing`` content.

    Replaces the current managed block in place, or prepends the block when
    there is none.

    Raises:
        DescriptorError: If only one of the markers is present
    """
    begin = existing.find(BLOCK_BEGIN)
    end = existing.find(BLOCK_END)

    if begin == -1 and end == -1:
        if not existing:
            return block
        return block + "\n" + existing

    if begin == -1 or end == -1 or end < begin:
        raise DescriptorError("Managed block markers are unbalanced; fix the file by hand")

    end += len(BLOCK_END)
    # The block owns its trailing newline
    if existing.startswith("\r\n", end):
        end += 2
    elif existing.startswith("\n", end):
        end += 1
    return existing[:begin] + block + existing[end:]


def write_descriptor(descriptor: ToolchainDescriptor, output_path: Path) -> bool:
    """
    Write ``descriptor`` into ``output_path`` atomically.

    Args:
        descriptor: Descriptor to render
        output_path: CMake file to create or update

    Returns:
        True if the file changed, False if it already had this content

    Raises:
        DescriptorError: If the existing file's managed block is damaged
    """
    output_path = Path(output_path)
    existing = ""
    if output_path.exists():
        with open(output_path, "r", encoding="utf-8", newline="") as f:
            existing = f.read()

    content = merge_managed_block(existing, descriptor.render())
    if content == existing:
        logger.debug(f"Toolchain descriptor unchanged: {output_path}")
        return False

    atomic_write(output_path, content)
    logger.info(f"Wrote toolchain descriptor: {output_path}")
    return True


__all__ = [
    "BLOCK_BEGIN",
    "BLOCK_END",
    "DescriptorError",
    "ToolchainDescriptor",
    "merge_managed_block",
    "write_descriptor",
]
