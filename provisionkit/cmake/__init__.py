"""
CMake integration.

Renders the toolchain descriptor consumed by the downstream native build.
"""

from provisionkit.cmake.descriptor import (
    BLOCK_BEGIN,
    BLOCK_END,
    DescriptorError,
    ToolchainDescriptor,
    merge_managed_block,
    write_descriptor,
)

__all__ = [
    "BLOCK_BEGIN",
    "BLOCK_END",
    "DescriptorError",
    "ToolchainDescriptor",
    "merge_managed_block",
    "write_descriptor",
]
