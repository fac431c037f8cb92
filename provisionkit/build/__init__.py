"""
Source builds and patches.

- PatchOp / apply_patch: idempotent pattern substitution in source trees
- BuildRecipe / SourceBuilder: patch, configure, build and install a dependency
"""

from provisionkit.build.builder import (
    ArtifactPaths,
    BuildCommand,
    BuildRecipe,
    BuildSystem,
    InstallRules,
    SourceBuilder,
)
from provisionkit.build.patch import PatchOp, apply_patch, apply_patches, is_patch_applied

__all__ = [
    "ArtifactPaths",
    "BuildCommand",
    "BuildRecipe",
    "BuildSystem",
    "InstallRules",
    "SourceBuilder",
    "PatchOp",
    "apply_patch",
    "apply_patches",
    "is_patch_applied",
]
