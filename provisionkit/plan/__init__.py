"""
Provisioning plans.

- Step / StepKind / StepState / StepResult: immutable steps and their outcomes
- Context: environment overlay accumulated during a run
- Step actions: tool checks, package installs, fetches, builds, patches, env
- ProvisionPlan: topological, fail-fast execution with retries and cancellation
"""

from provisionkit.plan.actions import (
    BuildAction,
    EnvSetAction,
    FetchAction,
    PackageInstallAction,
    PatchAction,
    StepAction,
    ToolCheckAction,
)
from provisionkit.plan.context import (
    ENV_ARCH,
    ENV_INSTALL_ROOT,
    ENV_TOOLCHAIN_FILE,
    Context,
)
from provisionkit.plan.graph import dependency_chain, topological_order
from provisionkit.plan.plan import CancellationToken, PlanReport, ProvisionPlan, RetryPolicy
from provisionkit.plan.step import Step, StepKind, StepResult, StepState

__all__ = [
    "BuildAction",
    "EnvSetAction",
    "FetchAction",
    "PackageInstallAction",
    "PatchAction",
    "StepAction",
    "ToolCheckAction",
    "ENV_ARCH",
    "ENV_INSTALL_ROOT",
    "ENV_TOOLCHAIN_FILE",
    "Context",
    "dependency_chain",
    "topological_order",
    "CancellationToken",
    "PlanReport",
    "ProvisionPlan",
    "RetryPolicy",
    "Step",
    "StepKind",
    "StepResult",
    "StepState",
]
