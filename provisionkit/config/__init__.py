"""
Plan file configuration.

Loads ``provision.yaml`` plan files and builds provisioning plans from them.
"""

from provisionkit.config.parser import (
    DEFAULT_PLAN_FILE,
    PlanConfig,
    PlanSettings,
    StepFactory,
    create_context,
    create_plan,
    load_plan_config,
)
from provisionkit.core.exceptions import ConfigError

__all__ = [
    "DEFAULT_PLAN_FILE",
    "ConfigError",
    "PlanConfig",
    "PlanSettings",
    "StepFactory",
    "create_context",
    "create_plan",
    "load_plan_config",
]
