"""
Status command implementation.

Probes every step of the plan and shows the last recorded run. Nothing is
installed, fetched or written.
"""

import logging

from provisionkit.cli.utils import (
    EXIT_OK,
    EXIT_PLAN_ERROR,
    print_error,
    resolve_plan_path,
    resolve_project_root,
    safe_print,
)
from provisionkit.config.parser import create_plan, load_plan_config
from provisionkit.core.exceptions import PlanError
from provisionkit.core.state import StateManager

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the status command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 2 for an invalid plan)
    """
    project_root = resolve_project_root(args.project_root)
    plan_path = resolve_plan_path(project_root, args.config)

    try:
        config = load_plan_config(
            plan_path,
            project_root=project_root,
            arch=args.arch,
            install_root=args.install_root,
        )
        plan = create_plan(config)
    except PlanError as e:
        print_error("Invalid plan", str(e))
        return EXIT_PLAN_ERROR

    print(f"Plan:         {config.source}")
    print(f"Target:       {config.os_name}-{config.arch}")
    print(f"Install root: {config.install_root}")
    print()

    present = 0
    for step in plan.order:
        satisfied = step.action.is_satisfied(plan.context)
        present += satisfied
        mark = "✓" if satisfied else "✗"
        safe_print(f"  {mark} {step.label}")
    print()
    print(f"{present}/{len(plan.order)} steps satisfied")

    state = StateManager(config.install_root).load()
    if state.outcome is None:
        print("No provisioning run recorded")
        return EXIT_OK

    print(f"Last run: {state.outcome} at {state.finished_at}")
    if state.last_completed:
        print(f"  last completed step: {state.last_completed}")
    if state.failed_step:
        print(f"  failed step: {state.failed_step}")
    if state.plan_hash and state.plan_hash != config.plan_hash:
        print("  plan file changed since that run")
    return EXIT_OK
