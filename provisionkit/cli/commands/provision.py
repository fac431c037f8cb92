"""
Provision command implementation.

Loads the plan file, runs (or dry-runs) the plan under the install-root lock,
publishes the environment and toolchain descriptor on success and records the
run in the install root's state file.
"""

import logging
import signal
import threading
from contextlib import contextmanager

from provisionkit.cli.utils import (
    EXIT_PLAN_ERROR,
    exit_code_for,
    print_box,
    print_error,
    resolve_plan_path,
    resolve_project_root,
)
from provisionkit.config.parser import create_plan, load_plan_config
from provisionkit.core.exceptions import LockTimeout, PlanError, ProvisionKitError
from provisionkit.core.locking import install_root_lock
from provisionkit.core.state import StateManager
from provisionkit.environment import EnvironmentPublisher, default_persistent_environment
from provisionkit.plan.plan import CancellationToken, PlanReport

logger = logging.getLogger(__name__)


@contextmanager
def cancel_on_signals(token: CancellationToken):
    """
    Turn SIGINT/SIGTERM into a cancellation request for the duration of a run.

    The running step finishes; the plan stops before the next one. A second
    signal falls back to the default handler.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        logger.warning(
            f"Received signal {signum}; stopping after the current step "
            "(send again to abort immediately)"
        )
        token.cancel()
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)

    previous = {
        sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _outcome(report: PlanReport) -> str:
    if report.ok:
        return "succeeded"
    if report.cancelled:
        return "cancelled"
    return "failed"


def run(args) -> int:
    """
    Run the provision command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (see provisionkit.cli.utils)
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
        if args.fetch_workers:
            config.settings.fetch_workers = args.fetch_workers
        if args.persist_env is not None:
            config.settings.persist_env = args.persist_env
        if args.descriptor:
            config.descriptor = (project_root / args.descriptor).resolve()

        token = CancellationToken()
        plan = create_plan(config, cancel_token=token)
    except PlanError as e:
        print_error("Invalid plan", str(e))
        return EXIT_PLAN_ERROR

    logger.info(
        f"Provisioning {config.os_name}-{config.arch} into {config.install_root} "
        f"({len(plan.order)} steps)"
    )

    if args.dry_run:
        report = plan.dry_run()
        _print_dry_run(plan, report)
        return exit_code_for(report.error)

    try:
        with cancel_on_signals(token):
            with install_root_lock(config.install_root, timeout=config.settings.lock_timeout):
                report = plan.run()
                if report.ok:
                    _publish(config, plan.context)
                if not report.unsatisfied:
                    StateManager(config.install_root).record_run(
                        outcome=_outcome(report),
                        step_states=report.step_states(),
                        last_completed=report.last_completed,
                        failed_step=report.failed_step,
                        plan_hash=config.plan_hash,
                    )
    except LockTimeout as e:
        print_error(str(e))
        return exit_code_for(e)
    except ProvisionKitError as e:
        # Publishing failures (e.g. a damaged descriptor block)
        print_error("Failed to publish environment", str(e))
        return exit_code_for(e)

    print()
    print_box("Provisioning " + _outcome(report).upper())
    print(report.summary())
    return exit_code_for(report.error)


def _publish(config, context) -> None:
    persistent = None
    if config.settings.persist_env:
        persistent = default_persistent_environment(config.install_root)
    publisher = EnvironmentPublisher(
        persistent=persistent,
        descriptor_path=config.descriptor,
    )
    report = publisher.publish(context)
    if report.descriptor:
        logger.info(f"Toolchain descriptor: {report.descriptor}")


def _print_dry_run(plan, report: PlanReport) -> None:
    print()
    if report.unsatisfied:
        print(report.summary())
        return

    print_box("Dry run: steps a live run would execute")
    for step in plan.order:
        if step.id in report.rechecked:
            print(f"  run?  {step.label} (re-checked after its dependencies run)")
        elif step.id in report.planned:
            print(f"  run   {step.label}")
    for step in plan.order:
        if step.id in report.skipped:
            print(f"  skip  {step.label}")
    print()
    print(report.summary())
