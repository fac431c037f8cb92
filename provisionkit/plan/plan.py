"""
Provisioning plan orchestrator.

:class:`ProvisionPlan` runs steps in a topological order computed once at
construction. Each step first evaluates its idempotency check and is skipped
when its effect already holds; otherwise its action runs under the plan's
retry policy. The first failure halts the plan (fail-fast) and every later
step stays PENDING.

The plan is the only place that aggregates failures: it logs the failing
step, its dependency chain and the captured diagnostic tail, and returns a
:class:`PlanReport` instead of raising for step failures.

Example:
    >>> plan = ProvisionPlan(steps, Context.create(root, "x64", "windows"))
    >>> report = plan.run()
    >>> print(report.summary())
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from provisionkit.core.exceptions import (
    DependencyUnsatisfiedError,
    ExtractError,
    FetchError,
    FetchTimeout,
    InstallError,
    PlanCancelled,
)
from provisionkit.plan.context import Context
from provisionkit.plan.graph import (
    are_independent,
    dependency_chain,
    find_unknown_dependencies,
    index_steps,
    topological_order,
)
from provisionkit.plan.step import Step, StepKind, StepResult, StepState

logger = logging.getLogger(__name__)

#: Errors a retryable step may retry with backoff
TRANSIENT_FETCH_ERRORS = (FetchError, ExtractError, FetchTimeout)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry limits applied to retryable steps.

    Attributes:
        fetch_attempts: Total attempts for transient fetch failures
        backoff_base: First backoff delay in seconds, doubled per attempt
        install_refreshes: Retries after a manager refresh on InstallError
    """

    fetch_attempts: int = 3
    backoff_base: float = 1.0
    install_refreshes: int = 1

    def __post_init__(self):
        if self.fetch_attempts < 1:
            raise ValueError("fetch_attempts must be at least 1")

    def backoff(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return self.backoff_base * (2 ** (attempt - 1))


class CancellationToken:
    """Thread-safe flag checked by the plan between steps."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)


@dataclass
class PlanReport:
    """
    Outcome of a plan run or dry run.

    Attributes:
        results: Result per step id, in execution order
        dry_run: True for a dry run
        error: The error that stopped the plan (step failure, unsatisfied
            dependencies or cancellation), None on success
        failed_step: Id of the failed step
        failure_chain: Failed step and its dependencies, in execution order
        last_completed: Last step that completed (skipped or succeeded)
        planned: Steps a live run would execute (dry run only)
        rechecked: Planned steps downstream of another planned step; their
            probes run again after the upstream work, so a live run may
            skip them (dry run only)
    """

    results: Dict[str, StepResult] = field(default_factory=dict)
    dry_run: bool = False
    error: Optional[BaseException] = None
    failed_step: Optional[str] = None
    failure_chain: List[str] = field(default_factory=list)
    last_completed: Optional[str] = None
    planned: List[str] = field(default_factory=list)
    rechecked: List[str] = field(default_factory=list)

    def _with_state(self, state: StepState) -> List[str]:
        return [sid for sid, r in self.results.items() if r.state is state]

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, PlanCancelled)

    @property
    def succeeded(self) -> List[str]:
        return self._with_state(StepState.SUCCEEDED)

    @property
    def skipped(self) -> List[str]:
        return self._with_state(StepState.SKIPPED)

    @property
    def not_run(self) -> List[str]:
        return self._with_state(StepState.PENDING)

    @property
    def unsatisfied(self) -> List[str]:
        return self._with_state(StepState.DEPENDENCY_UNSATISFIED)

    @property
    def ran(self) -> List[str]:
        """Steps that entered RUNNING."""
        return [
            sid
            for sid, r in self.results.items()
            if r.state in (StepState.RUNNING, StepState.SUCCEEDED, StepState.FAILED)
        ]

    def step_states(self) -> Dict[str, str]:
        return {sid: r.state.value for sid, r in self.results.items()}

    def summary(self) -> str:
        """Human-readable summary of the run."""
        lines = []
        if self.dry_run:
            lines.append(f"Would run ({len(self.planned)}): {', '.join(self.planned) or '-'}")
            lines.append(f"Already present ({len(self.skipped)}): {', '.join(self.skipped) or '-'}")
            if self.rechecked:
                lines.append(
                    f"Re-checked at run time ({len(self.rechecked)}): {', '.join(self.rechecked)}"
                )
        else:
            lines.append(f"Succeeded ({len(self.succeeded)}): {', '.join(self.succeeded) or '-'}")
            lines.append(f"Skipped ({len(self.skipped)}): {', '.join(self.skipped) or '-'}")
        if self.failed_step:
            lines.append(f"Failed: {self.failed_step} ({self.error})")
            lines.append(f"  dependency chain: {' -> '.join(self.failure_chain)}")
        if self.unsatisfied:
            lines.append(f"Dependency unsatisfied: {', '.join(self.unsatisfied)}")
        if self.cancelled:
            lines.append(f"Cancelled after: {self.last_completed or 'no step'}")
        if not self.dry_run and self.not_run:
            lines.append(f"Not run ({len(self.not_run)}): {', '.join(self.not_run)}")
        return "\n".join(lines)


class ProvisionPlan:
    """
    Ordered provisioning steps with fail-fast execution.

    Attributes:
        steps: Steps in declaration order
        context: Context shared by all steps
        order: Execution order (computed once)
        retry_policy: Retry limits for retryable steps
        fetch_workers: Maximum concurrent FETCH steps (1: sequential)
        cancel_token: Token checked between steps and fetch batches
    """

    def __init__(
        self,
        steps: Sequence[Step],
        context: Context,
        retry_policy: Optional[RetryPolicy] = None,
        fetch_workers: int = 1,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Args:
            steps: Steps in declaration order
            context: Context the run starts from
            retry_policy: Retry limits (default RetryPolicy())
            fetch_workers: Maximum concurrent FETCH steps
            cancel_token: Cancellation token
            sleep: Backoff sleep function (default: interruptible wait on the token)

        Raises:
            PlanDefinitionError: On duplicate step ids or dependency cycles
        """
        self.steps = list(steps)
        self.context = context
        self.order = topological_order(self.steps)
        self._by_id = index_steps(self.steps)
        self.retry_policy = retry_policy or RetryPolicy()
        self.fetch_workers = max(1, fetch_workers)
        self.cancel_token = cancel_token or CancellationToken()
        self._sleep = sleep or self.cancel_token.wait

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _new_report(self, dry_run: bool) -> PlanReport:
        return PlanReport(
            results={step.id: StepResult(step.id) for step in self.order},
            dry_run=dry_run,
        )

    def _validate(self, report: PlanReport) -> bool:
        missing = find_unknown_dependencies(self.steps)
        if not missing:
            return True

        for step_id in missing:
            report.results[step_id].state = StepState.DEPENDENCY_UNSATISFIED
        report.error = DependencyUnsatisfiedError(missing)
        logger.error(f"Plan not started: {report.error}")
        return False

    # -------------------------------------------------------------------------
    # Dry run
    # -------------------------------------------------------------------------

    def dry_run(self) -> PlanReport:
        """
        Evaluate every step's probe without executing anything.

        Context effects are applied in memory for every step, mirroring what a
        live run would register. Nothing is written and no process other than
        probes is spawned. Probes see the system as it is now, so a planned
        step downstream of another planned step is also listed in
        ``report.rechecked``: a live run probes it again after its upstream
        work and may find it satisfied.
        """
        report = self._new_report(dry_run=True)
        if not self._validate(report):
            return report

        downstream = set()
        for step in self.order:
            result = report.results[step.id]
            if step.depends_on & (set(report.planned) | downstream):
                downstream.add(step.id)
            if step.action.is_satisfied(self.context):
                result.state = StepState.SKIPPED
                logger.info(f"[skip] {step.label}")
            else:
                report.planned.append(step.id)
                if step.id in downstream:
                    report.rechecked.append(step.id)
                    logger.info(f"[run?] {step.label}")
                else:
                    logger.info(f"[run]  {step.label}")
            step.action.register(self.context)

        return report

    # -------------------------------------------------------------------------
    # Live run
    # -------------------------------------------------------------------------

    def run(self) -> PlanReport:
        """
        Execute the plan.

        Returns:
            PlanReport; ``report.error`` is set when a step failed, a
            dependency was unsatisfied or the plan was cancelled
        """
        report = self._new_report(dry_run=False)
        if not self._validate(report):
            return report

        index = 0
        while index < len(self.order):
            if self.cancel_token.cancelled:
                report.error = PlanCancelled(report.last_completed)
                logger.warning(str(report.error))
                return report

            batch = self._next_batch(index)
            if len(batch) > 1:
                failed = self._run_fetch_batch(batch, report)
            else:
                failed = not self._run_step(batch[0], report)
            if failed:
                return report
            index += len(batch)

        logger.info(
            f"Plan complete: {len(report.succeeded)} succeeded, {len(report.skipped)} skipped"
        )
        return report

    def _next_batch(self, index: int) -> List[Step]:
        """Consecutive FETCH steps from ``index`` with no ordering relation."""
        first = self.order[index]
        batch = [first]
        if self.fetch_workers == 1 or first.kind is not StepKind.FETCH:
            return batch

        for step in self.order[index + 1:]:
            if step.kind is not StepKind.FETCH:
                break
            if not all(are_independent(step.id, other.id, self._by_id) for other in batch):
                break
            batch.append(step)
        return batch

    def _run_step(self, step: Step, report: PlanReport) -> bool:
        result = report.results[step.id]
        started = time.monotonic()

        if step.action.is_satisfied(self.context):
            result.state = StepState.SKIPPED
            result.duration = time.monotonic() - started
            step.action.register(self.context)
            report.last_completed = step.id
            logger.info(f"[skip] {step.label} (already present)")
            return True

        result.state = StepState.RUNNING
        logger.info(f"[run]  {step.label}")
        try:
            self._execute(step, result)
        except Exception as e:
            result.duration = time.monotonic() - started
            self._fail(step, result, e, report)
            return False

        result.state = StepState.SUCCEEDED
        result.duration = time.monotonic() - started
        step.action.register(self.context)
        report.last_completed = step.id
        logger.info(f"[done] {step.id} ({result.duration:.1f}s)")
        return True

    def _run_fetch_batch(self, batch: List[Step], report: PlanReport) -> bool:
        """Run independent fetches concurrently; returns True if one failed."""
        pending: List[Step] = []
        skipped = set()
        for step in batch:
            if step.action.is_satisfied(self.context):
                skipped.add(step.id)
            else:
                pending.append(step)

        errors: Dict[str, BaseException] = {}
        if pending:
            logger.info(f"Fetching {len(pending)} archive(s) concurrently")
            for step in pending:
                report.results[step.id].state = StepState.RUNNING
                logger.info(f"[run]  {step.label}")

            with ThreadPoolExecutor(max_workers=self.fetch_workers) as executor:
                futures = {
                    step.id: executor.submit(self._timed_execute, step, report.results[step.id])
                    for step in pending
                }
                for step_id, future in futures.items():
                    error = future.exception()
                    if error is not None:
                        errors[step_id] = error

        # Context effects in execution order, on this thread
        failure = None
        for step in batch:
            result = report.results[step.id]
            if step.id in skipped:
                result.state = StepState.SKIPPED
                logger.info(f"[skip] {step.label} (already present)")
            elif step.id in errors:
                failure = failure or step
                continue
            else:
                result.state = StepState.SUCCEEDED
                logger.info(f"[done] {step.id} ({result.duration:.1f}s)")
            step.action.register(self.context)
            if failure is None:
                report.last_completed = step.id

        if failure is None:
            return False

        for step in batch:
            if step.id in errors and step is not failure:
                # Only the first failure is reported; other failed fetches rerun next time
                report.results[step.id].state = StepState.FAILED
                report.results[step.id].error = errors[step.id]
        self._fail(failure, report.results[failure.id], errors[failure.id], report)
        return True

    def _timed_execute(self, step: Step, result: StepResult) -> None:
        started = time.monotonic()
        try:
            self._execute(step, result)
        finally:
            result.duration = time.monotonic() - started

    def _execute(self, step: Step, result: StepResult) -> None:
        """Run the step's action under the retry policy."""
        policy = self.retry_policy
        refreshes = 0

        while True:
            result.attempts += 1
            try:
                step.action.execute(self.context)
                return
            except TRANSIENT_FETCH_ERRORS as e:
                if not step.retryable or result.attempts >= policy.fetch_attempts:
                    raise
                delay = policy.backoff(result.attempts)
                logger.warning(
                    f"Step '{step.id}' attempt {result.attempts}/{policy.fetch_attempts} "
                    f"failed: {e}; retrying in {delay:g}s"
                )
                self._sleep(delay)
            except InstallError as e:
                if not step.retryable or refreshes >= policy.install_refreshes:
                    raise
                refreshes += 1
                logger.warning(f"Step '{step.id}' failed: {e}; refreshing and retrying once")
                step.action.refresh()

    def _fail(
        self, step: Step, result: StepResult, error: BaseException, report: PlanReport
    ) -> None:
        result.state = StepState.FAILED
        result.error = error
        result.diagnostic = getattr(error, "diagnostic", "") or ""

        report.error = error
        report.failed_step = step.id
        report.failure_chain = dependency_chain(step.id, self.order)

        logger.error(f"Step '{step.id}' failed: {error}")
        logger.error(f"  dependency chain: {' -> '.join(report.failure_chain)}")
        if result.diagnostic:
            logger.error("  diagnostic output (tail):")
            for line in result.diagnostic.splitlines():
                logger.error(f"    {line}")
        if report.not_run:
            logger.error(f"  not run: {', '.join(report.not_run)}")


__all__ = [
    "RetryPolicy",
    "CancellationToken",
    "PlanReport",
    "ProvisionPlan",
    "TRANSIENT_FETCH_ERRORS",
]
