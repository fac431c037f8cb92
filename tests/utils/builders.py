"""
Test data builders for ProvisionKit testing.

:class:`RecordingAction` is a step action whose outcome is scripted by the
test and whose calls are recorded in a shared log, so tests can assert on
execution order without touching the network or spawning processes.
"""

import threading
from pathlib import Path
from typing import Iterable, List, Optional

from provisionkit.plan.actions import StepAction
from provisionkit.plan.context import Context
from provisionkit.plan.plan import ProvisionPlan, RetryPolicy
from provisionkit.plan.step import Step, StepKind
from provisionkit.probe import CallableProbe, Probe


class RecordingAction(StepAction):
    """
    Scripted action.

    Args:
        name: Name recorded in the log
        log: Shared list receiving ('execute' | 'refresh', name) tuples
        kind: Step kind reported to the plan
        errors: Exceptions raised by successive executions (None: succeed)
        present: Initial result of the idempotency check
        marker: File created on success; when given, the check looks for it
        include_dir: Include directory registered in the context
    """

    def __init__(
        self,
        name: str,
        log: List[tuple],
        kind: StepKind = StepKind.FETCH,
        errors: Iterable[Optional[BaseException]] = (),
        present: bool = False,
        marker: Optional[Path] = None,
        include_dir: Optional[str] = None,
        retryable: bool = True,
    ):
        self.name = name
        self.log = log
        self.kind = kind
        self.errors = list(errors)
        self.present = present
        self.marker = marker
        self.include_dir = include_dir
        self.retryable = retryable
        self.executions = 0
        self._lock = threading.Lock()

    def describe(self) -> str:
        return f"recorded {self.name}"

    def probe(self, context: Context) -> Probe:
        if self.marker is not None:
            return CallableProbe(self.marker.exists, f"marker {self.marker}")
        return CallableProbe(lambda: self.present, f"present {self.name}")

    def execute(self, context: Context) -> None:
        with self._lock:
            self.executions += 1
            self.log.append(("execute", self.name))
            error = self.errors.pop(0) if self.errors else None
        if error is not None:
            raise error
        if self.marker is not None:
            self.marker.parent.mkdir(parents=True, exist_ok=True)
            self.marker.write_text(self.name)
        self.present = True

    def refresh(self) -> None:
        self.log.append(("refresh", self.name))

    def register(self, context: Context) -> None:
        if self.include_dir:
            context.add_include_dir(context.resolve(self.include_dir))


class PlanBuilder:
    """Fluent builder for plans made of recording actions."""

    def __init__(self, context: Context):
        self.context = context
        self.log: List[tuple] = []
        self.steps: List[Step] = []
        self.actions = {}

    def step(
        self,
        step_id: str,
        depends_on: Iterable[str] = (),
        retryable: Optional[bool] = None,
        **kwargs,
    ) -> "PlanBuilder":
        action = RecordingAction(step_id, self.log, **kwargs)
        self.actions[step_id] = action
        self.steps.append(
            Step.create(step_id, action, depends_on=depends_on, retryable=retryable)
        )
        return self

    def build(self, **kwargs) -> ProvisionPlan:
        kwargs.setdefault("retry_policy", RetryPolicy(fetch_attempts=3, backoff_base=0))
        kwargs.setdefault("sleep", lambda delay: None)
        return ProvisionPlan(self.steps, self.context, **kwargs)

    @property
    def executed(self) -> List[str]:
        return [name for event, name in self.log if event == "execute"]
