"""
Provisioning steps and their recorded outcomes.

A :class:`Step` is immutable once constructed; everything that happens to it
during a run is recorded in a separate :class:`StepResult`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional


class StepKind(Enum):
    """What a step does."""

    TOOL_CHECK = "tool_check"
    PACKAGE_INSTALL = "package_install"
    FETCH = "fetch"
    BUILD = "build"
    PATCH = "patch"
    ENV_SET = "env_set"

    @classmethod
    def parse(cls, value: str) -> "StepKind":
        normalized = value.strip().lower().replace("-", "_")
        for kind in cls:
            if kind.value == normalized:
                return kind
        raise ValueError(
            f"Unknown step kind '{value}' (expected one of {[k.value for k in cls]})"
        )


class StepState(Enum):
    """
    Per-step state machine.

    PENDING -> SKIPPED, or PENDING -> RUNNING -> SUCCEEDED | FAILED.
    DEPENDENCY_UNSATISFIED is assigned during validation only, when a step
    names a dependency the plan does not define.
    """

    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEPENDENCY_UNSATISFIED = "dependency-unsatisfied"

    @property
    def is_completed(self) -> bool:
        """True for states whose effect is known to hold."""
        return self in (StepState.SKIPPED, StepState.SUCCEEDED)


@dataclass(frozen=True)
class Step:
    """
    One unit of provisioning work.

    Attributes:
        id: Unique step id within a plan
        kind: Step kind
        action: Kind-specific :class:`~provisionkit.plan.actions.StepAction`
        depends_on: Ids of steps that must complete first
        retryable: Whether transient failures may be retried
        description: Human-readable summary (defaults to the action's)
    """

    id: str
    kind: StepKind
    action: object
    depends_on: FrozenSet[str] = frozenset()
    retryable: bool = False
    description: str = ""

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Step id cannot be empty")
        if not isinstance(self.depends_on, frozenset):
            object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    @classmethod
    def create(
        cls,
        id: str,
        action,
        depends_on: Iterable[str] = (),
        retryable: Optional[bool] = None,
        description: str = "",
    ) -> "Step":
        """Build a step whose kind and default retryability come from ``action``."""
        return cls(
            id=id,
            kind=action.kind,
            action=action,
            depends_on=frozenset(depends_on),
            retryable=action.retryable if retryable is None else retryable,
            description=description,
        )

    @property
    def label(self) -> str:
        text = self.description or self.action.describe()
        return f"{self.id} [{self.kind.value}] {text}"


@dataclass
class StepResult:
    """
    Outcome of one step in one run.

    Attributes:
        step_id: Step id
        state: Final (or current) state
        attempts: Number of times the action was executed
        duration: Seconds spent in probe and action
        error: The exception that failed the step
        diagnostic: Tail of captured tool output for failures
    """

    step_id: str
    state: StepState = StepState.PENDING
    attempts: int = 0
    duration: float = 0.0
    error: Optional[BaseException] = field(default=None, compare=False)
    diagnostic: str = ""


__all__ = ["StepKind", "StepState", "Step", "StepResult"]
