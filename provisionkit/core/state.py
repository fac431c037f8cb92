"""
Run-state record for a provisioned install root.

The outcome of the latest provisioning run is persisted to
``<install_root>/.provisionkit/state.json`` so that ``provisionkit status``
can report which steps completed and where a failed or cancelled run stopped.
The record is informational: step skipping is always decided by each step's
own idempotency check, never by this file.

Example:
    >>> manager = StateManager(Path('third_party/install'))
    >>> manager.record_run(
    ...     outcome="failed",
    ...     plan_hash="sha256:...",
    ...     step_states={"boost": "succeeded", "log4cpp": "failed"},
    ...     last_completed="boost",
    ... )
    >>> manager.load().last_completed
    'boost'
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from provisionkit.core.filesystem import atomic_write
from provisionkit.core.locking import STATE_DIR_NAME

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class RunState:
    """
    Record of the last provisioning run.

    Attributes:
        version: State file format version
        finished_at: ISO 8601 timestamp of the end of the run
        outcome: 'succeeded', 'failed', 'cancelled' or None before any run
        plan_hash: SHA256 of the plan file used
        last_completed: Id of the last step that completed (succeeded or skipped)
        failed_step: Id of the failed step, if any
        steps: Final state per step id
    """

    version: int = STATE_VERSION
    finished_at: Optional[str] = None
    outcome: Optional[str] = None
    plan_hash: Optional[str] = None
    last_completed: Optional[str] = None
    failed_step: Optional[str] = None
    steps: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": self.version,
            "finished_at": self.finished_at,
            "outcome": self.outcome,
            "plan_hash": self.plan_hash,
            "last_completed": self.last_completed,
            "failed_step": self.failed_step,
            "steps": dict(self.steps),
        }


class StateManager:
    """
    Loads and saves the run-state record of an install root.

    Attributes:
        install_root: Install root directory
        state_file: Path to state.json
    """

    def __init__(self, install_root: Path):
        self.install_root = Path(install_root)
        self.state_file = self.install_root / STATE_DIR_NAME / "state.json"

    def load(self) -> RunState:
        """
        Load state from disk.

        A missing file yields an empty record; a corrupted file is logged and
        treated as missing.
        """
        if not self.state_file.exists():
            logger.debug(f"State file not found: {self.state_file}")
            return RunState()

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)

            if data.get("version", STATE_VERSION) != STATE_VERSION:
                logger.warning(
                    f"State version {data.get('version')} not supported, ignoring"
                )
                return RunState()

            return RunState(
                finished_at=data.get("finished_at"),
                outcome=data.get("outcome"),
                plan_hash=data.get("plan_hash"),
                last_completed=data.get("last_completed"),
                failed_step=data.get("failed_step"),
                steps=dict(data.get("steps") or {}),
            )

        except (json.JSONDecodeError, TypeError, AttributeError) as e:
            logger.warning(f"Invalid state file {self.state_file}, ignoring: {e}")
            return RunState()

    def save(self, state: RunState) -> None:
        """Save state to disk atomically."""
        atomic_write(self.state_file, json.dumps(state.to_dict(), indent=2))
        logger.debug(f"Saved state to {self.state_file}")

    def record_run(
        self,
        outcome: str,
        step_states: Dict[str, str],
        last_completed: Optional[str] = None,
        failed_step: Optional[str] = None,
        plan_hash: Optional[str] = None,
    ) -> RunState:
        """Record the outcome of a finished run and return the saved record."""
        state = RunState(
            finished_at=datetime.now().isoformat(timespec="seconds"),
            outcome=outcome,
            plan_hash=plan_hash,
            last_completed=last_completed,
            failed_step=failed_step,
            steps=dict(step_states),
        )
        self.save(state)
        return state
