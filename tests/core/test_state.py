"""
Unit tests for the run-state record.
"""

import json

from provisionkit.core.state import STATE_VERSION, RunState, StateManager


class TestStateManager:
    """Test StateManager."""

    def test_load_missing(self, install_root):
        state = StateManager(install_root).load()

        assert state == RunState()
        assert state.outcome is None

    def test_record_and_load(self, install_root):
        manager = StateManager(install_root)

        manager.record_run(
            outcome="failed",
            step_states={"boost": "succeeded", "log4cpp": "failed"},
            last_completed="boost",
            failed_step="log4cpp",
            plan_hash="sha256:abc",
        )
        state = manager.load()

        assert state.outcome == "failed"
        assert state.last_completed == "boost"
        assert state.failed_step == "log4cpp"
        assert state.steps == {"boost": "succeeded", "log4cpp": "failed"}
        assert state.plan_hash == "sha256:abc"
        assert state.finished_at

    def test_state_file_location(self, install_root):
        manager = StateManager(install_root)
        manager.save(RunState(outcome="succeeded"))

        data = json.loads((install_root / ".provisionkit" / "state.json").read_text())
        assert data["version"] == STATE_VERSION
        assert data["outcome"] == "succeeded"

    def test_corrupt_file_ignored(self, install_root):
        manager = StateManager(install_root)
        manager.state_file.parent.mkdir(parents=True)
        manager.state_file.write_text("{not json")

        assert manager.load() == RunState()

    def test_unknown_version_ignored(self, install_root):
        manager = StateManager(install_root)
        manager.state_file.parent.mkdir(parents=True)
        manager.state_file.write_text(json.dumps({"version": 99, "outcome": "succeeded"}))

        assert manager.load().outcome is None
