"""
Unit tests for the provisioning context and step records.
"""

import pytest

from provisionkit.plan.context import ENV_ARCH, ENV_INSTALL_ROOT, Context
from provisionkit.plan.step import Step, StepKind, StepState
from tests.utils import RecordingAction


class TestContext:
    """Test Context accumulation."""

    def test_create_sets_base_variables(self, install_root):
        context = Context.create(install_root, "arm64", "macos", definitions=["NDEBUG"])

        assert context.env[ENV_INSTALL_ROOT] == str(install_root)
        assert context.env[ENV_ARCH] == "arm64"
        assert context.definitions == ["NDEBUG"]
        assert context.triplet == "arm64-osx"

    def test_path_entries_deduplicated(self, context, install_root):
        """Test adding the same PATH entry twice keeps one copy."""
        bin_dir = install_root / "bin"

        assert context.add_path(bin_dir) is True
        assert context.add_path(str(bin_dir)) is False
        assert context.add_path(str(bin_dir) + "/.") is False

        assert context.path_entries == [str(bin_dir)]

    def test_persistent_path_recorded_once(self, context, install_root):
        context.add_path(install_root / "bin", persist=True)
        context.add_path(install_root / "bin", persist=True)

        assert context.persistent_paths == [str(install_root / "bin")]

    def test_persistent_env(self, context):
        context.set_env("GOPATH", "C:/go", persist=True)
        context.set_env("TEMP_ONLY", "1")

        assert context.persistent_env() == {"GOPATH": "C:/go"}

    def test_resolve_relative_and_absolute(self, context, install_root, tmp_path):
        assert context.resolve("lib") == install_root / "lib"
        assert context.resolve(tmp_path) == tmp_path

    def test_definitions_unique(self, context):
        assert context.add_definition("LOG4CPP_FIX_ERROR_COLLISION")
        assert not context.add_definition("LOG4CPP_FIX_ERROR_COLLISION")

    def test_to_dict_is_plain(self, context):
        context.add_include_dir(context.resolve("include"))
        data = context.to_dict()

        assert data["arch"] == "x64"
        assert data["include_dirs"] == [str(context.install_root / "include")]
        assert data["persistent"] == []


class TestStep:
    """Test Step construction."""

    def test_kind_and_retryable_from_action(self):
        action = RecordingAction("json", [], kind=StepKind.FETCH, retryable=True)
        step = Step.create("json", action, depends_on=["tool"])

        assert step.kind is StepKind.FETCH
        assert step.retryable is True
        assert step.depends_on == frozenset({"tool"})
        assert step.label == "json [fetch] recorded json"

    def test_retryable_override(self):
        step = Step.create("json", RecordingAction("json", []), retryable=False)
        assert step.retryable is False

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            Step.create("  ", RecordingAction("x", []))

    @pytest.mark.parametrize(
        "text,kind",
        [
            ("fetch", StepKind.FETCH),
            ("Package-Install", StepKind.PACKAGE_INSTALL),
            ("ENV_SET", StepKind.ENV_SET),
        ],
    )
    def test_kind_parse(self, text, kind):
        assert StepKind.parse(text) is kind

    def test_kind_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown step kind"):
            StepKind.parse("compile")

    def test_completed_states(self):
        assert StepState.SKIPPED.is_completed
        assert StepState.SUCCEEDED.is_completed
        assert not StepState.FAILED.is_completed
