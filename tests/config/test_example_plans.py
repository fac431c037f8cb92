"""
Check that the plans shipped under examples/ load and form valid plans.
"""

from pathlib import Path

import pytest

from provisionkit.config import create_plan, load_plan_config
from provisionkit.plan import StepKind

EXAMPLES = Path(__file__).resolve().parents[2] / "examples"


@pytest.mark.parametrize(
    "name,os_name",
    [("appmesh-macos.yaml", "macos"), ("appmesh-windows.yaml", "windows")],
)
def test_example_plan_is_valid(name, os_name, tmp_path):
    config = load_plan_config(
        EXAMPLES / name,
        project_root=tmp_path,
        os_name=os_name,
        environ={"HOME": "/Users/dev"},
    )

    plan = create_plan(config)

    assert len(plan.order) == len(config.steps)
    assert plan.order[0].kind is StepKind.TOOL_CHECK
    assert plan.order[-1].id == "env"


def test_macos_plan_installs_appmesh_dependencies(tmp_path):
    config = load_plan_config(
        EXAMPLES / "appmesh-macos.yaml",
        project_root=tmp_path,
        os_name="macos",
        environ={"HOME": "/Users/dev"},
    )

    packages = {
        step["package"]["name"] for step in config.steps if step["kind"] == "package_install"
    }

    assert {"boost", "log4cpp", "openssl@3", "msgpack-cxx", "yaml-cpp"} <= packages
    assert config.steps[-1]["variables"]["GOPATH"] == "/Users/dev/go"


def test_macos_plan_updates_homebrew_before_installing(tmp_path):
    config = load_plan_config(
        EXAMPLES / "appmesh-macos.yaml",
        project_root=tmp_path,
        os_name="macos",
        environ={"HOME": "/Users/dev"},
    )

    plan = create_plan(config)

    brew_steps = [
        step
        for step in plan.order
        if step.kind is StepKind.PACKAGE_INSTALL and step.action.spec.manager.value == "homebrew"
    ]
    assert brew_steps
    assert all(step.action.refresh_first for step in brew_steps)
