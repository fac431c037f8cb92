"""
Pytest configuration and shared fixtures for ProvisionKit tests.
"""

import subprocess
from pathlib import Path

import pytest

from provisionkit.core.platform import clear_platform_cache
from provisionkit.plan.context import Context


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests that spawn real tools",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --integration flag is provided."""
    if config.getoption("--integration"):
        return
    skip_integration = pytest.mark.skip(reason="need --integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (requires --integration)",
    )


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _fresh_platform_cache():
    """Platform detection is cached per process; reset it around each test."""
    clear_platform_cache()
    yield
    clear_platform_cache()


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    """Empty install root directory."""
    root = tmp_path / "install"
    root.mkdir()
    return root


@pytest.fixture
def context(install_root: Path) -> Context:
    """Context for a Windows x64 target."""
    return Context.create(install_root, arch="x64", platform="windows", cxx_standard=17)


@pytest.fixture
def completed():
    """Factory for subprocess.CompletedProcess results."""

    def make(returncode=0, stdout="", stderr="", args=None):
        return subprocess.CompletedProcess(
            args=args or [], returncode=returncode, stdout=stdout, stderr=stderr
        )

    return make
