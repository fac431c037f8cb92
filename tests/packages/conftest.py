"""
Fixtures for package manager tests.
"""

import pytest


@pytest.fixture
def fake_exe(tmp_path):
    """Existing file standing in for a manager executable."""
    path = tmp_path / "bin" / "manager"
    path.parent.mkdir()
    path.write_text("")
    return path
