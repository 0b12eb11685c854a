"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from provisioner.adapters.mock import FakeHost


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def fake_host() -> FakeHost:
    """A fresh in-memory host with nothing installed."""
    return FakeHost()


@pytest.fixture
def config_file(tmp_path: Path, tmp_state_dir: Path) -> Path:
    """A provision.yml that keeps state inside the test's tmp dir."""
    path = tmp_path / "provision.yml"
    path.write_text(
        textwrap.dedent(f"""\
            github_user: octocat
            state_dir: {tmp_state_dir}
            sudo_refresh_interval: 1
        """)
    )
    return path
