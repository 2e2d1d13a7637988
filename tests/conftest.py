"""Shared pytest fixtures."""

import sys
from pathlib import Path

import pytest

# Add project root and tests directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from facility.config import Settings  # noqa: E402

from fixtures import create_sessions_dir  # noqa: E402


@pytest.fixture
def agents_root(tmp_path):
    root = tmp_path / "agents"
    root.mkdir()
    return root


@pytest.fixture
def main_sessions(agents_root):
    """Session directory of the primary agent."""
    return create_sessions_dir(agents_root, "main")


@pytest.fixture
def settings(tmp_path, agents_root):
    """Settings rooted in a temporary directory, with TTL caching disabled."""
    return Settings(
        agents_root=agents_root,
        data_dir=tmp_path / "data",
        status_ttl=0.0,
        debounce_ms=10,
    )
