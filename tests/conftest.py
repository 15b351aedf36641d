"""Shared pytest fixtures for tests."""

import json
from unittest.mock import patch

import pytest

from workon.host import MemoryHost
from workon.lifecycle import Orchestrator
from workon.model import Project
from workon.state import StateStore


def _fake_which(program):
    """Every program exists except names starting with 'missing'."""
    if program.startswith("missing"):
        return None
    return f"/usr/bin/{program}"


@pytest.fixture(autouse=True)
def fake_path():
    """Keep spawner checks independent of what is installed on the machine."""
    with patch("workon.spawner.shutil.which", side_effect=_fake_which) as mock_which:
        yield mock_which


@pytest.fixture
def host():
    """In-memory host focused on tag 2."""
    return MemoryHost(current_tag=2)


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path / "state")


@pytest.fixture
def orchestrator(host, store):
    """Orchestrator with short timeouts so failure paths stay fast."""
    return Orchestrator(
        host,
        store,
        spawn_timeout=0.2,
        poll_interval=0.01,
        grace_period=0.05,
        hook_timeout=5,
    )


@pytest.fixture
def make_project():
    """Build a validated Project from plain resource dicts."""

    def _make(*resources, name="demo", **extra):
        return Project.from_dict({"name": name, "resources": list(resources), **extra})

    return _make


@pytest.fixture
def projects_dir(tmp_path):
    """Directory holding a single valid project file, ``demo.json``."""
    directory = tmp_path / "projects"
    directory.mkdir()
    (directory / "demo.json").write_text(
        json.dumps(
            {
                "name": "demo",
                "resources": [
                    {"id": "editor", "kind": "editor", "cmd": "nvim", "tag": 0},
                    {"id": "shell", "kind": "terminal", "cmd": "alacritty", "tag": "+1"},
                ],
            }
        )
    )
    return directory
