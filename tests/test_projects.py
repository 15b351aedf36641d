"""
Tests for project file lookup and loading.
"""

import json

import pytest

from workon.errors import ProjectNotFound, ValidationError
from workon.projects import list_projects, load_project, project_path, try_load_project

pytestmark = pytest.mark.unit


def test_load_by_name(projects_dir):
    project = load_project("demo", projects_dir)
    assert project.name == "demo"
    assert [r.id for r in project.resources] == ["editor", "shell"]


def test_load_by_path(projects_dir):
    project = load_project(str(projects_dir / "demo.json"), projects_dir / "elsewhere")
    assert project.name == "demo"


def test_missing_project(projects_dir):
    with pytest.raises(ProjectNotFound, match="'ghost' not found"):
        project_path("ghost", projects_dir)
    with pytest.raises(ProjectNotFound):
        project_path(str(projects_dir / "ghost.json"), projects_dir)


def test_invalid_json_is_a_validation_error(projects_dir):
    (projects_dir / "broken.json").write_text("{")
    with pytest.raises(ValidationError, match="invalid JSON"):
        load_project("broken", projects_dir)


def test_invalid_schema(projects_dir):
    (projects_dir / "bad.json").write_text(json.dumps({"name": "bad", "resources": []}))
    with pytest.raises(ValidationError):
        load_project("bad", projects_dir)
    assert try_load_project("bad", projects_dir) is None
    assert try_load_project("ghost", projects_dir) is None


def test_list_projects(projects_dir, tmp_path):
    (projects_dir / "other.json").write_text("{}")
    assert list_projects(projects_dir) == ["demo", "other"]
    assert list_projects(tmp_path / "nowhere") == []
