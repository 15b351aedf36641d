"""
workon.projects
---------------

Locate and load project files.

A project is referenced either by name (``<projects_dir>/<name>.json``) or
by an explicit path.  Loading always goes through ``Project.from_dict`` so
a malformed file is rejected before anything is spawned.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List

from .constants import PROJECTS_DIR
from .errors import ProjectNotFound, ValidationError
from .model import Project

_LOG = logging.getLogger(__name__)


def project_path(ref: str, projects_dir: Path = PROJECTS_DIR) -> Path:
    """Resolve *ref* (a name or a path) to a project file."""
    candidate = Path(ref).expanduser()
    if candidate.suffix == ".json" or "/" in ref:
        if candidate.is_file():
            return candidate
        raise ProjectNotFound(f"No project file at {candidate}")

    path = Path(projects_dir) / f"{ref}.json"
    if not path.is_file():
        raise ProjectNotFound(f"Project '{ref}' not found in {projects_dir}")
    return path


def load_project(ref: str, projects_dir: Path = PROJECTS_DIR) -> Project:
    path = project_path(ref, projects_dir)
    _LOG.debug("Loading project from %s", path)
    try:
        with path.open("r") as fp:
            raw = json.load(fp)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path}: invalid JSON ({exc})") from exc
    except OSError as exc:
        raise ProjectNotFound(f"Cannot read {path}: {exc}") from exc
    return Project.from_dict(raw)


def try_load_project(ref: str, projects_dir: Path = PROJECTS_DIR) -> Project | None:
    """Like ``load_project`` but ``None`` when the file is missing or invalid.

    stop/status/resume work from persisted state alone; the project file only
    contributes hooks and declared order.
    """
    try:
        return load_project(ref, projects_dir)
    except (ProjectNotFound, ValidationError) as exc:
        _LOG.debug("Project file for '%s' unavailable: %s", ref, exc)
        return None


def list_projects(projects_dir: Path = PROJECTS_DIR) -> List[str]:
    """Names of all project files in *projects_dir*."""
    directory = Path(projects_dir)
    if not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.glob("*.json"))
