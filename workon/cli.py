"""
workon.cli
----------

Synchronous bridges between the Click front end and the asynchronous
``Orchestrator``.  Every bridge builds its own host and store, runs one
coroutine with ``asyncio.run`` and returns the ``OperationResult``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import tempfile
from pathlib import Path
from typing import Dict, Optional

from .constants import (
    GRACE_PERIOD,
    HOOK_TIMEOUT,
    POLL_INTERVAL,
    PROJECTS_DIR,
    SPAWN_TIMEOUT,
    STATE_DIR,
)
from .host import Host, MemoryHost, get_host
from .lifecycle import OperationResult, Orchestrator
from .model import Project
from .projects import load_project, try_load_project
from .state import ProjectState, StateStore

_LOG = logging.getLogger(__name__)


def build_orchestrator(
    host: Optional[Host] = None,
    state_dir: Optional[Path] = None,
    **timeouts: float,
) -> Orchestrator:
    """Orchestrator wired to the configured host backend and state directory.

    *timeouts* override the configured ``spawn_timeout``, ``poll_interval``,
    ``grace_period`` and ``hook_timeout``.
    """
    settings = dict(
        spawn_timeout=SPAWN_TIMEOUT,
        poll_interval=POLL_INTERVAL,
        grace_period=GRACE_PERIOD,
        hook_timeout=HOOK_TIMEOUT,
    )
    settings.update(timeouts)
    return Orchestrator(
        host if host is not None else get_host(),
        StateStore(state_dir if state_dir is not None else STATE_DIR),
        **settings,
    )


def _project_name(ref: str, project: Project | None) -> str:
    return project.name if project is not None else ref


# --------------------------------------------------------------------------- #
# start                                                                       #
# --------------------------------------------------------------------------- #


def start_project_sync(
    ref: str,
    layout: str | None = None,
    *,
    dry_run: bool = False,
    projects_dir: Path = PROJECTS_DIR,
    orchestrator: Orchestrator | None = None,
) -> OperationResult:
    """
    Load *ref* and start it.

    With *dry_run* the project is brought up against a ``MemoryHost`` and a
    throw-away state directory; hooks are not executed.
    """
    project = load_project(ref, projects_dir)
    if dry_run:
        project = dataclasses.replace(project, start_hook=None, stop_hook=None)
        with tempfile.TemporaryDirectory(prefix="workon-dry-run-") as tmp:
            simulated = build_orchestrator(MemoryHost(), Path(tmp))
            return asyncio.run(simulated.start(project, layout))
    orchestrator = orchestrator or build_orchestrator()
    return asyncio.run(orchestrator.start(project, layout))


# --------------------------------------------------------------------------- #
# stop / status / resume                                                      #
# --------------------------------------------------------------------------- #


def stop_project_sync(
    ref: str,
    *,
    projects_dir: Path = PROJECTS_DIR,
    orchestrator: Orchestrator | None = None,
) -> OperationResult:
    project = try_load_project(ref, projects_dir)
    orchestrator = orchestrator or build_orchestrator()
    return asyncio.run(orchestrator.stop(_project_name(ref, project), project))


def project_status_sync(
    ref: str,
    *,
    projects_dir: Path = PROJECTS_DIR,
    orchestrator: Orchestrator | None = None,
) -> OperationResult:
    project = try_load_project(ref, projects_dir)
    orchestrator = orchestrator or build_orchestrator()
    return asyncio.run(orchestrator.status(_project_name(ref, project), project))


def resume_project_sync(
    ref: str,
    *,
    projects_dir: Path = PROJECTS_DIR,
    orchestrator: Orchestrator | None = None,
) -> OperationResult:
    project = try_load_project(ref, projects_dir)
    orchestrator = orchestrator or build_orchestrator()
    return asyncio.run(orchestrator.resume(_project_name(ref, project), project))


def tracked_projects(state_dir: Optional[Path] = None) -> Dict[str, ProjectState]:
    """
    Every project with persisted state.

    Example
    -------
    >>> for name, state in tracked_projects().items():
    ...     print(name, state.status.value, len(state.live()))
    """
    store = StateStore(state_dir if state_dir is not None else STATE_DIR)
    projects = store.load()
    for warning in store.warnings:
        _LOG.warning("%s", warning)
    return projects
