"""
workon.spawner
--------------

Reuse-vs-spawn decision for a single resource.

``acquire`` issues at most one spawn per call and never retries; failures
are raised as ``SpawnFailure`` carrying the resource id so the caller can
record them without touching sibling resources.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional
from uuid import uuid4

from .constants import ENV_PROJECT, ENV_RESOURCE_ID, ENV_TOKEN, PROP_PROJECT
from .errors import HostError, SpawnFailure
from .host import Host, HostEntity
from .model import MatchField, ResourceSpec
from .tags import ResolvedPlacement

_LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingHandle:
    """Result of ``acquire``: either a reused entity or an in-flight spawn."""

    project_name: str
    spec: ResourceSpec
    placement: ResolvedPlacement
    token: str
    pid: int | None = None
    entity: HostEntity | None = None  # set when an existing entity was reused

    @property
    def reused(self) -> bool:
        return self.entity is not None


def build_command(spec: ResourceSpec) -> str:
    """Full shell-quoted command line: ``command`` + ``args`` + ``urls``."""
    extra = [*spec.args, *spec.urls]
    if not extra:
        return spec.command
    return f"{spec.command} {shlex.join(extra)}"


def build_env(project_name: str, spec: ResourceSpec, token: str) -> Dict[str, str]:
    env = dict(spec.env)
    env.update(
        {
            ENV_PROJECT: project_name,
            ENV_RESOURCE_ID: spec.id,
            ENV_TOKEN: token,
        }
    )
    return env


def check_executable(spec: ResourceSpec) -> None:
    """Raise ``SpawnFailure`` when the command cannot possibly run."""
    try:
        argv = shlex.split(spec.command)
    except ValueError as exc:
        raise SpawnFailure(spec.id, f"invalid command: {exc}") from exc
    if not argv:
        raise SpawnFailure(spec.id, "no command to execute")
    program = argv[0]
    if os.sep in program:
        path = Path(os.path.expanduser(program))
        if not path.exists():
            raise SpawnFailure(spec.id, f"{program}: No such file or directory")
        if not os.access(path, os.X_OK):
            raise SpawnFailure(spec.id, f"{program}: Permission denied")
    elif shutil.which(program) is None:
        raise SpawnFailure(spec.id, f"{program}: command not found")


def _normalise(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    return os.path.normpath(os.path.expanduser(path))


def matches(spec: ResourceSpec, entity: HostEntity) -> bool:
    """Does *entity* satisfy the resource's reuse predicate?"""
    policy = spec.reuse
    if policy.match is None:
        return False
    if policy.match is MatchField.CWD:
        wanted = _normalise(policy.value or spec.dir)
        return wanted is not None and _normalise(entity.cwd) == wanted and _same_program(spec, entity)
    if policy.match is MatchField.TITLE:
        wanted = policy.value or spec.id
        return wanted.lower() in entity.title.lower()
    if policy.match is MatchField.CLASS:
        wanted = policy.value or _program(spec)
        return wanted is not None and entity.klass.lower() == os.path.basename(wanted).lower()
    if policy.match is MatchField.COMMAND:
        wanted = policy.value or spec.command
        return entity.command is not None and entity.command.startswith(wanted)
    return False


def _program(spec: ResourceSpec) -> Optional[str]:
    try:
        argv = shlex.split(spec.command)
    except ValueError:
        return None
    return argv[0] if argv else None


def _same_program(spec: ResourceSpec, entity: HostEntity) -> bool:
    # A cwd match alone would bind e.g. a terminal to an editor resource.
    program = _program(spec)
    if program is None:
        return False
    program = os.path.basename(program).lower()
    haystack = " ".join(filter(None, [entity.command, entity.klass])).lower()
    return program in haystack


def find_reusable(
    spec: ResourceSpec, inventory: Iterable[HostEntity], claimed: set[str]
) -> Optional[HostEntity]:
    """First matching entity that nobody else has claimed or owns."""
    for entity in inventory:
        if entity.entity_id in claimed or PROP_PROJECT in entity.properties:
            continue
        if matches(spec, entity):
            return entity
    return None


async def acquire(
    host: Host,
    project_name: str,
    spec: ResourceSpec,
    placement: ResolvedPlacement,
    inventory: Iterable[HostEntity],
    claimed: Optional[set[str]] = None,
) -> PendingHandle:
    """
    Bind *spec* to an existing entity or spawn it.

    *claimed* collects entity ids already bound during this run; the match
    and the claim happen before the first ``await`` so concurrent acquires
    never bind the same entity twice.
    """
    claimed = claimed if claimed is not None else set()
    token = uuid4().hex

    if not spec.reuse.always_new:
        entity = find_reusable(spec, inventory, claimed)
        if entity is not None:
            claimed.add(entity.entity_id)
            _LOG.info("Reusing %s for resource '%s'", entity.entity_id, spec.id)
            return PendingHandle(
                project_name, spec, placement, token, pid=entity.pid, entity=entity
            )
        _LOG.debug("No reusable entity for '%s'; spawning", spec.id)

    check_executable(spec)
    command = build_command(spec)
    try:
        ticket = await host.spawn(command, build_env(project_name, spec, token), spec.dir)
    except HostError as exc:
        raise SpawnFailure(spec.id, str(exc)) from exc

    _LOG.info("Spawned '%s' for resource '%s' (pid %s)", command, spec.id, ticket.pid)
    return PendingHandle(project_name, spec, placement, ticket.token, pid=ticket.pid)
