"""
workon.state
------------

Persistent tracking of projects and the host entities they own.

Design
~~~~~~
" One JSON document per project (``<state_dir>/<project>.json``) so commits
  for different projects never contend.
" ``commit()`` is a read-modify-write under an exclusive fcntl lock on
  ``<project>.json.lock``; the new document is written to a temp file,
  fsync'ed and atomically renamed, so readers never observe partial writes.
" ``exclusive()`` guards a whole lifecycle operation with a non-blocking
  lock on ``<project>.lock``; a second command for the same project fails
  fast with ``ProjectBusy``.
" Unreadable documents are treated as absent and recorded in ``warnings``.
"""

from __future__ import annotations

import contextlib
import copy
import fcntl
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Union

from .constants import STATE_DIR, STATE_SCHEMA, ProjectStatus, ResourceKind, ResourceStatus
from .errors import ProjectBusy, StoreCorruption, StoreWriteFailure

_LOG = logging.getLogger(__name__)

TagId = Union[int, str]


# --------------------------------------------------------------------------- #
# Dataclasses                                                                 #
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class TrackedResource:
    """One host entity owned by a project."""

    project_name: str
    resource_id: str
    host_entity_id: str | None
    tag: TagId
    status: ResourceStatus
    pid: int | None = None
    kind: ResourceKind = ResourceKind.APP
    token: str | None = None  # spawn correlation token

    def to_dict(self) -> dict:
        return {
            "resource_id": self.resource_id,
            "host_entity_id": self.host_entity_id,
            "tag": self.tag,
            "status": self.status.value,
            "kind": self.kind.value,
            **({"pid": self.pid} if self.pid is not None else {}),
            **({"token": self.token} if self.token else {}),
        }

    @classmethod
    def from_dict(cls, project_name: str, raw: dict) -> "TrackedResource":
        kind = raw.get("kind", ResourceKind.APP.value)
        return cls(
            project_name=project_name,
            resource_id=raw["resource_id"],
            host_entity_id=raw.get("host_entity_id"),
            tag=raw["tag"],
            status=ResourceStatus(raw["status"]),
            pid=raw.get("pid"),
            kind=ResourceKind(kind) if kind in ResourceKind._value2member_map_ else ResourceKind.APP,
            token=raw.get("token"),
        )


@dataclass(slots=True)
class ProjectState:
    """Persisted aggregate for one project."""

    project_name: str
    base_tag: int
    status: ProjectStatus = ProjectStatus.RUNNING
    resources: list[TrackedResource] = field(default_factory=list)
    created_tags: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)  # last start only
    updated_at: str = ""

    def find(self, resource_id: str) -> Optional[TrackedResource]:
        for tracked in self.resources:
            if tracked.resource_id == resource_id:
                return tracked
        return None

    def upsert(self, tracked: TrackedResource) -> None:
        """Insert or replace the record for ``tracked.resource_id``.

        Keeps one record per resource id, hence at most one ``live`` one.
        """
        for i, existing in enumerate(self.resources):
            if existing.resource_id == tracked.resource_id:
                self.resources[i] = tracked
                return
        self.resources.append(tracked)

    def live(self) -> list[TrackedResource]:
        return [r for r in self.resources if r.status is ResourceStatus.LIVE]

    @property
    def removable(self) -> bool:
        return self.status is ProjectStatus.STOPPED and not self.live()

    def to_dict(self) -> dict:
        return {
            "schema": STATE_SCHEMA,
            "project_name": self.project_name,
            "base_tag": self.base_tag,
            "status": self.status.value,
            "updated_at": self.updated_at,
            "created_tags": list(self.created_tags),
            "failures": dict(self.failures),
            "resources": [r.to_dict() for r in self.resources],
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ProjectState":
        name = raw["project_name"]
        return cls(
            project_name=name,
            base_tag=int(raw["base_tag"]),
            status=ProjectStatus(raw.get("status", ProjectStatus.RUNNING.value)),
            resources=[TrackedResource.from_dict(name, r) for r in raw.get("resources", [])],
            created_tags=list(raw.get("created_tags", [])),
            failures=dict(raw.get("failures", {})),
            updated_at=raw.get("updated_at", ""),
        )


Mutator = Callable[[Optional[ProjectState]], Optional[ProjectState]]


# --------------------------------------------------------------------------- #
# State Store                                                                 #
# --------------------------------------------------------------------------- #


class StateStore:
    """
    Durable ``project_name -> ProjectState`` mapping.

    Every ``commit`` is persisted before it returns.  Reads go straight to
    disk, so several workon processes can share one state directory.
    """

    def __init__(self, state_dir: Path = STATE_DIR) -> None:
        self._state_dir = Path(state_dir)
        self._state_dir.mkdir(parents=True, exist_ok=True)
        self.warnings: list[str] = []

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    # ---------------  paths & locks  -------------------------------------- #

    def _path(self, project_name: str) -> Path:
        if not project_name or "/" in project_name or project_name.startswith("."):
            raise ValueError(f"invalid project name '{project_name}'")
        return self._state_dir / f"{project_name}.json"

    @contextlib.contextmanager
    def _commit_lock(self, project_name: str) -> Iterator[None]:
        lock_path = self._path(project_name).with_suffix(".json.lock")
        with lock_path.open("a") as fp:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fp.fileno(), fcntl.LOCK_UN)

    @contextlib.contextmanager
    def exclusive(self, project_name: str) -> Iterator[None]:
        """Hold the per-project operation lock or raise ``ProjectBusy``."""
        lock_path = self._path(project_name).with_suffix(".lock")
        with lock_path.open("a") as fp:
            try:
                fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as exc:
                raise ProjectBusy(project_name) from exc
            try:
                yield
            finally:
                fcntl.flock(fp.fileno(), fcntl.LOCK_UN)

    # ---------------  disk I/O  ------------------------------------------- #

    def _read(self, project_name: str) -> Optional[ProjectState]:
        path = self._path(project_name)
        if not path.exists():
            return None
        try:
            with path.open("r") as fp:
                raw = json.load(fp)
            return ProjectState.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            err = StoreCorruption(f"Ignoring unreadable state {path}: {exc}")
            _LOG.warning("%s", err)
            self.warnings.append(str(err))
            return None

    def _write_atomic(self, path: Path, data: dict) -> None:
        tmp_path = path.with_suffix(f".{os.getpid()}.tmp")
        try:
            with tmp_path.open("w") as fp:
                json.dump(data, fp, indent=2)
                fp.flush()
                os.fsync(fp.fileno())
            tmp_path.replace(path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            _LOG.error("Failed to write state to %s: %s", path, exc)
            raise StoreWriteFailure(f"Could not persist {path}: {exc}") from exc

    # ---------------  public API  ----------------------------------------- #

    def load(self) -> Dict[str, ProjectState]:
        """Every readable project document, keyed by project name."""
        projects: Dict[str, ProjectState] = {}
        for path in sorted(self._state_dir.glob("*.json")):
            state = self._read(path.stem)
            if state is not None:
                projects[state.project_name] = state
        return projects

    def get(self, project_name: str) -> Optional[ProjectState]:
        """Current state of one project, or ``None`` if absent."""
        return self._read(project_name)

    def commit(self, project_name: str, mutator: Mutator) -> Optional[ProjectState]:
        """
        Atomically apply *mutator* to one project's state.

        The mutator receives a private copy of the current state (``None``
        when absent) and returns the new state, or ``None`` to delete it.
        Raises ``StoreWriteFailure`` when the result cannot be persisted; the
        previously committed document is left untouched in that case.
        """
        path = self._path(project_name)
        with self._commit_lock(project_name):
            current = self._read(project_name)
            updated = mutator(copy.deepcopy(current))
            if updated is None:
                if path.exists():
                    try:
                        path.unlink()
                    except OSError as exc:
                        raise StoreWriteFailure(f"Could not remove {path}: {exc}") from exc
                return None
            updated.updated_at = datetime.now(timezone.utc).isoformat()
            self._write_atomic(path, updated.to_dict())
            return updated

    def remove(self, project_name: str) -> None:
        """Delete a project's document (no-op when absent)."""
        self.commit(project_name, lambda _current: None)
