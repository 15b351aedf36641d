"""
workon.lifecycle
----------------

Drive a whole project through start / stop / status / resume.

Each project is a single logical actor: one operation at a time, guarded by
an in-process ``asyncio.Lock`` and the store's per-project file lock.
Different projects run fully in parallel.  Inside a ``start`` the resources
are brought up concurrently, but outcomes are always reported in declared
order.

Example
-------
>>> orchestrator = Orchestrator(MemoryHost(current_tag=2), StateStore(tmp))
>>> result = await orchestrator.start(project)
>>> result.status
'running'
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

from .constants import (
    GRACE_PERIOD,
    HOOK_TIMEOUT,
    INTERACTIVE_KINDS,
    POLL_INTERVAL,
    SPAWN_TIMEOUT,
    NoticeKind,
    ProjectStatus,
    ResourceStatus,
)
from .errors import (
    AlreadyRunning,
    ErrorType,
    HookFailure,
    HostError,
    NotRunning,
    ProjectBusy,
    ProjectStateError,
    ResourceError,
    StoreWriteFailure,
    TeardownFailure,
    WorkonError,
    classify_error,
    suggestions_for,
)
from .host import Host, HostEntity
from .model import Project, ResourceSpec
from .reconcile import reconcile
from .spawner import acquire
from .state import ProjectState, StateStore, TrackedResource
from .tags import ResolvedPlacement, plan_tags, resolve
from .tracker import attach, discard, wait_for_entity

_LOG = logging.getLogger(__name__)

PARTIALLY_FAILED = "partially-failed"
ABSENT = "absent"
FAILED = "failed"


# --------------------------------------------------------------------------- #
# Results                                                                     #
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class Notice:
    """A warning attached to an operation summary."""

    kind: NoticeKind
    message: str
    resource_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            **({"resource_id": self.resource_id} if self.resource_id else {}),
        }


@dataclass(slots=True)
class ResourceOutcome:
    resource_id: str
    status: str  # live / stopped / orphaned / failed / pending
    tag: Any = None
    pid: int | None = None
    reason: str | None = None
    error_type: ErrorType | None = None
    suggestions: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == FAILED

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {"resource_id": self.resource_id, "status": self.status}
        if self.tag is not None:
            data["tag"] = self.tag
        if self.pid is not None:
            data["pid"] = self.pid
        if self.reason:
            data["reason"] = self.reason
        if self.error_type is not None:
            data["error_type"] = self.error_type.value
        if self.suggestions:
            data["suggestions"] = list(self.suggestions)
        return data


def _failure(resource_id: str, reason: str, command: str | None = None, tag: Any = None) -> ResourceOutcome:
    error_type, _ = classify_error(reason)
    return ResourceOutcome(
        resource_id,
        FAILED,
        tag=tag,
        reason=reason,
        error_type=error_type,
        suggestions=suggestions_for(error_type, command),
    )


@dataclass(slots=True)
class OperationResult:
    """Summary returned by every command, even on partial failure."""

    project_name: str
    operation: str
    status: str = ABSENT
    outcomes: List[ResourceOutcome] = field(default_factory=list)
    warnings: List[Notice] = field(default_factory=list)

    def warn(self, kind: NoticeKind, message: str, resource_id: str | None = None) -> None:
        _LOG.warning("%s: %s", self.project_name, message)
        self.warnings.append(Notice(kind, message, resource_id))

    @property
    def failures(self) -> List[ResourceOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if not o.failed)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict:
        return {
            "project": self.project_name,
            "operation": self.operation,
            "status": self.status,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "resources": [o.to_dict() for o in self.outcomes],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# --------------------------------------------------------------------------- #
# Hooks                                                                       #
# --------------------------------------------------------------------------- #


async def run_hook(
    name: str,
    command: str,
    cwd: str | None = None,
    timeout: float = HOOK_TIMEOUT,
    grace: float = GRACE_PERIOD,
) -> None:
    """
    Run a project hook through the shell and wait for it.

    Raises ``HookFailure`` on launch error, non-zero exit or timeout.  A
    timed-out hook gets *grace* more seconds before it is killed.
    """
    _LOG.info("Running hooks.%s: %s", name, command)
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise HookFailure(name, str(exc)) from exc

    try:
        _out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        raise HookFailure(name, f"timed out after {timeout:g}s") from None

    if proc.returncode != 0:
        detail = err.decode(errors="replace").strip().splitlines()
        tail = f": {detail[-1]}" if detail else ""
        raise HookFailure(name, f"exited with status {proc.returncode}{tail}")


def _hook_cwd(project: Project) -> str | None:
    for spec in project.resources:
        if spec.dir:
            path = os.path.expanduser(spec.dir)
            if os.path.isdir(path):
                return path
    return None


# --------------------------------------------------------------------------- #
# Orchestrator                                                                #
# --------------------------------------------------------------------------- #


class Orchestrator:
    """Lifecycle driver bound to one host and one state store."""

    def __init__(
        self,
        host: Host,
        store: StateStore,
        *,
        spawn_timeout: float = SPAWN_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
        grace_period: float = GRACE_PERIOD,
        hook_timeout: float = HOOK_TIMEOUT,
    ) -> None:
        self._host = host
        self._store = store
        self._spawn_timeout = spawn_timeout
        self._poll_interval = poll_interval
        self._grace_period = grace_period
        self._hook_timeout = hook_timeout
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> StateStore:
        return self._store

    # ---------------- guards & helpers ---------------- #

    @contextlib.asynccontextmanager
    async def _guard(
        self, project_name: str, busy: Callable[[str], ProjectStateError] = ProjectBusy
    ) -> AsyncIterator[None]:
        """Serialize operations on one project; a second one is rejected."""
        lock = self._locks.setdefault(project_name, asyncio.Lock())
        if lock.locked():
            raise busy(project_name)
        async with lock:
            try:
                with self._store.exclusive(project_name):
                    yield
            except ProjectBusy as exc:
                if busy is ProjectBusy:
                    raise
                raise busy(project_name) from exc

    def _drain_store_warnings(self, result: OperationResult) -> None:
        while self._store.warnings:
            result.warn(NoticeKind.STORE_CORRUPTION, self._store.warnings.pop(0))

    async def _notify(self, result: OperationResult) -> None:
        message = (
            f"{result.operation} {result.project_name}: {result.status} "
            f"({result.succeeded} ok, {result.failed} failed)"
        )
        level = "error" if result.failed else "info"
        try:
            await self._host.notify(message, level)
        except HostError as exc:
            _LOG.debug("Notification failed: %s", exc)

    async def _wait_exit(self, pid: int, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            if not await self._host.is_alive(pid):
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self._poll_interval)

    # ---------------- start ---------------- #

    async def start(self, project: Project, layout: str | None = None) -> OperationResult:
        """Bring every resource of *project* up and track it."""
        overrides = project.placements(layout)  # ValidationError before any spawn
        async with self._guard(project.name, busy=AlreadyRunning):
            existing = self._store.get(project.name)
            if existing is not None and existing.status is not ProjectStatus.STOPPED:
                raise AlreadyRunning(project.name)
            return await self._start_locked(project, overrides)

    async def _start_locked(self, project: Project, overrides) -> OperationResult:
        result = OperationResult(project.name, "start")
        self._drain_store_warnings(result)
        failures: Dict[str, str] = {}

        base_tag = await self._host.get_current_tag()
        _LOG.info("Starting '%s' from base tag %s", project.name, base_tag)

        if project.start_hook:
            try:
                await run_hook(
                    "start",
                    project.start_hook,
                    _hook_cwd(project),
                    self._hook_timeout,
                    self._grace_period,
                )
            except HookFailure as exc:
                result.warn(NoticeKind.HOOK_FAILURE, str(exc))
                failures["hooks.start"] = exc.reason

        try:
            existing_tags = await self._host.list_tags()
        except HostError as exc:
            result.warn(NoticeKind.TAG, f"could not list tags: {exc}")
            existing_tags = []
        plan = plan_tags(project.resources, base_tag, existing_tags, overrides)
        for resource_id in plan.overflows:
            result.warn(NoticeKind.PLACEMENT_OVERFLOW, plan.warning_for(resource_id), resource_id)

        created: List[str] = []
        for name in plan.creations:
            try:
                await self._host.create_tag(name)
                created.append(name)
            except HostError as exc:
                result.warn(NoticeKind.TAG, f"could not create tag '{name}': {exc}")

        def _begin(_current: Optional[ProjectState]) -> ProjectState:
            return ProjectState(
                project_name=project.name,
                base_tag=base_tag,
                status=ProjectStatus.RUNNING,
                created_tags=created,
            )

        self._store.commit(project.name, _begin)

        try:
            inventory = await self._host.list_entities()
        except HostError as exc:
            result.warn(NoticeKind.TAG, f"could not scan host windows: {exc}")
            inventory = []

        claimed: set[str] = set()
        tasks = [
            asyncio.ensure_future(
                self._bring_up(project.name, spec, plan.assignments[spec.id], inventory, claimed)
            )
            for spec in project.resources
        ]
        gathered = asyncio.gather(*tasks)
        try:
            pairs = await asyncio.shield(gathered)
        except asyncio.CancelledError:
            _LOG.warning("Start of '%s' cancelled; tearing down what was started", project.name)
            await asyncio.wait(tasks)
            cancelled = OperationResult(project.name, "stop")
            cancelled.warn(NoticeKind.CANCELLED, "start cancelled; stopping started resources")
            try:
                await self._stop_locked(project.name, None, cancelled)
            except WorkonError as exc:
                _LOG.error("Teardown after cancelled start of '%s' failed: %s", project.name, exc)
            raise

        tracked: List[TrackedResource] = []
        for outcome, record in pairs:
            result.outcomes.append(outcome)
            if record is not None:
                tracked.append(record)
            elif outcome.failed:
                failures[outcome.resource_id] = outcome.reason or "failed"

        def _finish(current: Optional[ProjectState]) -> ProjectState:
            state = current or _begin(None)
            state.status = ProjectStatus.RUNNING
            state.resources = tracked
            state.failures = failures
            return state

        self._store.commit(project.name, _finish)

        result.status = PARTIALLY_FAILED if failures else ProjectStatus.RUNNING.value
        _LOG.info(
            "Started '%s': %s (%d ok, %d failed)",
            project.name,
            result.status,
            result.succeeded,
            result.failed,
        )
        await self._notify(result)
        return result

    async def _bring_up(
        self,
        project_name: str,
        spec: ResourceSpec,
        placement: ResolvedPlacement,
        inventory: List[HostEntity],
        claimed: set[str],
    ) -> tuple[ResourceOutcome, Optional[TrackedResource]]:
        """acquire -> wait -> attach for one resource; never raises ResourceError."""
        handle = None
        try:
            handle = await acquire(self._host, project_name, spec, placement, inventory, claimed)
            entity = await wait_for_entity(
                self._host, handle, self._spawn_timeout, self._poll_interval
            )
            record = await attach(self._host, handle, entity)
        except ResourceError as exc:
            _LOG.warning("Resource '%s' failed: %s", spec.id, exc.reason)
            if handle is not None:
                await discard(self._host, handle)
            return _failure(spec.id, exc.reason, spec.command, placement.tag), None
        except HostError as exc:
            _LOG.warning("Resource '%s' failed: %s", spec.id, exc)
            if handle is not None:
                await discard(self._host, handle)
            return _failure(spec.id, str(exc), spec.command, placement.tag), None

        try:
            self._store.commit(project_name, lambda s: _upsert(s, record))
        except StoreWriteFailure as exc:
            _LOG.warning("Could not record '%s' yet: %s", spec.id, exc)

        outcome = ResourceOutcome(spec.id, ResourceStatus.LIVE.value, tag=record.tag, pid=record.pid)
        return outcome, record

    # ---------------- stop ---------------- #

    async def stop(self, project_name: str, project: Project | None = None) -> OperationResult:
        """Tear down every live resource; *project* supplies the stop hook."""
        async with self._guard(project_name):
            result = OperationResult(project_name, "stop")
            self._drain_store_warnings(result)
            await self._stop_locked(project_name, project, result)
            await self._notify(result)
            return result

    async def _stop_locked(
        self, project_name: str, project: Project | None, result: OperationResult
    ) -> None:
        state = self._store.get(project_name)
        if state is None or state.status is ProjectStatus.STOPPED:
            raise NotRunning(project_name)

        def _stopping(current: Optional[ProjectState]) -> Optional[ProjectState]:
            if current is not None:
                current.status = ProjectStatus.STOPPING
            return current

        self._store.commit(project_name, _stopping)

        hook_failed = False
        if project is not None and project.stop_hook:
            try:
                await run_hook(
                    "stop",
                    project.stop_hook,
                    _hook_cwd(project),
                    self._hook_timeout,
                    self._grace_period,
                )
            except HookFailure as exc:
                result.warn(NoticeKind.HOOK_FAILURE, str(exc))
                hook_failed = True

        outcomes = await asyncio.gather(
            *(self._tear_down(tracked, result) for tracked in state.resources)
        )
        result.outcomes.extend(outcomes)
        survivors = {o.resource_id for o in outcomes if o.failed}

        if survivors:
            result.warn(
                NoticeKind.TAG,
                f"keeping tags {state.created_tags} while {len(survivors)} resource(s) survive",
            )
        else:
            for tag in state.created_tags:
                try:
                    await self._host.delete_tag(tag)
                except HostError as exc:
                    result.warn(NoticeKind.TAG, f"could not delete tag '{tag}': {exc}")

        # Survivors keep the project in STOPPING so a later stop can retry them.
        final = ProjectStatus.STOPPING if survivors else ProjectStatus.STOPPED

        def _stopped(current: Optional[ProjectState]) -> Optional[ProjectState]:
            current = current or state
            current.status = final
            for tracked in current.resources:
                if tracked.resource_id not in survivors:
                    tracked.status = ResourceStatus.STOPPED
            if current.removable and not hook_failed:
                return None
            return current

        self._store.commit(project_name, _stopped)
        result.status = final.value
        _LOG.info("Stopped '%s' (%d ok, %d failed)", project_name, result.succeeded, result.failed)

    async def _tear_down(self, tracked: TrackedResource, result: OperationResult) -> ResourceOutcome:
        stopped = ResourceOutcome(tracked.resource_id, ResourceStatus.STOPPED.value, tag=tracked.tag, pid=tracked.pid)
        if tracked.status is not ResourceStatus.LIVE:
            return stopped

        try:
            if tracked.pid is None:
                if tracked.host_entity_id is not None:
                    await self._host.close_entity(tracked.host_entity_id)
                return stopped

            signum = signal.SIGINT if tracked.kind in INTERACTIVE_KINDS else signal.SIGTERM
            await self._host.send_signal(tracked.pid, signum)
            if await self._wait_exit(tracked.pid, self._grace_period):
                return stopped

            await self._host.send_signal(tracked.pid, signal.SIGKILL)
            if await self._wait_exit(tracked.pid, max(self._poll_interval * 4, 1.0)):
                result.warn(
                    NoticeKind.FORCE_KILL,
                    f"resource '{tracked.resource_id}' ignored {signal.Signals(signum).name} "
                    f"for {self._grace_period:g}s and was force-killed",
                    tracked.resource_id,
                )
                return stopped
            raise TeardownFailure(tracked.resource_id, f"pid {tracked.pid} survived SIGKILL")
        except TeardownFailure as exc:
            return _failure(tracked.resource_id, exc.reason, tag=tracked.tag)
        except HostError as exc:
            return _failure(tracked.resource_id, str(exc), tag=tracked.tag)

    # ---------------- status ---------------- #

    async def status(self, project_name: str, project: Project | None = None) -> OperationResult:
        """Read-only projection of the persisted state."""
        result = OperationResult(project_name, "status")
        state = self._store.get(project_name)
        self._drain_store_warnings(result)
        if state is None:
            return result

        result.status = state.status.value
        if state.status is ProjectStatus.RUNNING and state.failures:
            result.status = PARTIALLY_FAILED

        by_id = {t.resource_id: t for t in state.resources}
        order = _resource_order(project, state)
        for resource_id in order:
            tracked = by_id.get(resource_id)
            if tracked is not None:
                result.outcomes.append(
                    ResourceOutcome(resource_id, tracked.status.value, tag=tracked.tag, pid=tracked.pid)
                )
            elif resource_id in state.failures:
                result.outcomes.append(_failure(resource_id, state.failures[resource_id]))
        for hook, reason in state.failures.items():
            if hook.startswith("hooks."):
                result.warnings.append(Notice(NoticeKind.HOOK_FAILURE, f"{hook}: {reason}"))
        return result

    # ---------------- resume ---------------- #

    async def resume(self, project_name: str, project: Project | None = None) -> OperationResult:
        """Reconcile persisted records with the host after a restart."""
        async with self._guard(project_name):
            result = OperationResult(project_name, "resume")
            state = self._store.get(project_name)
            self._drain_store_warnings(result)
            if state is None or state.status is ProjectStatus.STOPPED:
                raise NotRunning(project_name)

            entities = await self._host.list_entities()
            rec = reconcile(state, entities)
            by_entity = {e.entity_id: e for e in entities}

            for tracked in rec.resources:
                if tracked.status is not ResourceStatus.LIVE:
                    continue
                desired = self._desired_tag(project, state, tracked)
                entity = by_entity.get(tracked.host_entity_id or "")
                if entity is not None and entity.tag != desired:
                    await self._retag(tracked, desired, result)

            for resource_id in rec.orphaned:
                result.warn(
                    NoticeKind.ORPHANED,
                    f"resource '{resource_id}' is gone; it will not be respawned",
                    resource_id,
                )
            for resource_id in rec.adopted:
                _LOG.info("Adopted untracked window for '%s/%s'", project_name, resource_id)

            def _reconciled(current: Optional[ProjectState]) -> ProjectState:
                current = current or state
                current.resources = rec.resources
                # An interrupted stop is resumed as running so it can be retried.
                current.status = ProjectStatus.RUNNING
                return current

            committed = self._store.commit(project_name, _reconciled)
            order = _resource_order(project, committed or state)
            by_id = {t.resource_id: t for t in rec.resources}
            for resource_id in order:
                tracked = by_id.get(resource_id)
                if tracked is not None:
                    result.outcomes.append(
                        ResourceOutcome(resource_id, tracked.status.value, tag=tracked.tag, pid=tracked.pid)
                    )
            result.status = (committed or state).status.value
            if rec.orphaned and result.status == ProjectStatus.RUNNING.value:
                result.status = PARTIALLY_FAILED
            return result

    def _desired_tag(
        self, project: Project | None, state: ProjectState, tracked: TrackedResource
    ):
        persisted = state.find(tracked.resource_id)
        if persisted is not None:
            return persisted.tag
        # Adopted window: place it from the declaration and the recorded base tag.
        spec = project.resource(tracked.resource_id) if project is not None else None
        if spec is None:
            return tracked.tag
        return resolve(spec.placement, state.base_tag).tag

    async def _retag(self, tracked: TrackedResource, tag, result: OperationResult) -> None:
        try:
            if isinstance(tag, str) and tag not in [str(t) for t in await self._host.list_tags()]:
                await self._host.create_tag(tag)
            await self._host.assign_entity_to_tag(tracked.host_entity_id, tag)
            tracked.tag = tag
        except HostError as exc:
            result.warn(
                NoticeKind.TAG,
                f"could not move '{tracked.resource_id}' back to tag {tag}: {exc}",
                tracked.resource_id,
            )


def _upsert(current: Optional[ProjectState], record: TrackedResource) -> Optional[ProjectState]:
    if current is None:
        return None
    current.upsert(record)
    return current


def _resource_order(project: Project | None, state: ProjectState) -> List[str]:
    """Declared order when the project is known, persisted order otherwise."""
    order: List[str] = [spec.id for spec in project.resources] if project is not None else []
    extra: Iterable[str] = [t.resource_id for t in state.resources] + [
        k for k in state.failures if not k.startswith("hooks.")
    ]
    for resource_id in extra:
        if resource_id not in order:
            order.append(resource_id)
    return order
