"""
workon.host
-----------

Capability interface of the window-manager host, plus ``MemoryHost``: a
deterministic in-memory implementation used by the test-suite and by
``workon start --dry-run``.

The orchestrator never talks to a window manager directly; everything goes
through a ``Host``.  All methods are coroutines so real backends may block
on subprocesses without stalling sibling resources.
"""

from __future__ import annotations

import itertools
import logging
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Union

from .constants import ENV_TOKEN, HOST_BACKEND
from .errors import HostError

_LOG = logging.getLogger(__name__)

TagId = Union[int, str]


# --------------------------------------------------------------------------- #
# Data models                                                                 #
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class HostEntity:
    """Snapshot of one window/process as reported by the host."""

    entity_id: str
    pid: int | None = None
    title: str = ""
    klass: str = ""
    cwd: str | None = None
    command: str | None = None
    tag: TagId | None = None
    properties: Dict[str, str] = field(default_factory=dict)  # durable
    environ: Dict[str, str] = field(default_factory=dict)  # WORKON_* only


class SpawnTicket(NamedTuple):
    token: str  # correlation token carried by the spawned process
    pid: int | None


EntityPredicate = Callable[[HostEntity], bool]


class Host(ABC):
    """What workon needs from a window manager."""

    @abstractmethod
    async def get_current_tag(self) -> int: ...

    @abstractmethod
    async def list_tags(self) -> List[TagId]: ...

    @abstractmethod
    async def create_tag(self, name: str) -> TagId: ...

    @abstractmethod
    async def delete_tag(self, tag: TagId) -> None: ...

    @abstractmethod
    async def assign_entity_to_tag(self, entity_id: str, tag: TagId) -> None: ...

    @abstractmethod
    async def list_entities(
        self, predicate: Optional[EntityPredicate] = None
    ) -> List[HostEntity]: ...

    @abstractmethod
    async def spawn(
        self, command: str, env: Dict[str, str], workdir: str | None
    ) -> SpawnTicket: ...

    @abstractmethod
    async def set_entity_property(self, entity_id: str, key: str, value: str) -> None: ...

    @abstractmethod
    async def get_entity_property(self, entity_id: str, key: str) -> Optional[str]: ...

    @abstractmethod
    async def send_signal(self, pid: int, signum: int) -> None: ...

    @abstractmethod
    async def is_alive(self, pid: int) -> bool: ...

    @abstractmethod
    async def close_entity(self, entity_id: str) -> None: ...

    @abstractmethod
    async def notify(self, message: str, level: str = "info") -> None: ...


# --------------------------------------------------------------------------- #
# In-memory host                                                              #
# --------------------------------------------------------------------------- #


class MemoryHost(Host):
    """
    Simulated host with predictable behaviour.

    Knobs
    -----
    failing_commands  : spawn raises ``HostError`` when the command contains one
    silent_commands   : spawn succeeds but no entity ever appears
    stubborn_commands : entity ignores SIGINT/SIGTERM (SIGKILL still works)
    unkillable_commands : entity ignores every signal, SIGKILL included
    appear_after      : number of ``list_entities`` calls before a spawned
                        entity becomes visible
    """

    def __init__(
        self,
        current_tag: int = 1,
        tags: Optional[List[TagId]] = None,
        *,
        failing_commands: tuple[str, ...] = (),
        silent_commands: tuple[str, ...] = (),
        stubborn_commands: tuple[str, ...] = (),
        unkillable_commands: tuple[str, ...] = (),
        appear_after: int = 0,
    ) -> None:
        self.current_tag = current_tag
        self.tags: List[TagId] = list(tags if tags is not None else range(1, 10))
        self.entities: Dict[str, HostEntity] = {}
        self.failing_commands = failing_commands
        self.silent_commands = silent_commands
        self.stubborn_commands = stubborn_commands
        self.unkillable_commands = unkillable_commands
        self.appear_after = appear_after
        self.notifications: List[tuple[str, str]] = []
        self.spawned: List[str] = []
        self.signals: List[tuple[int, int]] = []
        self._pending: Dict[str, tuple[HostEntity, int]] = {}
        self._alive: set[int] = set()
        self._pids = itertools.count(1000)
        self._ids = itertools.count(1)

    # ---------------- test helpers ---------------- #

    def add_entity(self, **kwargs) -> HostEntity:
        """Register a pre-existing window (e.g. for reuse or resume tests)."""
        entity = HostEntity(entity_id=kwargs.pop("entity_id", f"mem-{next(self._ids)}"), **kwargs)
        self.entities[entity.entity_id] = entity
        if entity.pid is not None:
            self._alive.add(entity.pid)
        return entity

    def kill_entity(self, entity_id: str) -> None:
        """Simulate a window/process disappearing behind workon's back."""
        entity = self.entities.pop(entity_id, None)
        if entity and entity.pid is not None:
            self._alive.discard(entity.pid)

    def restart(self) -> None:
        """Simulate a host restart: entities survive, pending spawns do not."""
        self._pending.clear()

    @staticmethod
    def _matches(entity: HostEntity, needles: tuple[str, ...]) -> bool:
        return any(s in (entity.command or entity.title) for s in needles)

    # ---------------- Host API ---------------- #

    async def get_current_tag(self) -> int:
        return self.current_tag

    async def list_tags(self) -> List[TagId]:
        return list(self.tags)

    async def create_tag(self, name: str) -> TagId:
        if not name:
            raise HostError("refused to create a tag without a name")
        if name not in self.tags:
            self.tags.append(name)
        return name

    async def delete_tag(self, tag: TagId) -> None:
        if tag in self.tags:
            self.tags.remove(tag)

    async def assign_entity_to_tag(self, entity_id: str, tag: TagId) -> None:
        entity = self.entities.get(entity_id)
        if entity is None:
            raise HostError(f"no such entity {entity_id}")
        if tag not in self.tags:
            raise HostError(f"host refused unknown tag {tag!r}")
        entity.tag = tag

    async def list_entities(
        self, predicate: Optional[EntityPredicate] = None
    ) -> List[HostEntity]:
        for token, (entity, remaining) in list(self._pending.items()):
            if remaining <= 0:
                self.entities[entity.entity_id] = entity
                del self._pending[token]
            else:
                self._pending[token] = (entity, remaining - 1)
        entities = list(self.entities.values())
        if predicate is not None:
            entities = [e for e in entities if predicate(e)]
        return entities

    async def spawn(self, command: str, env: Dict[str, str], workdir: str | None) -> SpawnTicket:
        if any(bad in command for bad in self.failing_commands):
            raise HostError(f"host refused to spawn '{command}'")
        self.spawned.append(command)
        pid = next(self._pids)
        token = env.get(ENV_TOKEN, f"mem-token-{pid}")
        self._alive.add(pid)
        if any(quiet in command for quiet in self.silent_commands):
            return SpawnTicket(token, pid)
        entity = HostEntity(
            entity_id=f"mem-{next(self._ids)}",
            pid=pid,
            title=command,
            klass=command.split()[0] if command.split() else "",
            cwd=workdir,
            command=command,
            tag=self.current_tag,
            environ={k: v for k, v in env.items() if k.startswith("WORKON_")},
        )
        self._pending[token] = (entity, self.appear_after)
        return SpawnTicket(token, pid)

    async def set_entity_property(self, entity_id: str, key: str, value: str) -> None:
        entity = self.entities.get(entity_id)
        if entity is None:
            raise HostError(f"no such entity {entity_id}")
        entity.properties[key] = value

    async def get_entity_property(self, entity_id: str, key: str) -> Optional[str]:
        entity = self.entities.get(entity_id)
        return entity.properties.get(key) if entity else None

    async def send_signal(self, pid: int, signum: int) -> None:
        self.signals.append((pid, signum))
        if pid not in self._alive:
            return
        entity = next((e for e in self.entities.values() if e.pid == pid), None)
        if entity is not None and self._matches(entity, self.unkillable_commands):
            return
        stubborn = entity is not None and self._matches(entity, self.stubborn_commands)
        if signum == signal.SIGKILL or not stubborn:
            self._alive.discard(pid)
            if entity is not None:
                del self.entities[entity.entity_id]

    async def is_alive(self, pid: int) -> bool:
        return pid in self._alive

    async def close_entity(self, entity_id: str) -> None:
        self.kill_entity(entity_id)

    async def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append((level, message))


# --------------------------------------------------------------------------- #
# Factory                                                                     #
# --------------------------------------------------------------------------- #


def get_host(backend: str | None = None) -> Host:
    """Instantiate the host backend named by *backend* (or ``$WORKON_HOST``)."""
    name = (backend or HOST_BACKEND).lower()
    if name == "memory":
        return MemoryHost()
    if name == "awesome":
        from .awesome import AwesomeHost

        return AwesomeHost()
    raise ValueError(f"Unknown host backend '{name}' (valid: awesome, memory)")
