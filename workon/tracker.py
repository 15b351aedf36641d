"""
workon.tracker
--------------

Correlate host entities with the resources that spawned them.

A spawned process carries ``WORKON_TOKEN`` in its environment; once its
window shows up the tracker writes the ownership as durable properties on
the entity itself.  A restarted workon therefore rediscovers ownership by
scanning entities, without any in-memory correlation.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from typing import Iterable, List, Optional

from .constants import (
    ENV_TOKEN,
    POLL_INTERVAL,
    PROP_KIND,
    PROP_PROJECT,
    PROP_RESOURCE_ID,
    PROP_TOKEN,
    SPAWN_TIMEOUT,
    ResourceKind,
    ResourceStatus,
)
from .errors import AttachTimeout, HostError
from .host import Host, HostEntity
from .spawner import PendingHandle
from .state import TrackedResource

_LOG = logging.getLogger(__name__)


def correlates(handle: PendingHandle, entity: HostEntity) -> bool:
    """Is *entity* the window produced by *handle*'s spawn?"""
    if entity.environ.get(ENV_TOKEN) == handle.token:
        return True
    if entity.properties.get(PROP_TOKEN) == handle.token:
        return True
    return handle.pid is not None and entity.pid == handle.pid


async def wait_for_entity(
    host: Host,
    handle: PendingHandle,
    timeout: float = SPAWN_TIMEOUT,
    poll_interval: float = POLL_INTERVAL,
) -> HostEntity:
    """Poll the host until the spawned entity appears or *timeout* elapses."""
    if handle.entity is not None:
        return handle.entity

    deadline = time.monotonic() + timeout
    while True:
        entities = await host.list_entities(lambda e: correlates(handle, e))
        if entities:
            return entities[0]
        if time.monotonic() >= deadline:
            break
        await asyncio.sleep(poll_interval)

    raise AttachTimeout(
        handle.spec.id,
        f"no window appeared within {timeout:g}s (timeout)",
    )


async def attach(host: Host, handle: PendingHandle, entity: HostEntity) -> TrackedResource:
    """
    Mark *entity* as owned by *handle*'s resource and move it to its tag.

    Returns the ``live`` TrackedResource; persisting it is the caller's job.
    """
    props = {
        PROP_PROJECT: handle.project_name,
        PROP_RESOURCE_ID: handle.spec.id,
        PROP_TOKEN: handle.token,
        PROP_KIND: handle.spec.kind.value,
    }
    for key, value in props.items():
        await host.set_entity_property(entity.entity_id, key, value)
        entity.properties[key] = value

    tag = handle.placement.tag
    await host.assign_entity_to_tag(entity.entity_id, tag)
    entity.tag = tag

    _LOG.info(
        "Attached %s (pid %s) to %s/%s on tag %s",
        entity.entity_id,
        entity.pid,
        handle.project_name,
        handle.spec.id,
        tag,
    )
    return TrackedResource(
        project_name=handle.project_name,
        resource_id=handle.spec.id,
        host_entity_id=entity.entity_id,
        tag=tag,
        status=ResourceStatus.LIVE,
        pid=entity.pid,
        kind=handle.spec.kind,
        token=handle.token,
    )


def reattach(entity: HostEntity) -> Optional[TrackedResource]:
    """Rebuild a live TrackedResource from durable entity properties alone."""
    project = entity.properties.get(PROP_PROJECT)
    resource_id = entity.properties.get(PROP_RESOURCE_ID)
    if not project or not resource_id:
        return None
    raw_kind = entity.properties.get(PROP_KIND, ResourceKind.APP.value)
    try:
        kind = ResourceKind(raw_kind)
    except ValueError:
        kind = ResourceKind.APP
    return TrackedResource(
        project_name=project,
        resource_id=resource_id,
        host_entity_id=entity.entity_id,
        tag=entity.tag if entity.tag is not None else 1,
        status=ResourceStatus.LIVE,
        pid=entity.pid,
        kind=kind,
        token=entity.properties.get(PROP_TOKEN),
    )


def owned_entities(entities: Iterable[HostEntity], project_name: str) -> List[HostEntity]:
    return [e for e in entities if e.properties.get(PROP_PROJECT) == project_name]


async def discard(host: Host, handle: PendingHandle) -> None:
    """Terminate a spawn whose window never appeared; best effort."""
    if handle.reused or handle.pid is None:
        return
    try:
        if await host.is_alive(handle.pid):
            await host.send_signal(handle.pid, signal.SIGTERM)
    except HostError as exc:
        _LOG.warning("Could not discard pid %s for '%s': %s", handle.pid, handle.spec.id, exc)
