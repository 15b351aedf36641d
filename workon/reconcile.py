"""
workon.reconcile
----------------

Rebuild the live view of a project from its persisted records plus a host
inventory scan.  Pure: same inputs, same classification, so running it
twice without host changes is a no-op.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .constants import PROP_RESOURCE_ID, PROP_TOKEN, ResourceStatus
from .host import HostEntity
from .state import ProjectState, TrackedResource
from .tracker import owned_entities, reattach


@dataclass(slots=True)
class Reconciliation:
    resources: List[TrackedResource] = field(default_factory=list)
    live: List[str] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)
    adopted: List[str] = field(default_factory=list)

    def classification(self) -> Dict[str, ResourceStatus]:
        return {r.resource_id: r.status for r in self.resources}


def _pick(tracked: TrackedResource, candidates: List[HostEntity]) -> HostEntity | None:
    for entity in candidates:
        if entity.entity_id == tracked.host_entity_id:
            return entity
    for entity in candidates:
        if tracked.token and entity.properties.get(PROP_TOKEN) == tracked.token:
            return entity
    return candidates[0] if candidates else None


def reconcile(state: ProjectState, entities: Iterable[HostEntity]) -> Reconciliation:
    """Classify each persisted record as ``live`` or ``orphaned``.

    Entities carrying this project's ownership properties that the store
    does not know about are adopted as ``live`` records.  Stopped records
    are left alone; orphans are never respawned.
    """
    by_resource: Dict[str, List[HostEntity]] = {}
    for entity in owned_entities(entities, state.project_name):
        resource_id = entity.properties.get(PROP_RESOURCE_ID)
        if resource_id:
            by_resource.setdefault(resource_id, []).append(entity)

    result = Reconciliation()
    for tracked in state.resources:
        candidates = by_resource.pop(tracked.resource_id, [])
        if tracked.status is ResourceStatus.STOPPED:
            result.resources.append(copy.copy(tracked))
            continue
        entity = _pick(tracked, candidates)
        rebuilt = reattach(entity) if entity is not None else None
        if rebuilt is not None:
            rebuilt.kind = tracked.kind
            rebuilt.token = rebuilt.token or tracked.token
            result.resources.append(rebuilt)
            result.live.append(tracked.resource_id)
        else:
            orphan = copy.copy(tracked)
            orphan.status = ResourceStatus.ORPHANED
            result.resources.append(orphan)
            result.orphaned.append(tracked.resource_id)

    for resource_id, candidates in by_resource.items():
        rebuilt = reattach(candidates[0])
        if rebuilt is not None:
            result.resources.append(rebuilt)
            result.adopted.append(resource_id)
    return result
