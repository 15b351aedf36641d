"""
workon.tags
-----------

Pure tag resolution.  No host access, no state: the base tag is always an
explicit argument, so resolving the same ``(placement, base_tag)`` pair
twice yields the same result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Union

from .constants import MAX_TAG, MIN_TAG
from .model import AbsoluteNamed, AbsoluteNumeric, Placement, Relative, ResourceSpec

TagId = Union[int, str]


@dataclass(slots=True, frozen=True)
class ResolvedPlacement:
    tag: TagId
    overflowed: bool = False
    requested: int | None = None  # pre-clamp index, set only on overflow

    @property
    def named(self) -> bool:
        return isinstance(self.tag, str)


def _clamp(index: int) -> ResolvedPlacement:
    if index > MAX_TAG:
        return ResolvedPlacement(MAX_TAG, overflowed=True, requested=index)
    if index < MIN_TAG:
        # Negative offsets land on the first tag; this is not an overflow.
        return ResolvedPlacement(MIN_TAG)
    return ResolvedPlacement(index)


def resolve(placement: Placement, base_tag: int) -> ResolvedPlacement:
    """Resolve *placement* against *base_tag*; clamps to ``MAX_TAG``, never wraps."""
    if isinstance(placement, Relative):
        return _clamp(base_tag + placement.offset)
    if isinstance(placement, AbsoluteNumeric):
        return _clamp(placement.index)
    if isinstance(placement, AbsoluteNamed):
        return ResolvedPlacement(placement.name)
    raise TypeError(f"unsupported placement: {placement!r}")


@dataclass(slots=True)
class TagPlan:
    """Resolution of a whole project, in declared resource order."""

    base_tag: int
    assignments: dict[str, ResolvedPlacement] = field(default_factory=dict)
    creations: list[str] = field(default_factory=list)  # named tags to create
    overflows: list[str] = field(default_factory=list)  # resource ids

    def warning_for(self, resource_id: str) -> str:
        resolved = self.assignments[resource_id]
        return (
            f"resource '{resource_id}': tag {resolved.requested} exceeds {MAX_TAG}, "
            f"placed on tag {resolved.tag}"
        )


def plan_tags(
    resources: Iterable[ResourceSpec],
    base_tag: int,
    existing_tags: Iterable[TagId] = (),
    overrides: Mapping[str, Placement] | None = None,
) -> TagPlan:
    """
    Resolve every resource and work out which named tags must be created.

    *overrides* replaces individual placements (a project layout).
    """
    existing = {str(t) for t in existing_tags}
    plan = TagPlan(base_tag=base_tag)
    for spec in resources:
        placement = (overrides or {}).get(spec.id, spec.placement)
        resolved = resolve(placement, base_tag)
        plan.assignments[spec.id] = resolved
        if resolved.overflowed:
            plan.overflows.append(spec.id)
        if resolved.named and resolved.tag not in existing and resolved.tag not in plan.creations:
            plan.creations.append(resolved.tag)  # type: ignore[arg-type]
    return plan
