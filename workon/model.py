"""
workon.model
------------

Resolved resource model: what a project declares, already validated.

Design
~~~~~~
" ``Placement`` is a closed variant: ``Relative`` | ``AbsoluteNumeric`` |
  ``AbsoluteNamed``.  Raw tag specs are parsed exactly once, here.
" ``ReusePolicy`` is either *always-new* (``match is None``) or
  *reuse-if-match* with one of the ``MatchField`` predicates.
" ``Project.from_dict`` collects every problem before raising a single
  ``ValidationError`` so users can fix a file in one pass.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union

from .constants import MIN_TAG, ResourceKind
from .errors import ValidationError

_RELATIVE_RE = re.compile(r"^([+-])(\d+)$")

# --------------------------------------------------------------------------- #
# Placement                                                                   #
# --------------------------------------------------------------------------- #


@dataclass(slots=True, frozen=True)
class Relative:
    """Offset from the base tag active when the project started."""

    offset: int


@dataclass(slots=True, frozen=True)
class AbsoluteNumeric:
    index: int


@dataclass(slots=True, frozen=True)
class AbsoluteNamed:
    name: str


Placement = Union[Relative, AbsoluteNumeric, AbsoluteNamed]


def parse_tag_spec(raw: Any) -> Placement:
    """
    Parse a DSL tag spec into a ``Placement``.

    ``0``/``2``/``-1`` (ints) and ``"+2"``/``"-1"``/``"0"`` are relative
    offsets, other digit strings are absolute tags, anything else is a
    named tag.  Raises ``ValueError`` for unusable specs.
    """
    if isinstance(raw, bool):
        raise ValueError("tag must be an integer or a string, not a boolean")
    if isinstance(raw, int):
        return Relative(raw)
    if not isinstance(raw, str):
        raise ValueError(f"tag must be an integer or a string, got {type(raw).__name__}")

    spec = raw.strip()
    if not spec:
        raise ValueError("tag cannot be empty")
    if spec == "0":
        return Relative(0)
    m = _RELATIVE_RE.match(spec)
    if m:
        sign, digits = m.groups()
        return Relative(int(digits) if sign == "+" else -int(digits))
    if spec.isdigit():
        index = int(spec)
        if index < MIN_TAG:
            raise ValueError(f"absolute tag must be >= {MIN_TAG}, got '{spec}'")
        return AbsoluteNumeric(index)
    return AbsoluteNamed(spec)


def format_placement(placement: Placement) -> str:
    if isinstance(placement, Relative):
        return f"{placement.offset:+d}" if placement.offset else "0"
    if isinstance(placement, AbsoluteNumeric):
        return f'"{placement.index}"'
    return placement.name


# --------------------------------------------------------------------------- #
# Reuse                                                                       #
# --------------------------------------------------------------------------- #


class MatchField(str, Enum):
    """Predicates a ``reuse-if-match`` policy may use."""

    CWD = "cwd"
    TITLE = "title"
    CLASS = "class"
    COMMAND = "command"


@dataclass(slots=True, frozen=True)
class ReusePolicy:
    match: MatchField | None = None
    value: str | None = None  # explicit value, otherwise derived from the spec

    @property
    def always_new(self) -> bool:
        return self.match is None

    def describe(self) -> str:
        if self.match is None:
            return "always-new"
        return f"reuse-if-match({self.match.value})"


ALWAYS_NEW = ReusePolicy()


def parse_reuse(raw: Any) -> ReusePolicy:
    """``false``/``true`` or ``{"match": "title", "value": "..."}``."""
    if raw is None or raw is False or raw == "always-new":
        return ALWAYS_NEW
    if raw is True or raw == "reuse-if-match":
        return ReusePolicy(MatchField.CWD)
    if isinstance(raw, str):
        return ReusePolicy(MatchField(raw))
    if isinstance(raw, Mapping):
        unknown = set(raw) - {"match", "value"}
        if unknown:
            raise ValueError(f"unknown reuse keys: {', '.join(sorted(unknown))}")
        value = raw.get("value")
        if value is not None and not isinstance(value, str):
            raise ValueError("reuse.value must be a string")
        return ReusePolicy(MatchField(raw.get("match", MatchField.CWD.value)), value)
    raise ValueError(f"reuse must be a boolean, a match name or an object, got {raw!r}")


# --------------------------------------------------------------------------- #
# ResourceSpec / Project                                                      #
# --------------------------------------------------------------------------- #

_RESOURCE_KEYS = {
    "id",
    "kind",
    "type",
    "cmd",
    "command",
    "tag",
    "reuse",
    "dir",
    "args",
    "urls",
    "env",
}
_PROJECT_KEYS = {"name", "resources", "hooks", "layouts"}
_HOOK_NAMES = ("start", "stop")


@dataclass(slots=True, frozen=True)
class ResourceSpec:
    id: str
    kind: ResourceKind
    command: str
    placement: Placement = Relative(0)
    reuse: ReusePolicy = ALWAYS_NEW
    dir: str | None = None
    args: tuple[str, ...] = ()
    urls: tuple[str, ...] = ()
    env: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, resource_id: str, data: Any) -> "ResourceSpec":
        """Build one resource; raises ``ValidationError`` listing every problem."""
        problems: list[str] = []
        prefix = f"resource '{resource_id}'"
        if not isinstance(data, Mapping):
            raise ValidationError(f"{prefix}: specification must be an object")

        unknown = set(data) - _RESOURCE_KEYS
        if unknown:
            problems.append(f"{prefix}: unknown keys {', '.join(sorted(unknown))}")

        raw_kind = data.get("kind", data.get("type", ResourceKind.APP.value))
        try:
            kind = ResourceKind(raw_kind)
        except ValueError:
            valid = ", ".join(k.value for k in ResourceKind)
            problems.append(f"{prefix}: unknown kind '{raw_kind}' (valid: {valid})")
            kind = ResourceKind.CUSTOM

        command = data.get("command", data.get("cmd"))
        if not isinstance(command, str) or not command.strip():
            problems.append(f"{prefix}: cmd field is required and must be a non-empty string")
            command = ""
        else:
            try:
                shlex.split(command)
            except ValueError as exc:
                problems.append(f"{prefix}: cmd cannot be parsed: {exc}")

        try:
            placement = parse_tag_spec(data.get("tag", 0))
        except ValueError as exc:
            problems.append(f"{prefix}: {exc}")
            placement = Relative(0)

        try:
            reuse = parse_reuse(data.get("reuse"))
        except ValueError as exc:
            problems.append(f"{prefix}: {exc}")
            reuse = ALWAYS_NEW

        workdir = data.get("dir")
        if workdir is not None and (not isinstance(workdir, str) or not workdir):
            problems.append(f"{prefix}: dir must be a non-empty string")
            workdir = None

        args = _string_list(data.get("args", []), f"{prefix}: args", problems)
        urls = _string_list(data.get("urls", []), f"{prefix}: urls", problems)

        env = data.get("env", {})
        if not isinstance(env, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in env.items()
        ):
            problems.append(f"{prefix}: env must map strings to strings")
            env = {}

        if problems:
            raise ValidationError(problems)

        return cls(
            id=resource_id,
            kind=kind,
            command=command.strip(),
            placement=placement,
            reuse=reuse,
            dir=workdir,
            args=tuple(args),
            urls=tuple(urls),
            env=tuple(sorted(env.items())),
        )


def _string_list(raw: Any, label: str, problems: list[str]) -> list[str]:
    if not isinstance(raw, (list, tuple)) or not all(isinstance(x, str) for x in raw):
        problems.append(f"{label} must be a list of strings")
        return []
    return list(raw)


@dataclass(slots=True, frozen=True)
class Project:
    name: str
    resources: tuple[ResourceSpec, ...]
    start_hook: str | None = None
    stop_hook: str | None = None
    layouts: Mapping[str, Mapping[str, Placement]] = field(default_factory=dict)

    def resource(self, resource_id: str) -> ResourceSpec | None:
        for spec in self.resources:
            if spec.id == resource_id:
                return spec
        return None

    def placements(self, layout: str | None = None) -> dict[str, Placement]:
        """Placement per resource id, with *layout* overrides applied."""
        result = {spec.id: spec.placement for spec in self.resources}
        if layout is not None:
            if layout not in self.layouts:
                known = ", ".join(sorted(self.layouts)) or "none"
                raise ValidationError(f"unknown layout '{layout}' (known: {known})")
            result.update(self.layouts[layout])
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "Project":
        """Validate a raw project document (closed schema)."""
        if not isinstance(data, Mapping):
            raise ValidationError("project must be an object")

        problems: list[str] = []
        unknown = set(data) - _PROJECT_KEYS
        if unknown:
            problems.append(f"unknown project keys: {', '.join(sorted(unknown))}")

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            problems.append("name field is required and must be a non-empty string")
            name = ""
        elif "/" in name or name.startswith("."):
            problems.append(f"invalid project name '{name}'")

        resources: list[ResourceSpec] = []
        raw_resources = data.get("resources")
        for resource_id, raw in _iter_resources(raw_resources, problems):
            try:
                resources.append(ResourceSpec.from_dict(resource_id, raw))
            except ValidationError as exc:
                problems.extend(exc.problems)

        seen: set[str] = set()
        for spec in resources:
            if spec.id in seen:
                problems.append(f"duplicate resource id '{spec.id}'")
            seen.add(spec.id)

        hooks = data.get("hooks") or {}
        if not isinstance(hooks, Mapping):
            problems.append("hooks must be an object")
            hooks = {}
        for hook_name, command in hooks.items():
            if hook_name not in _HOOK_NAMES:
                problems.append(f"unknown hook type: {hook_name} (valid: start, stop)")
            elif not isinstance(command, str) or not command.strip():
                problems.append(f"hooks.{hook_name} must be a non-empty string")

        layouts = _parse_layouts(data.get("layouts"), seen, problems)

        if problems:
            raise ValidationError(problems)

        return cls(
            name=name,
            resources=tuple(resources),
            start_hook=hooks.get("start"),
            stop_hook=hooks.get("stop"),
            layouts=layouts,
        )


def _iter_resources(raw: Any, problems: list[str]):
    if raw is None:
        problems.append("resources field is required")
        return
    if isinstance(raw, Mapping):
        items = list(raw.items())
    elif isinstance(raw, list):
        items = []
        for position, entry in enumerate(raw, start=1):
            if not isinstance(entry, Mapping) or not isinstance(entry.get("id"), str):
                problems.append(f"resource #{position}: 'id' field is required")
                continue
            items.append((entry["id"], entry))
        if raw and not items:
            return
    else:
        problems.append("resources must be a list or an object")
        return
    if not items:
        problems.append("at least one resource is required")
    for resource_id, entry in items:
        if isinstance(entry, Mapping) and "id" in entry and entry["id"] != resource_id:
            problems.append(f"resource '{resource_id}': id does not match its key")
            continue
        yield resource_id, entry


def _parse_layouts(
    raw: Any, resource_ids: set[str], problems: list[str]
) -> dict[str, dict[str, Placement]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping) or not raw:
        problems.append("layouts must be a non-empty object when present")
        return {}
    layouts: dict[str, dict[str, Placement]] = {}
    for layout_name, mapping in raw.items():
        if not isinstance(layout_name, str) or not layout_name:
            problems.append("layout name must be a non-empty string")
            continue
        if not isinstance(mapping, Mapping):
            problems.append(f"layout '{layout_name}' must be an object")
            continue
        parsed: dict[str, Placement] = {}
        for resource_id, tag in mapping.items():
            if resource_id not in resource_ids:
                problems.append(f"layout '{layout_name}': unknown resource '{resource_id}'")
                continue
            try:
                parsed[resource_id] = parse_tag_spec(tag)
            except ValueError as exc:
                problems.append(f"layout '{layout_name}': resource '{resource_id}': {exc}")
        layouts[layout_name] = parsed
    return layouts
