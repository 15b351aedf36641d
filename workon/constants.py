"""
workon.constants
----------------

Centralised constants shared across the workon code-base.
"""

from enum import Enum
from pathlib import Path
from typing import Final
import os

# --------------------------------------------------------------------------- #
# Paths
# --------------------------------------------------------------------------- #

# Directory holding one JSON document (+ lock files) per tracked project
# (override with $WORKON_STATE_DIR).
STATE_DIR: Final[Path] = Path(
    os.environ.get(
        "WORKON_STATE_DIR",
        Path.home() / ".local/state/workon",
    )
)

# Directory searched for ``<name>.json`` project files.
PROJECTS_DIR: Final[Path] = Path(
    os.environ.get(
        "WORKON_PROJECTS_DIR",
        Path.home() / ".config/workon/projects",
    )
)

# Version written into every persisted project document.
STATE_SCHEMA: Final[int] = 1

# --------------------------------------------------------------------------- #
# Tags
# --------------------------------------------------------------------------- #

MIN_TAG: Final[int] = 1
MAX_TAG: Final[int] = 9  # overflow clamps here, never wraps

# --------------------------------------------------------------------------- #
# Timeouts (seconds)
# --------------------------------------------------------------------------- #

SPAWN_TIMEOUT: Final[float] = float(os.environ.get("WORKON_SPAWN_TIMEOUT", "5"))
POLL_INTERVAL: Final[float] = float(os.environ.get("WORKON_POLL_INTERVAL", "0.25"))
GRACE_PERIOD: Final[float] = float(os.environ.get("WORKON_GRACE_PERIOD", "3"))
HOOK_TIMEOUT: Final[float] = float(os.environ.get("WORKON_HOOK_TIMEOUT", "30"))

# --------------------------------------------------------------------------- #
# Host selection
# --------------------------------------------------------------------------- #

# "awesome" talks to a running awesome session, "memory" simulates one.
HOST_BACKEND: Final[str] = os.environ.get("WORKON_HOST", "awesome")

AWESOME_CLIENT: Final[str] = os.environ.get("WORKON_AWESOME_CLIENT", "awesome-client")

# --------------------------------------------------------------------------- #
# Correlation / ownership
# --------------------------------------------------------------------------- #

# Environment injected into every spawned process.
ENV_PROJECT: Final[str] = "WORKON_PROJECT"
ENV_RESOURCE_ID: Final[str] = "WORKON_RESOURCE_ID"
ENV_TOKEN: Final[str] = "WORKON_TOKEN"

# Durable properties written on the host entity once it is attached.
PROP_PROJECT: Final[str] = "workon_project"
PROP_RESOURCE_ID: Final[str] = "workon_resource_id"
PROP_TOKEN: Final[str] = "workon_token"
PROP_KIND: Final[str] = "workon_kind"

OWNERSHIP_PROPERTIES: Final[tuple[str, ...]] = (
    PROP_PROJECT,
    PROP_RESOURCE_ID,
    PROP_TOKEN,
    PROP_KIND,
)


class ResourceKind(str, Enum):
    """Kinds of resource a project may declare."""

    EDITOR = "editor"
    TERMINAL = "terminal"
    BROWSER = "browser"
    APP = "app"
    CUSTOM = "custom"


# Kinds that get SIGINT instead of SIGTERM on stop.
INTERACTIVE_KINDS: Final[frozenset[ResourceKind]] = frozenset({ResourceKind.TERMINAL})


class ResourceStatus(str, Enum):
    PENDING = "pending"
    LIVE = "live"
    STOPPED = "stopped"
    ORPHANED = "orphaned"


class ProjectStatus(str, Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class NoticeKind(str, Enum):
    """Warning categories surfaced in operation summaries."""

    PLACEMENT_OVERFLOW = "placement-overflow"
    HOOK_FAILURE = "hook-failure"
    STORE_CORRUPTION = "store-corruption"
    ORPHANED = "orphaned"
    FORCE_KILL = "force-kill"
    TAG = "tag"
    CANCELLED = "cancelled"
