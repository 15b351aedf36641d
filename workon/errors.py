"""
workon.errors
-------------

Exception hierarchy and failure classification.

Error handling contract
~~~~~~~~~~~~~~~~~~~~~~~
" Per-resource failures (``SpawnFailure``, ``AttachTimeout``,
  ``TeardownFailure``) are caught by the orchestrator and reported in the
  summary; they never abort sibling resources.
" ``HookFailure`` and ``StoreCorruption`` degrade to warnings.
" ``ValidationError``, ``StoreWriteFailure`` and the lifecycle rejections
  fail the whole operation.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class WorkonError(Exception):
    """Base exception for workon."""


class ValidationError(WorkonError):
    """Malformed project declaration; rejects the project before any spawn."""

    def __init__(self, problems: Iterable[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems: list[str] = list(problems)
        super().__init__("; ".join(self.problems) or "invalid project")


class ResourceError(WorkonError):
    """Failure scoped to a single resource."""

    def __init__(self, resource_id: str, reason: str):
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(f"{resource_id}: {reason}")


class SpawnFailure(ResourceError):
    """Command not executable or spawn refused by the host."""


class AttachTimeout(ResourceError):
    """Spawned entity never appeared within the wait window."""


class TeardownFailure(ResourceError):
    """Resource survived every termination attempt."""


class HookFailure(WorkonError):
    """Project hook exited non-zero, timed out or could not be launched."""

    def __init__(self, hook: str, reason: str):
        self.hook = hook
        self.reason = reason
        super().__init__(f"hooks.{hook}: {reason}")


class StoreCorruption(WorkonError):
    """A persisted project document could not be read."""


class StoreWriteFailure(WorkonError):
    """A commit could not be persisted; the previous state is untouched."""


class HostError(WorkonError):
    """The window-manager host refused or failed an operation."""


class ProjectStateError(WorkonError):
    """Operation not allowed in the project's current lifecycle state."""

    def __init__(self, project_name: str, message: str):
        self.project_name = project_name
        super().__init__(message)


class AlreadyRunning(ProjectStateError):
    def __init__(self, project_name: str):
        super().__init__(project_name, f"Project '{project_name}' is already running")


class NotRunning(ProjectStateError):
    def __init__(self, project_name: str):
        super().__init__(project_name, f"Project '{project_name}' is not running")


class ProjectBusy(ProjectStateError):
    def __init__(self, project_name: str):
        super().__init__(
            project_name,
            f"Project '{project_name}' is locked by another workon command",
        )


class ProjectNotFound(WorkonError):
    """No project file for the requested name."""


# --------------------------------------------------------------------------- #
# Classification                                                              #
# --------------------------------------------------------------------------- #


class ErrorType(str, Enum):
    COMMAND_NOT_FOUND = "COMMAND_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_COMMAND = "INVALID_COMMAND"
    TIMEOUT = "TIMEOUT"
    HOST_REFUSED = "HOST_REFUSED"
    UNKNOWN = "UNKNOWN"


def classify_error(message: str | None) -> tuple[ErrorType, str]:
    """Map a raw failure message to an ``ErrorType`` and a user message."""
    if not message or not message.strip():
        return ErrorType.INVALID_COMMAND, "Empty or invalid command"

    lowered = message.lower()
    if "no such file or directory" in lowered or "not found" in lowered:
        return ErrorType.COMMAND_NOT_FOUND, "Command not found in PATH"
    if "permission denied" in lowered or "not executable" in lowered:
        return ErrorType.PERMISSION_DENIED, "Insufficient permissions to execute"
    if "no command" in lowered or "empty command" in lowered:
        return ErrorType.INVALID_COMMAND, "Empty or invalid command"
    if "timeout" in lowered or "timed out" in lowered:
        return ErrorType.TIMEOUT, "Operation timed out"
    if "refused" in lowered or "host" in lowered:
        return ErrorType.HOST_REFUSED, "Window manager refused the request"
    return ErrorType.UNKNOWN, f"Unclassified error: {message}"


def suggestions_for(error_type: ErrorType, command: str | None = None) -> list[str]:
    """Actionable hints shown next to a failed resource."""
    app = command.split()[0] if command and command.split() else "application"
    if error_type is ErrorType.COMMAND_NOT_FOUND:
        return [
            f"Check if '{app}' is installed",
            "Verify the command name is spelled correctly",
            "Add the application's directory to your PATH",
        ]
    if error_type is ErrorType.PERMISSION_DENIED:
        return [
            "Check file permissions for the executable",
            "Ensure you have execute permissions",
        ]
    if error_type is ErrorType.INVALID_COMMAND:
        return ["Provide a valid command to execute", "Check command syntax"]
    if error_type is ErrorType.TIMEOUT:
        return [
            "The application may be slow to start; raise WORKON_SPAWN_TIMEOUT",
            "Check whether the application opens a window at all",
        ]
    if error_type is ErrorType.HOST_REFUSED:
        return ["Check that the window manager is running and reachable"]
    return ["Re-run with --verbose for details"]
