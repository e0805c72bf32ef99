"""Exceptions raised by the indexing tracker."""

from __future__ import annotations

from typing import Optional

LAUNCH_FALLBACK_ERROR = "Indexing failed to start"


class BackendRequestError(RuntimeError):
    """A backend call answered with a non-2xx status or could not be read."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StatusParseError(ValueError):
    """A status payload was not an object or carried an unknown status string."""


class LaunchError(RuntimeError):
    """The blocking start call was rejected; the message is what the caller sees."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StateStoreError(RuntimeError):
    pass


class InvalidTransitionError(RuntimeError):
    """Attempted to move an IndexingState out of a terminal status."""


class TrackerBusyError(RuntimeError):
    """A job for this project_id is still being tracked."""

    def __init__(self, project_id: str):
        super().__init__(f"indexing already in progress for project {project_id!r}")
        self.project_id = project_id
