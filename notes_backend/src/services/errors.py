"""Exception taxonomy shared by the organizer services."""

from __future__ import annotations

from typing import Any, Dict, Optional


class OrganizerError(Exception):
    """Base class for organizer failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ChunkValidationError(OrganizerError):
    """Raised when a routed chunk is malformed."""


class RoutingFailure(OrganizerError):
    """Raised when every model profile failed and no default route exists."""


class PathResolutionError(OrganizerError):
    """Raised when a destination path cannot be materialized."""


class MergeFailure(OrganizerError):
    """Raised inside the merge engine; recovered by appending."""


class PersistenceError(OrganizerError):
    """Raised when the entity datastore rejects a write."""


class EntityExistsError(PersistenceError):
    """Raised when an insert collides with a live sibling of the same name."""


class EntityNotFoundError(OrganizerError):
    """Raised when an entity is missing or not owned by the caller."""


class RevertError(OrganizerError):
    """Raised when a history item cannot be reverted."""


class CompletionError(OrganizerError):
    """Raised when the completion service call fails."""


class CompletionParseError(CompletionError):
    """Raised when a completion response is not the expected JSON."""


class InvalidStateTransition(OrganizerError):
    """Raised when the cache manager is driven out of order."""


__all__ = [
    "OrganizerError",
    "ChunkValidationError",
    "RoutingFailure",
    "PathResolutionError",
    "MergeFailure",
    "PersistenceError",
    "EntityExistsError",
    "EntityNotFoundError",
    "RevertError",
    "CompletionError",
    "CompletionParseError",
    "InvalidStateTransition",
]
