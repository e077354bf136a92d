"""Engine error taxonomy.

Every rejection happens before the first write of the call that raised it.
"""

from __future__ import annotations


class ExplorerError(Exception):
    """Base class for engine errors."""


class ValidationError(ExplorerError, ValueError):
    """Malformed or missing input: identifiers, student lists, point bounds."""


class NotFoundError(ExplorerError, LookupError):
    """An identifier does not resolve to a stored entity."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class StateConflictError(ExplorerError):
    """The entity exists but its state forbids the requested operation."""


class PartialResolutionWarning(UserWarning):
    """A student id in a multi-student award did not resolve and was skipped."""


def require_id(value: str | None, field: str) -> str:
    """Return ``value`` stripped, raising ValidationError when empty."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()
