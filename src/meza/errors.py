"""Domain error taxonomy.

Validation and transition errors are raised synchronously to the caller and
mapped to HTTP responses by ``meza.middleware.error_handler``. Collaborator
errors (``ChargeError``, ``DispatchError``) are caught by the lifecycle engine
and reported as a degraded result instead of failing the transition.
"""

from __future__ import annotations


class MezaError(Exception):
    """Base class for all domain errors."""


class ValidationError(MezaError):
    """User-correctable bad input on a specific field."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class NotFound(MezaError):
    """Unknown id, or a row not owned by the caller."""

    def __init__(self, resource: str, resource_id: object) -> None:
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class InvalidTransition(MezaError):
    """A state or ownership precondition was violated."""

    def __init__(self, reason: str, current_status: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.current_status = current_status


class ArrivalOutOfRange(InvalidTransition):
    """Arrival was reported too far from the target."""

    def __init__(self, distance: float, radius: float) -> None:
        super().__init__(
            f"Location is {distance:.0f}m from target (arrival radius {radius:.0f}m)",
            current_status="active",
        )
        self.distance = distance
        self.radius = radius


class ChargeError(MezaError):
    """The payment collaborator could not charge the penalty."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class DispatchError(MezaError):
    """The notification collaborator could not record or deliver a notification."""
