"""
Error taxonomy for the dispatch engine.

Every business error carries a client-safe message and an HTTP-like status
code so the request boundary can turn it into a structured response without
leaking internals. Only StoreUnavailable and SequenceUnavailable are fatal to
a request; everything else is a recoverable business outcome.
"""

from typing import Any, Optional


class FreightDispatchError(Exception):
    """Base class for all errors raised by the engine."""

    status_code: int = 500
    default_message: str = "Server error"

    def __init__(self, message: Optional[str] = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Client-facing representation (no stack, no internal ids)."""
        payload: dict[str, Any] = {"message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(FreightDispatchError):
    """Malformed input: missing GeoPoint fields, bad coordinates, negative sizes."""

    status_code = 400
    default_message = "Invalid input data"

    def __init__(self, message: Optional[str] = None, errors: Optional[list[Any]] = None) -> None:
        super().__init__(message, **({"errors": errors} if errors else {}))
        self.errors = errors or []


class InvalidSearch(FreightDispatchError):
    """A numeric search field received a non-numeric value."""

    status_code = 400

    def __init__(self, field: str, value: str) -> None:
        super().__init__(f"Invalid number provided for field {field}")
        self.field = field
        self.value = value


class InvalidTransition(FreightDispatchError):
    """Requested status change is not in the transition table."""

    status_code = 400

    def __init__(self, current: Any, target: Any) -> None:
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Invalid status transition from {current_value} to {target_value}",
            current=current_value,
            target=target_value,
        )
        self.current = current
        self.target = target


class IdentifierConflict(FreightDispatchError):
    """An explicitly supplied business identifier is already taken."""

    status_code = 409

    def __init__(self, sequence: str, value: int, suggested: int) -> None:
        super().__init__(
            f"The provided {sequence} is already in use. Suggested {sequence}: {suggested}",
            sequence=sequence,
            suggested=suggested,
        )
        self.sequence = sequence
        self.value = value
        self.suggested = suggested


class NotFound(FreightDispatchError):
    """Referenced dispatch, load or truck does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[str] = None) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class StoreUnavailable(FreightDispatchError):
    """The backing store cannot be reached."""

    status_code = 503
    default_message = "Service unavailable"


class SequenceUnavailable(StoreUnavailable):
    """The atomic counter primitive failed or is not supported by the store."""


class DuplicateIdentifier(Exception):
    """
    Raised by stores when a unique identifier index rejects a write.

    Internal only: the service layer converts it to IdentifierConflict with a
    suggested value.
    """

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(f"duplicate {field}: {value}")
        self.field = field
        self.value = value
