"""Error taxonomy for the metric store.

Routers map these to HTTP responses. ``transient`` tells callers whether a
failed operation is worth rescheduling.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure."""

    field: str
    constraint: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "constraint": self.constraint, "message": self.message}


class MetricStoreError(Exception):
    """Base exception for all metric store errors."""

    transient: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(MetricStoreError):
    """Raised when input is malformed. Carries every failing field, not just the first."""

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        fields = ", ".join(e.field for e in self.errors) or "input"
        super().__init__(
            f"Validation failed for: {fields}",
            {"errors": [e.to_dict() for e in self.errors]},
        )

    @classmethod
    def single(cls, field: str, constraint: str, message: str) -> "ValidationError":
        return cls([FieldError(field, constraint, message)])


class NotFoundError(MetricStoreError):
    """Raised when a snapshot or definition does not exist."""

    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            f"{resource} {identifier} not found",
            {"resource": resource, "id": identifier},
        )


class DuplicateDefinitionError(MetricStoreError):
    """Raised when creating a definition whose code is already taken."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"A metric definition with code '{code}' already exists", {"code": code})


class ConflictError(MetricStoreError):
    """A concurrent write for the same snapshot key won the race.

    Internal to the store: converted into a supersession retry.
    """

    transient = True


class StoreUnavailableError(MetricStoreError):
    """The persistence layer timed out, was unreachable, or kept conflicting."""

    transient = True
