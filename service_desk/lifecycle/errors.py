"""Typed failures raised by the service request lifecycle.

Each failure carries a stable machine-readable ``code``, a human-readable message and a
``details`` mapping so that callers can render feedback without parsing the message.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from .models import LifecycleAction, RequestStatus, Role


class ServiceRequestError(RuntimeError):
    """Base error for service request lifecycle issues."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class ServiceRequestNotFoundError(ServiceRequestError):
    """Raised when an operation targets a non-existent service request."""

    code = "NOT_FOUND"

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Service request {request_id} not found", details={"request_id": request_id})
        self.request_id = request_id


class InvalidStateTransitionError(ServiceRequestError):
    """Raised when an action is not valid from the request's current status."""

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, current: RequestStatus, action: LifecycleAction) -> None:
        super().__init__(
            f"Cannot {action.value} a service request with status {current.value}",
            details={"current_status": current.value, "action": action.value},
        )
        self.current = current
        self.action = action


class ForbiddenActionError(ServiceRequestError):
    """Raised when the caller lacks the role or relationship required for an action."""

    code = "FORBIDDEN"

    def __init__(
        self,
        action: LifecycleAction,
        *,
        required_roles: Iterable[Role],
        actual_roles: Iterable[Role],
        requester_allowed: bool = False,
    ) -> None:
        required = sorted(role.value for role in required_roles)
        actual = sorted(role.value for role in actual_roles)
        super().__init__(
            f"Insufficient permissions to {action.value} this service request",
            details={
                "action": action.value,
                "required": required,
                "actual": actual,
                "requester_allowed": requester_allowed,
            },
        )
        self.action = action
        self.required_roles = tuple(required)
        self.actual_roles = tuple(actual)


class PayloadValidationError(ServiceRequestError):
    """Raised when a payload is malformed or insufficient."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, errors: Iterable[Mapping[str, Any]] = ()) -> None:
        field_errors = [dict(error) for error in errors]
        super().__init__(message, details={"errors": field_errors})
        self.errors = field_errors


class ConcurrencyConflictError(ServiceRequestError):
    """Raised when an optimistic status check loses against a concurrent writer."""

    code = "CONFLICT"

    def __init__(self, request_id: str, *, expected: RequestStatus, actual: RequestStatus | None = None) -> None:
        details: dict[str, Any] = {"request_id": request_id, "expected_status": expected.value}
        if actual is not None:
            details["actual_status"] = actual.value
        super().__init__(f"Service request {request_id} was modified concurrently", details=details)
        self.request_id = request_id
        self.expected = expected
        self.actual = actual


class ServiceRequestStoreError(ServiceRequestError):
    """Raised when the persistence layer fails."""

    code = "INTERNAL_ERROR"
