from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence


class RequestStatus(str, Enum):
    """Supported states of a service request's lifecycle."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    TRIAGED = "TRIAGED"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class LifecycleAction(str, Enum):
    """Named actions that drive the lifecycle."""

    UPDATE = "update"
    SUBMIT = "submit"
    TRIAGE = "triage"
    ASSIGN = "assign"
    START = "start"
    COMPLETE = "complete"
    CLOSE = "close"
    CANCEL = "cancel"


class Role(str, Enum):
    ADMIN = "ADMIN"
    SUPERVISOR = "SUPERVISOR"
    TECHNICIAN = "TECHNICIAN"
    REQUESTOR = "REQUESTOR"


class AuditAction(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNED = "ASSIGNED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True, slots=True)
class CallerContext:
    """Identity of the caller as supplied by the authentication collaborator."""

    caller_id: str
    roles: frozenset[Role] = frozenset()

    @classmethod
    def from_role_names(cls, caller_id: str, role_names: Iterable[str]) -> "CallerContext":
        roles: set[Role] = set()
        for name in role_names:
            try:
                roles.add(Role(str(name).strip().upper()))
            except ValueError:
                continue
        return cls(caller_id=caller_id, roles=frozenset(roles))

    def has_role(self, role: Role) -> bool:
        return role in self.roles


@dataclass(slots=True)
class ServiceRequest:
    """Aggregate representing a facility maintenance service request."""

    id: str
    sr_number: str
    title: str
    description: str
    site_id: int
    building_id: int
    floor_id: int
    room_id: int
    problem_type_id: int
    priority: Priority
    status: RequestStatus
    requested_by: str
    created_at: datetime
    updated_at: datetime
    requested_for: str | None = None
    assigned_trade_id: int | None = None
    assigned_technician_id: str | None = None
    response_due_at: datetime | None = None
    resolve_due_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """Immutable record of one action taken against a service request."""

    request_id: str
    actor: str
    action: AuditAction
    created_at: datetime
    from_status: RequestStatus | None = None
    to_status: RequestStatus | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    id: int | None = None


@dataclass(frozen=True, slots=True)
class OverdueFlags:
    is_response_overdue: bool
    is_resolve_overdue: bool


@dataclass(frozen=True, slots=True)
class ServiceRequestFilters:
    """Listing filters; every field is optional and they combine with AND."""

    status: RequestStatus | None = None
    priority: Priority | None = None
    site_id: int | None = None
    building_id: int | None = None
    sr_number: str | None = None
    keyword: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


@dataclass(slots=True)
class ServiceRequestPage:
    items: Sequence[ServiceRequest]
    total: int
    page: int
    page_size: int
