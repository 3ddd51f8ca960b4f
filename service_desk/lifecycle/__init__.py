"""Service request lifecycle engine: workflow, authorization, SLA and numbering."""

from .authorizer import TransitionAuthorizer
from .errors import (
    ConcurrencyConflictError,
    ForbiddenActionError,
    InvalidStateTransitionError,
    PayloadValidationError,
    ServiceRequestError,
    ServiceRequestNotFoundError,
    ServiceRequestStoreError,
)
from .models import (
    AuditAction,
    AuditEntry,
    CallerContext,
    LifecycleAction,
    OverdueFlags,
    Priority,
    RequestStatus,
    Role,
    ServiceRequest,
    ServiceRequestFilters,
    ServiceRequestPage,
)
from .repository import ServiceRequestRepository
from .sequence import SequenceGenerator
from .service import ServiceRequestService
from .sla import SlaCalculator
from .state import ServiceRequestStateMachine

__all__ = [
    "AuditAction",
    "AuditEntry",
    "CallerContext",
    "ConcurrencyConflictError",
    "ForbiddenActionError",
    "InvalidStateTransitionError",
    "LifecycleAction",
    "OverdueFlags",
    "PayloadValidationError",
    "Priority",
    "RequestStatus",
    "Role",
    "SequenceGenerator",
    "ServiceRequest",
    "ServiceRequestError",
    "ServiceRequestFilters",
    "ServiceRequestNotFoundError",
    "ServiceRequestPage",
    "ServiceRequestRepository",
    "ServiceRequestService",
    "ServiceRequestStateMachine",
    "ServiceRequestStoreError",
    "SlaCalculator",
    "TransitionAuthorizer",
]
