"""Persistence contracts required by the lifecycle engine."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from .models import AuditEntry, RequestStatus, ServiceRequest, ServiceRequestFilters, ServiceRequestPage


class ServiceRequestStore(Protocol):
    async def get(self, request_id: str) -> ServiceRequest | None:
        """Return the request or ``None`` when it does not exist."""

    async def create(self, request: ServiceRequest, audit: AuditEntry, *, period: str) -> ServiceRequest:
        """Insert ``request`` and its creation audit entry in one transaction.

        The store allocates ``sr_number`` for ``period`` atomically as part of the insert.
        """

    async def compare_and_update(
        self,
        request_id: str,
        *,
        expected_status: RequestStatus,
        changes: Mapping[str, Any],
        audit: AuditEntry,
    ) -> ServiceRequest:
        """Apply ``changes`` only if the stored status still equals ``expected_status``.

        The update and the audit append commit together. Raises
        ``ServiceRequestNotFoundError`` or ``ConcurrencyConflictError``.
        """

    async def list(self, filters: ServiceRequestFilters, *, page: int, page_size: int) -> ServiceRequestPage:
        ...


class AuditStore(Protocol):
    async def append(self, entry: AuditEntry) -> AuditEntry:
        ...

    async def list_by_request(self, request_id: str) -> Sequence[AuditEntry]:
        """Return entries for the request in creation order."""


class LifecycleRepository(ServiceRequestStore, AuditStore, Protocol):
    """A store able to commit request writes and audit appends atomically."""
