from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping, Sequence

from sqlalchemy import func, or_, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import ServiceRequestAuditTable, ServiceRequestTable

from .errors import ConcurrencyConflictError, ServiceRequestNotFoundError, ServiceRequestStoreError
from .models import (
    AuditAction,
    AuditEntry,
    Priority,
    RequestStatus,
    ServiceRequest,
    ServiceRequestFilters,
    ServiceRequestPage,
)
from .sequence import SequenceGenerator

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "site_id",
        "building_id",
        "floor_id",
        "room_id",
        "problem_type_id",
        "priority",
        "status",
        "requested_for",
        "assigned_trade_id",
        "assigned_technician_id",
        "response_due_at",
        "resolve_due_at",
    }
)


class ServiceRequestRepository:
    """SQLModel backed store for service requests and their audit trail.

    Writes are serialized per period for number allocation: PostgreSQL takes a
    transaction-scoped advisory lock, other dialects share a process-wide writer lock.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        sequence: SequenceGenerator | None = None,
        max_allocation_attempts: int = 5,
    ) -> None:
        if max_allocation_attempts < 1:
            raise ValueError("max_allocation_attempts must be at least 1")
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine
        self._sequence = sequence or SequenceGenerator()
        self._max_allocation_attempts = max_allocation_attempts
        self._dialect = engine.dialect.name if engine is not None else None
        self._writer_lock = asyncio.Lock()

    @property
    def sequence(self) -> SequenceGenerator:
        return self._sequence

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def get(self, request_id: str) -> ServiceRequest | None:
        async with self._guard("get"):
            async with self._session_factory() as session:
                row = await session.get(ServiceRequestTable, request_id)
                if row is None:
                    return None
                return self._table_to_request(row)

    async def create(self, request: ServiceRequest, audit: AuditEntry, *, period: str) -> ServiceRequest:
        prefix = self._sequence.period_prefix(period)
        for attempt in range(1, self._max_allocation_attempts + 1):
            try:
                async with self._serialized_writes():
                    async with self._session_factory() as session:
                        async with session.begin():
                            await self._lock_period(session, prefix)
                            latest = await self._latest_identifier(session, prefix)
                            sr_number = self._sequence.next_identifier(period, latest)
                            row = self._request_to_table(request, sr_number)
                            session.add(row)
                            await session.flush()
                            session.add(self._audit_to_table(audit, request_id=row.id))
                            created = self._table_to_request(row)
                        return created
            except IntegrityError:
                logger.warning(
                    "Service request number collision for %s (attempt %d/%d)",
                    prefix,
                    attempt,
                    self._max_allocation_attempts,
                )
            except SQLAlchemyError as exc:
                logger.exception("Failed to create service request")
                raise ServiceRequestStoreError("Failed to create service request") from exc
        raise ServiceRequestStoreError(f"Could not allocate a service request number for {prefix}")

    async def compare_and_update(
        self,
        request_id: str,
        *,
        expected_status: RequestStatus,
        changes: Mapping[str, Any],
        audit: AuditEntry,
    ) -> ServiceRequest:
        values = self._changes_to_columns(changes)
        values["updated_at"] = audit.created_at
        async with self._guard("compare_and_update"):
            async with self._serialized_writes():
                async with self._session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            update(ServiceRequestTable)
                            .where(ServiceRequestTable.id == request_id)
                            .where(ServiceRequestTable.status == expected_status.value)
                            .values(**values)
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount != 1:
                            current = await session.get(ServiceRequestTable, request_id)
                            if current is None:
                                raise ServiceRequestNotFoundError(request_id)
                            raise ConcurrencyConflictError(
                                request_id,
                                expected=expected_status,
                                actual=RequestStatus(current.status),
                            )
                        session.add(self._audit_to_table(audit, request_id=request_id))
                        row = await session.get(ServiceRequestTable, request_id, populate_existing=True)
                        if row is None:
                            raise ServiceRequestNotFoundError(request_id)
                        updated = self._table_to_request(row)
                    return updated

    async def list(self, filters: ServiceRequestFilters, *, page: int, page_size: int) -> ServiceRequestPage:
        clauses = self._filter_clauses(filters)
        async with self._guard("list"):
            async with self._session_factory() as session:
                total = await session.scalar(select(func.count()).select_from(ServiceRequestTable).where(*clauses))
                result = await session.execute(
                    select(ServiceRequestTable)
                    .where(*clauses)
                    .order_by(ServiceRequestTable.created_at.desc(), ServiceRequestTable.sr_number.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                )
                items = [self._table_to_request(row) for row in result.scalars().all()]
        return ServiceRequestPage(items=items, total=int(total or 0), page=page, page_size=page_size)

    async def append(self, entry: AuditEntry) -> AuditEntry:
        async with self._guard("append"):
            async with self._serialized_writes():
                async with self._session_factory() as session:
                    async with session.begin():
                        if await session.get(ServiceRequestTable, entry.request_id) is None:
                            raise ServiceRequestNotFoundError(entry.request_id)
                        row = self._audit_to_table(entry, request_id=entry.request_id)
                        session.add(row)
                        await session.flush()
                        appended = self._table_to_audit(row)
                    return appended

    async def list_by_request(self, request_id: str) -> Sequence[AuditEntry]:
        async with self._guard("list_by_request"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ServiceRequestAuditTable)
                    .where(ServiceRequestAuditTable.request_id == request_id)
                    .order_by(ServiceRequestAuditTable.id.asc())
                )
                return [self._table_to_audit(row) for row in result.scalars().all()]

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception("Service request store operation %s failed", operation)
            raise ServiceRequestStoreError(f"Service request store operation {operation} failed") from exc

    def _serialized_writes(self):
        if self._dialect == "postgresql":
            return nullcontext()
        return self._writer_lock

    async def _lock_period(self, session: AsyncSession, prefix: str) -> None:
        if self._dialect == "postgresql":
            await session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": prefix})

    @staticmethod
    async def _latest_identifier(session: AsyncSession, prefix: str) -> str | None:
        column = ServiceRequestTable.sr_number
        return await session.scalar(
            select(column)
            .where(column.like(f"{prefix}-%"))
            .order_by(func.length(column).desc(), column.desc())
            .limit(1)
        )

    @staticmethod
    def _filter_clauses(filters: ServiceRequestFilters) -> list[Any]:
        clauses: list[Any] = []
        if filters.status is not None:
            clauses.append(ServiceRequestTable.status == filters.status.value)
        if filters.priority is not None:
            clauses.append(ServiceRequestTable.priority == filters.priority.value)
        if filters.site_id is not None:
            clauses.append(ServiceRequestTable.site_id == filters.site_id)
        if filters.building_id is not None:
            clauses.append(ServiceRequestTable.building_id == filters.building_id)
        if filters.sr_number:
            clauses.append(ServiceRequestTable.sr_number.ilike(f"%{filters.sr_number}%"))
        if filters.keyword:
            pattern = f"%{filters.keyword}%"
            clauses.append(
                or_(ServiceRequestTable.title.ilike(pattern), ServiceRequestTable.description.ilike(pattern))
            )
        if filters.created_from is not None:
            clauses.append(ServiceRequestTable.created_at >= _as_utc(filters.created_from))
        if filters.created_to is not None:
            clauses.append(ServiceRequestTable.created_at <= _as_utc(filters.created_to))
        return clauses

    @staticmethod
    def _changes_to_columns(changes: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported service request fields: {', '.join(sorted(unknown))}")
        values: dict[str, Any] = {}
        for name, value in changes.items():
            if isinstance(value, (RequestStatus, Priority)):
                value = value.value
            values[name] = value
        return values

    @staticmethod
    def _request_to_table(request: ServiceRequest, sr_number: str) -> ServiceRequestTable:
        return ServiceRequestTable(
            id=request.id,
            sr_number=sr_number,
            title=request.title,
            description=request.description,
            site_id=request.site_id,
            building_id=request.building_id,
            floor_id=request.floor_id,
            room_id=request.room_id,
            problem_type_id=request.problem_type_id,
            priority=request.priority.value,
            status=request.status.value,
            requested_by=request.requested_by,
            requested_for=request.requested_for,
            assigned_trade_id=request.assigned_trade_id,
            assigned_technician_id=request.assigned_technician_id,
            response_due_at=request.response_due_at,
            resolve_due_at=request.resolve_due_at,
            created_at=request.created_at,
            updated_at=request.updated_at,
        )

    @staticmethod
    def _audit_to_table(entry: AuditEntry, *, request_id: str) -> ServiceRequestAuditTable:
        return ServiceRequestAuditTable(
            request_id=request_id,
            actor=entry.actor,
            action=entry.action.value,
            from_status=entry.from_status.value if entry.from_status else None,
            to_status=entry.to_status.value if entry.to_status else None,
            metadata_=dict(entry.metadata),
            created_at=entry.created_at,
        )

    @staticmethod
    def _table_to_request(row: ServiceRequestTable) -> ServiceRequest:
        return ServiceRequest(
            id=row.id,
            sr_number=row.sr_number,
            title=row.title,
            description=row.description,
            site_id=row.site_id,
            building_id=row.building_id,
            floor_id=row.floor_id,
            room_id=row.room_id,
            problem_type_id=row.problem_type_id,
            priority=Priority(row.priority),
            status=RequestStatus(row.status),
            requested_by=row.requested_by,
            requested_for=row.requested_for,
            assigned_trade_id=row.assigned_trade_id,
            assigned_technician_id=row.assigned_technician_id,
            response_due_at=_optional_datetime(row.response_due_at),
            resolve_due_at=_optional_datetime(row.resolve_due_at),
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )

    @staticmethod
    def _table_to_audit(row: ServiceRequestAuditTable) -> AuditEntry:
        return AuditEntry(
            id=row.id,
            request_id=row.request_id,
            actor=row.actor,
            action=AuditAction(row.action),
            from_status=RequestStatus(row.from_status) if row.from_status else None,
            to_status=RequestStatus(row.to_status) if row.to_status else None,
            metadata=dict(row.metadata_ or {}),
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def _optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else _ensure_datetime(value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
