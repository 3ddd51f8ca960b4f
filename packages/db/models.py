"""SQLModel table definitions for the service desk data layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class ServiceRequestTable(SQLModel, table=True):
    """Facility maintenance service requests tracked through the lifecycle."""

    __tablename__ = "service_requests"

    id: str = Field(primary_key=True, index=True)
    sr_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    site_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    building_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    floor_id: int = Field(sa_column=Column(Integer, nullable=False))
    room_id: int = Field(sa_column=Column(Integer, nullable=False))
    problem_type_id: int = Field(sa_column=Column(Integer, nullable=False))
    priority: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    requested_by: str = Field(sa_column=Column(String(255), nullable=False))
    requested_for: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    assigned_trade_id: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    assigned_technician_id: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    response_due_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    resolve_due_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ServiceRequestAuditTable(SQLModel, table=True):
    """Append-only audit trail; the autoincrement id doubles as the creation order."""

    __tablename__ = "service_request_audit_logs"

    id: int | None = Field(default=None, primary_key=True)
    request_id: str = Field(
        sa_column=Column(String(36), ForeignKey("service_requests.id"), nullable=False, index=True)
    )
    actor: str = Field(sa_column=Column(String(255), nullable=False))
    action: str = Field(sa_column=Column(String(50), nullable=False))
    from_status: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    to_status: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
