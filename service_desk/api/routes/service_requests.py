from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from service_desk.dependencies.auth import CurrentUser
from service_desk.dependencies.service_requests import ServiceRequestServiceDep
from service_desk.lifecycle.errors import PayloadValidationError, ServiceRequestError
from service_desk.lifecycle.models import (
    AuditAction,
    AuditEntry,
    LifecycleAction,
    Priority,
    RequestStatus,
    ServiceRequest,
    ServiceRequestFilters,
)
from service_desk.lifecycle.service import ServiceRequestService

router = APIRouter(prefix="/service-requests", tags=["service-requests"])

ERROR_STATUS_CODES: dict[str, int] = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_STATE_TRANSITION": status.HTTP_409_CONFLICT,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ServiceRequestResponse(BaseModel):
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
    requested_for: str | None
    assigned_trade_id: int | None
    assigned_technician_id: str | None
    response_due_at: datetime | None
    resolve_due_at: datetime | None
    created_at: datetime
    updated_at: datetime
    is_response_overdue: bool
    is_resolve_overdue: bool


class ServiceRequestListResponse(BaseModel):
    items: list[ServiceRequestResponse]
    total: int
    page: int
    page_size: int


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    request_id: str
    actor: str
    action: AuditAction
    from_status: RequestStatus | None
    to_status: RequestStatus | None
    metadata: dict[str, Any]
    created_at: datetime


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except ServiceRequestError as exc:
        status_code = ERROR_STATUS_CODES.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=status_code, detail=exc.to_dict()) from exc


def _to_response(service: ServiceRequestService, request: ServiceRequest) -> ServiceRequestResponse:
    flags = service.get_overdue_flags(request)
    return ServiceRequestResponse(
        **asdict(request),
        is_response_overdue=flags.is_response_overdue,
        is_resolve_overdue=flags.is_resolve_overdue,
    )


def _to_audit_response(entry: AuditEntry) -> AuditEntryResponse:
    return AuditEntryResponse.model_validate(entry)


@router.post("", response_model=ServiceRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_service_request(
    service: ServiceRequestServiceDep,
    user: CurrentUser,
    payload: dict[str, Any] = Body(...),
) -> ServiceRequestResponse:
    with _translate_errors():
        request = await service.create_draft(payload, user.username)
    return _to_response(service, request)


@router.get("", response_model=ServiceRequestListResponse)
async def list_service_requests(
    service: ServiceRequestServiceDep,
    _: CurrentUser,
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    priority: Priority | None = Query(default=None),
    site_id: int | None = Query(default=None),
    building_id: int | None = Query(default=None),
    sr_number: str | None = Query(default=None),
    keyword: str | None = Query(default=None),
    created_from: datetime | None = Query(default=None),
    created_to: datetime | None = Query(default=None),
    page: int = Query(default=1),
    page_size: int | None = Query(default=None),
) -> ServiceRequestListResponse:
    filters = ServiceRequestFilters(
        status=status_filter,
        priority=priority,
        site_id=site_id,
        building_id=building_id,
        sr_number=sr_number,
        keyword=keyword,
        created_from=created_from,
        created_to=created_to,
    )
    with _translate_errors():
        result = await service.list_requests(filters, page=page, page_size=page_size)
    return ServiceRequestListResponse(
        items=[_to_response(service, item) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/{request_id}", response_model=ServiceRequestResponse)
async def get_service_request(
    request_id: str, service: ServiceRequestServiceDep, _: CurrentUser
) -> ServiceRequestResponse:
    with _translate_errors():
        request = await service.get_request(request_id)
    return _to_response(service, request)


@router.patch("/{request_id}", response_model=ServiceRequestResponse)
async def update_service_request(
    request_id: str,
    service: ServiceRequestServiceDep,
    user: CurrentUser,
    payload: dict[str, Any] = Body(...),
) -> ServiceRequestResponse:
    with _translate_errors():
        request = await service.update_draft(request_id, payload, user.as_caller())
    return _to_response(service, request)


@router.post("/{request_id}/{action}", response_model=ServiceRequestResponse)
async def apply_service_request_action(
    request_id: str,
    action: str,
    service: ServiceRequestServiceDep,
    user: CurrentUser,
    payload: dict[str, Any] | None = Body(default=None),
) -> ServiceRequestResponse:
    with _translate_errors():
        if action == LifecycleAction.UPDATE.value:
            raise PayloadValidationError(
                "Drafts are updated with PATCH",
                errors=[{"field": "action", "message": "Use PATCH to update a draft", "type": "value_error"}],
            )
        request = await service.transition(request_id, action, user.as_caller(), payload)
    return _to_response(service, request)


@router.get("/{request_id}/audit", response_model=list[AuditEntryResponse])
async def get_service_request_audit(
    request_id: str, service: ServiceRequestServiceDep, _: CurrentUser
) -> list[AuditEntryResponse]:
    with _translate_errors():
        entries = await service.list_audit(request_id)
    return [_to_audit_response(entry) for entry in entries]
