from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from service_desk.lifecycle.service import ServiceRequestService


async def get_service_request_service(request: Request) -> ServiceRequestService:
    service = getattr(request.app.state, "service_request_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service request service is not configured")
    return service


ServiceRequestServiceDep = Annotated[ServiceRequestService, Depends(get_service_request_service)]
