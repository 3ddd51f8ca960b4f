from typing import Any, Literal

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse

from service_desk.dependencies.auth import AdminUser
from service_desk.metrics import metrics_registry
from service_desk.metrics.exporters import render_prometheus

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", summary="In-process lifecycle metrics", response_model=None)
async def read_metrics(
    _: AdminUser,
    output: Literal["json", "prometheus"] = Query(default="json", alias="format"),
) -> dict[str, Any] | PlainTextResponse:
    if output == "prometheus":
        return PlainTextResponse(render_prometheus(metrics_registry))
    return metrics_registry.as_dict()
