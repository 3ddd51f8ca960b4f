from __future__ import annotations

from typing import Any, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import PayloadValidationError
from .models import Priority

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class ServiceRequestDraft(BaseModel):
    """Fields accepted when a requester creates a draft."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    site_id: int = Field(..., gt=0)
    building_id: int = Field(..., gt=0)
    floor_id: int = Field(..., gt=0)
    room_id: int = Field(..., gt=0)
    problem_type_id: int = Field(..., gt=0)
    priority: Priority = Priority.MEDIUM
    requested_for: str | None = Field(default=None, min_length=1, max_length=255)


class ServiceRequestPatch(BaseModel):
    """Partial update of a draft; only explicitly provided fields are applied."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, min_length=1)
    site_id: int | None = Field(default=None, gt=0)
    building_id: int | None = Field(default=None, gt=0)
    floor_id: int | None = Field(default=None, gt=0)
    room_id: int | None = Field(default=None, gt=0)
    problem_type_id: int | None = Field(default=None, gt=0)
    priority: Priority | None = None
    requested_for: str | None = Field(default=None, min_length=1, max_length=255)

    @model_validator(mode="after")
    def _require_fields(self) -> "ServiceRequestPatch":
        if not self.model_fields_set:
            raise ValueError("No fields provided for update")
        for name in self.model_fields_set - {"requested_for"}:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)


class TransitionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    note: str | None = Field(default=None, max_length=500)


class AssignPayload(TransitionPayload):
    assigned_trade_id: int | None = Field(default=None, gt=0)
    assigned_technician_id: str | None = Field(default=None, min_length=1, max_length=255)

    @model_validator(mode="after")
    def _require_assignee(self) -> "AssignPayload":
        if self.assigned_trade_id is None and self.assigned_technician_id is None:
            raise ValueError("Either assigned_trade_id or assigned_technician_id must be provided")
        return self


def parse_payload(model: type[PayloadT], payload: BaseModel | Mapping[str, Any] | None) -> PayloadT:
    """Validate ``payload`` against ``model`` and translate failures into lifecycle errors."""

    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return model.model_validate(dict(payload or {}))
    except ValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]) or None,
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        raise PayloadValidationError(f"Invalid {model.__name__} payload", errors=errors) from exc
