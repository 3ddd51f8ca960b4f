from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, Union

from opentelemetry import trace
from pydantic import BaseModel

from service_desk.metrics import MetricsRegistry, register_default_metrics
from service_desk.metrics import definitions as metric_names
from service_desk.metrics.instruments import timed

from .authorizer import TransitionAuthorizer
from .errors import (
    ConcurrencyConflictError,
    PayloadValidationError,
    ServiceRequestError,
    ServiceRequestNotFoundError,
)
from .models import (
    AuditAction,
    AuditEntry,
    CallerContext,
    LifecycleAction,
    OverdueFlags,
    ServiceRequest,
    ServiceRequestFilters,
    ServiceRequestPage,
)
from .payloads import AssignPayload, ServiceRequestDraft, ServiceRequestPatch, TransitionPayload, parse_payload
from .sequence import SequenceGenerator
from .sla import SlaCalculator, as_utc
from .state import ServiceRequestStateMachine, Transition
from .stores import LifecycleRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Payload = Optional[Union[BaseModel, Mapping[str, Any]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceRequestService:
    """Orchestrates the service request lifecycle.

    Every action runs the same checks in a fixed order: existence, authorization, state,
    payload. The ticket update and its audit entry are committed together through a
    compare-and-swap on the status observed at load time; a lost race reloads and re-runs
    the checks up to ``max_conflict_retries`` times.
    """

    def __init__(
        self,
        repository: LifecycleRepository,
        *,
        state_machine: ServiceRequestStateMachine | None = None,
        authorizer: TransitionAuthorizer | None = None,
        sla: SlaCalculator | None = None,
        sequence: SequenceGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
        max_conflict_retries: int = 2,
        default_page_size: int = 20,
        max_page_size: int = 100,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        if max_conflict_retries < 0:
            raise ValueError("max_conflict_retries must not be negative")
        if not 1 <= default_page_size <= max_page_size:
            raise ValueError("page size bounds must satisfy 1 <= default <= max")
        self._repository = repository
        self._state_machine = state_machine or ServiceRequestStateMachine()
        self._authorizer = authorizer or TransitionAuthorizer()
        self._sla = sla or SlaCalculator()
        self._sequence = sequence or SequenceGenerator()
        self._clock = clock or _utcnow
        self._max_conflict_retries = max_conflict_retries
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._metrics = register_default_metrics(metrics)

    def _now(self) -> datetime:
        return as_utc(self._clock())

    async def create_draft(self, fields: Payload, requester_id: str) -> ServiceRequest:
        with self._observe("create"):
            draft = parse_payload(ServiceRequestDraft, fields)
            now = self._now()
            status = self._state_machine.initial_state()
            request = ServiceRequest(
                id=str(uuid.uuid4()),
                sr_number="",
                title=draft.title,
                description=draft.description,
                site_id=draft.site_id,
                building_id=draft.building_id,
                floor_id=draft.floor_id,
                room_id=draft.room_id,
                problem_type_id=draft.problem_type_id,
                priority=draft.priority,
                status=status,
                requested_by=requester_id,
                requested_for=draft.requested_for,
                created_at=now,
                updated_at=now,
            )
            audit = AuditEntry(
                request_id=request.id,
                actor=requester_id,
                action=AuditAction.CREATED,
                from_status=None,
                to_status=status,
                created_at=now,
            )
            created = await self._repository.create(request, audit, period=self._sequence.period_for(now))
            self._metrics.counter(metric_names.REQUESTS_CREATED).inc()
            logger.info("Created service request %s (%s) for %s", created.sr_number, created.id, requester_id)
            return created

    async def get_request(self, request_id: str) -> ServiceRequest:
        request = await self._repository.get(request_id)
        if request is None:
            raise ServiceRequestNotFoundError(request_id)
        return request

    async def list_requests(
        self,
        filters: ServiceRequestFilters | None = None,
        *,
        page: int = 1,
        page_size: int | None = None,
    ) -> ServiceRequestPage:
        page_size = self._default_page_size if page_size is None else page_size
        errors = []
        if page < 1:
            errors.append({"field": "page", "message": "page must be at least 1", "type": "value_error"})
        if not 1 <= page_size <= self._max_page_size:
            errors.append(
                {
                    "field": "page_size",
                    "message": f"page_size must be between 1 and {self._max_page_size}",
                    "type": "value_error",
                }
            )
        if errors:
            raise PayloadValidationError("Invalid pagination", errors=errors)
        return await self._repository.list(filters or ServiceRequestFilters(), page=page, page_size=page_size)

    async def update_draft(self, request_id: str, patch: Payload, caller: CallerContext) -> ServiceRequest:
        return await self.transition(request_id, LifecycleAction.UPDATE, caller, patch)

    async def transition(
        self,
        request_id: str,
        action: LifecycleAction | str,
        caller: CallerContext,
        payload: Payload = None,
    ) -> ServiceRequest:
        action = self._coerce_action(action)
        with self._observe(action.value), tracer.start_as_current_span("service_request.transition") as span:
            span.set_attribute("service_request.id", request_id)
            span.set_attribute("service_request.action", action.value)
            attempt = 0
            while True:
                current = await self.get_request(request_id)
                self._authorizer.assert_allowed(action, caller, requester_id=current.requested_by)
                transition = self._state_machine.assert_can_apply(current.status, action)
                now = self._now()
                changes, metadata = self._plan(transition, current, payload, now)
                audit = AuditEntry(
                    request_id=request_id,
                    actor=caller.caller_id,
                    action=transition.audit_action,
                    from_status=current.status if transition.changes_status else None,
                    to_status=transition.target if transition.changes_status else None,
                    metadata=metadata,
                    created_at=now,
                )
                try:
                    updated = await self._repository.compare_and_update(
                        request_id,
                        expected_status=current.status,
                        changes=changes,
                        audit=audit,
                    )
                except ConcurrencyConflictError:
                    if attempt >= self._max_conflict_retries:
                        raise
                    attempt += 1
                    self._metrics.counter(metric_names.CONFLICT_RETRIES).inc(labels={"action": action.value})
                    logger.warning(
                        "Concurrent modification of service request %s during %s; retry %d/%d",
                        request_id,
                        action.value,
                        attempt,
                        self._max_conflict_retries,
                    )
                    continue

                span.set_attribute("service_request.status", updated.status.value)
                self._metrics.counter(metric_names.TRANSITIONS).inc(labels={"action": action.value})
                logger.info(
                    "Service request %s: %s by %s (%s -> %s)",
                    updated.sr_number,
                    action.value,
                    caller.caller_id,
                    current.status.value,
                    updated.status.value,
                )
                return updated

    def get_overdue_flags(self, request: ServiceRequest, now: datetime | None = None) -> OverdueFlags:
        return self._sla.overdue_flags(request, self._now() if now is None else now)

    async def list_audit(self, request_id: str) -> Sequence[AuditEntry]:
        await self.get_request(request_id)
        return await self._repository.list_by_request(request_id)

    def _plan(
        self,
        transition: Transition,
        current: ServiceRequest,
        payload: Payload,
        now: datetime,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return the column changes and audit metadata for an allowed transition."""

        action = transition.action
        if action is LifecycleAction.UPDATE:
            patch = parse_payload(ServiceRequestPatch, payload)
            return patch.changes(), patch.snapshot()

        changes: dict[str, Any] = {"status": transition.target}
        metadata: dict[str, Any] = {}
        if action is LifecycleAction.ASSIGN:
            assignment = parse_payload(AssignPayload, payload)
            changes["assigned_trade_id"] = assignment.assigned_trade_id
            changes["assigned_technician_id"] = assignment.assigned_technician_id
            metadata.update(assignment.model_dump(mode="json", exclude_none=True))
        else:
            note = parse_payload(TransitionPayload, payload).note
            if note:
                metadata["note"] = note

        if action is LifecycleAction.SUBMIT:
            # deadlines are fixed here once and never recomputed
            deadlines = self._sla.deadlines(current.priority, now)
            changes["response_due_at"] = deadlines.response_due_at
            changes["resolve_due_at"] = deadlines.resolve_due_at
            metadata["response_due_at"] = deadlines.response_due_at.isoformat()
            metadata["resolve_due_at"] = deadlines.resolve_due_at.isoformat()
        return changes, metadata

    @staticmethod
    def _coerce_action(action: LifecycleAction | str) -> LifecycleAction:
        try:
            return LifecycleAction(action)
        except ValueError:
            raise PayloadValidationError(
                f"Unknown lifecycle action {action!r}",
                errors=[{"field": "action", "message": "Unknown lifecycle action", "type": "enum"}],
            ) from None

    @contextmanager
    def _observe(self, action: str) -> Iterator[None]:
        duration = self._metrics.histogram(metric_names.TRANSITION_DURATION)
        try:
            with timed(duration, labels={"action": action}):
                yield
        except ServiceRequestError as exc:
            self._metrics.counter(metric_names.FAILURES).inc(labels={"code": exc.code})
            raise
