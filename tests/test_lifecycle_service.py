from __future__ import annotations

import asyncio
from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from service_desk.lifecycle import (
    AuditAction,
    ConcurrencyConflictError,
    ForbiddenActionError,
    InvalidStateTransitionError,
    LifecycleAction,
    PayloadValidationError,
    Priority,
    RequestStatus,
    ServiceRequest,
    ServiceRequestFilters,
    ServiceRequestNotFoundError,
    ServiceRequestService,
)
from service_desk.metrics import MetricsRegistry
from service_desk.metrics import definitions as metric_names


async def _submitted(service, draft_fields, requester):
    created = await service.create_draft(draft_fields, requester.caller_id)
    return await service.transition(created.id, LifecycleAction.SUBMIT, requester)


@pytest.mark.asyncio
async def test_urgent_request_end_to_end(service, clock, draft_fields, requester, supervisor, technician):
    created = await service.create_draft({**draft_fields, "priority": "URGENT"}, requester.caller_id)
    assert created.status is RequestStatus.DRAFT
    assert created.sr_number == "SR-202610-00001"
    assert created.response_due_at is None

    submitted_at = clock.advance(minutes=15)
    submitted = await service.transition(created.id, LifecycleAction.SUBMIT, requester)
    assert submitted.status is RequestStatus.SUBMITTED
    assert submitted.response_due_at == submitted_at + timedelta(hours=2)
    assert submitted.resolve_due_at == submitted_at + timedelta(hours=24)

    clock.advance(minutes=10)
    triaged = await service.transition(created.id, "triage", supervisor, {"note": "Water near electrics"})
    assert triaged.status is RequestStatus.TRIAGED

    assigned = await service.transition(
        created.id, LifecycleAction.ASSIGN, supervisor, {"assigned_technician_id": technician.caller_id}
    )
    assert assigned.status is RequestStatus.ASSIGNED
    assert assigned.assigned_technician_id == "tech-1"
    assert assigned.assigned_trade_id is None

    started = await service.transition(created.id, LifecycleAction.START, technician)
    assert started.status is RequestStatus.IN_PROGRESS

    with pytest.raises(InvalidStateTransitionError):
        await service.transition(created.id, LifecycleAction.CLOSE, supervisor)

    # deadlines are fixed at submission
    assert started.response_due_at == submitted.response_due_at
    assert started.resolve_due_at == submitted.resolve_due_at

    trail = await service.list_audit(created.id)
    assert [entry.action for entry in trail] == [
        AuditAction.CREATED,
        AuditAction.STATUS_CHANGED,
        AuditAction.STATUS_CHANGED,
        AuditAction.ASSIGNED,
        AuditAction.STATUS_CHANGED,
    ]
    assert [(entry.from_status, entry.to_status) for entry in trail] == [
        (None, RequestStatus.DRAFT),
        (RequestStatus.DRAFT, RequestStatus.SUBMITTED),
        (RequestStatus.SUBMITTED, RequestStatus.TRIAGED),
        (RequestStatus.TRIAGED, RequestStatus.ASSIGNED),
        (RequestStatus.ASSIGNED, RequestStatus.IN_PROGRESS),
    ]
    assert trail[1].metadata["response_due_at"] == submitted.response_due_at.isoformat()
    assert trail[2].metadata == {"note": "Water near electrics"}
    assert trail[3].metadata == {"assigned_technician_id": "tech-1"}

    flags = service.get_overdue_flags(started, now=submitted_at + timedelta(hours=3))
    assert flags.is_response_overdue
    assert not flags.is_resolve_overdue


@pytest.mark.asyncio
async def test_full_lifecycle_reaches_closed(service, draft_fields, requester, supervisor, technician):
    submitted = await _submitted(service, draft_fields, requester)
    await service.transition(submitted.id, LifecycleAction.TRIAGE, supervisor)
    await service.transition(submitted.id, LifecycleAction.ASSIGN, supervisor, {"assigned_trade_id": 3})
    await service.transition(submitted.id, LifecycleAction.START, technician)
    await service.transition(submitted.id, LifecycleAction.COMPLETE, technician)
    closed = await service.transition(submitted.id, LifecycleAction.CLOSE, supervisor)

    assert closed.status is RequestStatus.CLOSED
    assert closed.assigned_trade_id == 3
    flags = service.get_overdue_flags(closed, now=closed.updated_at + timedelta(days=60))
    assert not flags.is_response_overdue
    assert not flags.is_resolve_overdue


@pytest.mark.asyncio
async def test_create_draft_validates_fields(service, draft_fields, requester):
    with pytest.raises(PayloadValidationError) as exc:
        await service.create_draft({**draft_fields, "title": "", "site_id": 0}, requester.caller_id)

    fields = {error["field"] for error in exc.value.details["errors"]}
    assert fields == {"title", "site_id"}


@pytest.mark.asyncio
async def test_create_draft_defaults_priority_to_medium(service, draft_fields, requester):
    fields = dict(draft_fields)
    fields.pop("priority")
    created = await service.create_draft(fields, requester.caller_id)
    assert created.priority is Priority.MEDIUM


@pytest.mark.asyncio
async def test_update_draft_records_patch_snapshot(service, draft_fields, requester):
    created = await service.create_draft(draft_fields, requester.caller_id)

    updated = await service.update_draft(created.id, {"title": "Tap leaking badly", "priority": "HIGH"}, requester)

    assert updated.title == "Tap leaking badly"
    assert updated.priority is Priority.HIGH
    assert updated.status is RequestStatus.DRAFT
    trail = await service.list_audit(created.id)
    assert trail[-1].action is AuditAction.UPDATED
    assert trail[-1].from_status is None and trail[-1].to_status is None
    assert trail[-1].metadata == {"title": "Tap leaking badly", "priority": "HIGH"}


@pytest.mark.asyncio
async def test_update_draft_rejects_empty_patch(service, draft_fields, requester):
    created = await service.create_draft(draft_fields, requester.caller_id)

    with pytest.raises(PayloadValidationError):
        await service.update_draft(created.id, {}, requester)


@pytest.mark.asyncio
async def test_forbidden_takes_precedence_over_invalid_state(
    service, draft_fields, requester, other_requester, technician
):
    submitted = await _submitted(service, draft_fields, requester)

    with pytest.raises(ForbiddenActionError):
        await service.update_draft(submitted.id, {"title": "Hijack"}, other_requester)
    with pytest.raises(ForbiddenActionError):
        await service.transition(submitted.id, LifecycleAction.TRIAGE, technician)
    with pytest.raises(InvalidStateTransitionError):
        await service.update_draft(submitted.id, {"title": "Too late"}, requester)


@pytest.mark.asyncio
async def test_state_is_checked_before_payload(service, draft_fields, requester, supervisor):
    created = await service.create_draft(draft_fields, requester.caller_id)

    with pytest.raises(InvalidStateTransitionError):
        await service.transition(created.id, LifecycleAction.ASSIGN, supervisor)

    await service.transition(created.id, LifecycleAction.SUBMIT, requester)
    await service.transition(created.id, LifecycleAction.TRIAGE, supervisor)
    with pytest.raises(PayloadValidationError):
        await service.transition(created.id, LifecycleAction.ASSIGN, supervisor)


@pytest.mark.asyncio
async def test_cancel_rules(service, draft_fields, requester, other_requester, supervisor, technician):
    draft = await service.create_draft(draft_fields, requester.caller_id)
    with pytest.raises(InvalidStateTransitionError):
        await service.transition(draft.id, LifecycleAction.CANCEL, requester)

    own = await _submitted(service, draft_fields, requester)
    with pytest.raises(ForbiddenActionError):
        await service.transition(own.id, LifecycleAction.CANCEL, other_requester)
    with pytest.raises(ForbiddenActionError):
        await service.transition(own.id, LifecycleAction.CANCEL, technician)
    cancelled = await service.transition(own.id, LifecycleAction.CANCEL, requester, {"note": "Fixed itself"})
    assert cancelled.status is RequestStatus.CANCELLED

    assigned = await _submitted(service, draft_fields, requester)
    await service.transition(assigned.id, LifecycleAction.TRIAGE, supervisor)
    await service.transition(assigned.id, LifecycleAction.ASSIGN, supervisor, {"assigned_trade_id": 1})
    by_supervisor = await service.transition(assigned.id, LifecycleAction.CANCEL, supervisor)
    assert by_supervisor.status is RequestStatus.CANCELLED

    started = await _submitted(service, draft_fields, requester)
    await service.transition(started.id, LifecycleAction.TRIAGE, supervisor)
    await service.transition(started.id, LifecycleAction.ASSIGN, supervisor, {"assigned_trade_id": 1})
    await service.transition(started.id, LifecycleAction.START, technician)
    with pytest.raises(InvalidStateTransitionError):
        await service.transition(started.id, LifecycleAction.CANCEL, supervisor)

    trail = await service.list_audit(own.id)
    assert trail[-1].action is AuditAction.CANCELLED
    assert trail[-1].metadata == {"note": "Fixed itself"}


@pytest.mark.asyncio
async def test_admin_bypasses_role_checks(service, draft_fields, requester, admin):
    submitted = await _submitted(service, draft_fields, requester)
    for action, payload in [
        (LifecycleAction.TRIAGE, None),
        (LifecycleAction.ASSIGN, {"assigned_trade_id": 2}),
        (LifecycleAction.START, None),
        (LifecycleAction.COMPLETE, None),
        (LifecycleAction.CLOSE, None),
    ]:
        result = await service.transition(submitted.id, action, admin, payload)

    assert result.status is RequestStatus.CLOSED


@pytest.mark.asyncio
async def test_rejected_actions_leave_no_audit_trace(service, draft_fields, requester, technician):
    submitted = await _submitted(service, draft_fields, requester)

    for action in (LifecycleAction.TRIAGE, LifecycleAction.CLOSE, LifecycleAction.SUBMIT):
        with pytest.raises((ForbiddenActionError, InvalidStateTransitionError)):
            await service.transition(submitted.id, action, technician)

    assert len(await service.list_audit(submitted.id)) == 2


@pytest.mark.asyncio
async def test_unknown_action_is_a_validation_error(service, draft_fields, requester):
    created = await service.create_draft(draft_fields, requester.caller_id)

    with pytest.raises(PayloadValidationError):
        await service.transition(created.id, "reopen", requester)


@pytest.mark.asyncio
async def test_missing_request_is_reported(service, requester):
    with pytest.raises(ServiceRequestNotFoundError):
        await service.transition("missing", LifecycleAction.SUBMIT, requester)
    with pytest.raises(ServiceRequestNotFoundError):
        await service.list_audit("missing")
    with pytest.raises(ServiceRequestNotFoundError):
        await service.get_request("missing")


@pytest.mark.asyncio
async def test_concurrent_creates_get_unique_numbers(service, draft_fields, requester):
    created = await asyncio.gather(*(service.create_draft(draft_fields, requester.caller_id) for _ in range(8)))

    assert sorted(request.sr_number for request in created) == [f"SR-202610-{n:05d}" for n in range(1, 9)]


@pytest.mark.asyncio
async def test_concurrent_submits_apply_once(service, draft_fields, requester):
    created = await service.create_draft(draft_fields, requester.caller_id)

    results = await asyncio.gather(
        service.transition(created.id, LifecycleAction.SUBMIT, requester),
        service.transition(created.id, LifecycleAction.SUBMIT, requester),
        return_exceptions=True,
    )

    successes = [result for result in results if isinstance(result, ServiceRequest)]
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidStateTransitionError)
    trail = await service.list_audit(created.id)
    assert [entry.to_status for entry in trail].count(RequestStatus.SUBMITTED) == 1


@pytest.mark.asyncio
async def test_list_requests_validates_pagination(service, draft_fields, requester):
    await service.create_draft(draft_fields, requester.caller_id)

    page = await service.list_requests(ServiceRequestFilters(status=RequestStatus.DRAFT))
    assert page.total == 1
    assert page.page_size == 20

    with pytest.raises(PayloadValidationError):
        await service.list_requests(page=0)
    with pytest.raises(PayloadValidationError):
        await service.list_requests(page_size=101)


def _draft_request() -> ServiceRequest:
    now = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
    return ServiceRequest(
        id="sr-1",
        sr_number="SR-202610-00001",
        title="Broken chair",
        description="Leg snapped",
        site_id=1,
        building_id=1,
        floor_id=1,
        room_id=1,
        problem_type_id=1,
        priority=Priority.LOW,
        status=RequestStatus.DRAFT,
        requested_by="requestor-1",
        created_at=now,
        updated_at=now,
    )


@pytest.mark.asyncio
async def test_conflicts_are_retried_then_surface(requester):
    current = _draft_request()
    repository = AsyncMock()
    repository.get = AsyncMock(return_value=current)
    repository.compare_and_update = AsyncMock(
        side_effect=ConcurrencyConflictError(current.id, expected=RequestStatus.DRAFT)
    )
    metrics = MetricsRegistry()
    service = ServiceRequestService(repository, max_conflict_retries=2, metrics=metrics)

    with pytest.raises(ConcurrencyConflictError):
        await service.transition(current.id, LifecycleAction.SUBMIT, requester)

    assert repository.get.await_count == 3
    assert repository.compare_and_update.await_count == 3
    retries = metrics.counter(metric_names.CONFLICT_RETRIES)
    assert retries.value(labels={"action": "submit"}) == 2
    failures = metrics.counter(metric_names.FAILURES)
    assert failures.value(labels={"code": "CONFLICT"}) == 1


@pytest.mark.asyncio
async def test_conflict_retry_succeeds_after_reload(requester):
    current = _draft_request()
    submitted = replace(current, status=RequestStatus.SUBMITTED)
    repository = AsyncMock()
    repository.get = AsyncMock(return_value=current)
    repository.compare_and_update = AsyncMock(
        side_effect=[ConcurrencyConflictError(current.id, expected=RequestStatus.DRAFT), submitted]
    )
    metrics = MetricsRegistry()
    service = ServiceRequestService(repository, metrics=metrics)

    result = await service.transition(current.id, LifecycleAction.SUBMIT, requester)

    assert result.status is RequestStatus.SUBMITTED
    call = repository.compare_and_update.await_args
    assert call.kwargs["expected_status"] is RequestStatus.DRAFT
    assert call.kwargs["audit"].to_status is RequestStatus.SUBMITTED
    assert metrics.counter(metric_names.TRANSITIONS).value(labels={"action": "submit"}) == 1


@pytest.mark.asyncio
async def test_overdue_flags_accept_naive_now(service, draft_fields, requester):
    submitted = await _submitted(service, draft_fields, requester)

    flags = service.get_overdue_flags(submitted, datetime(2030, 1, 1))

    assert flags.is_response_overdue
    assert flags.is_resolve_overdue


@pytest.mark.asyncio
async def test_audit_entries_are_frozen(service, draft_fields, requester):
    created = await service.create_draft(draft_fields, requester.caller_id)
    entry = (await service.list_audit(created.id))[0]

    with pytest.raises(FrozenInstanceError):
        entry.actor = "someone-else"
