from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Mapping

from .models import OverdueFlags, Priority, RequestStatus, ServiceRequest


@dataclass(frozen=True, slots=True)
class SlaPolicy:
    """Response and resolve offsets for a priority tier."""

    response: timedelta
    resolve: timedelta


@dataclass(frozen=True, slots=True)
class SlaDeadlines:
    response_due_at: datetime
    resolve_due_at: datetime


DEFAULT_SLA_POLICIES: Mapping[Priority, SlaPolicy] = {
    Priority.URGENT: SlaPolicy(response=timedelta(hours=2), resolve=timedelta(days=1)),
    Priority.HIGH: SlaPolicy(response=timedelta(hours=4), resolve=timedelta(days=3)),
    Priority.MEDIUM: SlaPolicy(response=timedelta(hours=8), resolve=timedelta(days=7)),
    Priority.LOW: SlaPolicy(response=timedelta(hours=24), resolve=timedelta(days=14)),
}

_CLOSED_STATES = frozenset({RequestStatus.CLOSED, RequestStatus.CANCELLED})


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _is_past(due: datetime | None, now: datetime) -> bool:
    return due is not None and now > as_utc(due)


class SlaCalculator:
    """Map priorities to deadlines and derive overdue flags at read time."""

    def __init__(
        self,
        policies: Mapping[Priority, SlaPolicy] | None = None,
        *,
        fallback: Priority = Priority.LOW,
    ) -> None:
        policies = policies or DEFAULT_SLA_POLICIES
        if fallback not in policies:
            raise ValueError(f"fallback priority {fallback.value} has no policy")
        for priority, policy in policies.items():
            if policy.response <= timedelta(0):
                raise ValueError(f"response offset for {priority.value} must be positive")
            if policy.resolve <= policy.response:
                raise ValueError(f"resolve offset for {priority.value} must exceed the response offset")
        self._policies = policies
        self._fallback = fallback

    def policy_for(self, priority: Priority | str | None) -> SlaPolicy:
        try:
            resolved = Priority(priority) if priority is not None else self._fallback
        except ValueError:
            resolved = self._fallback
        return self._policies.get(resolved, self._policies[self._fallback])

    def deadlines(self, priority: Priority | str | None, submitted_at: datetime) -> SlaDeadlines:
        policy = self.policy_for(priority)
        return SlaDeadlines(
            response_due_at=submitted_at + policy.response,
            resolve_due_at=submitted_at + policy.resolve,
        )

    @staticmethod
    def overdue_flags(request: ServiceRequest, now: datetime) -> OverdueFlags:
        if request.status in _CLOSED_STATES:
            return OverdueFlags(is_response_overdue=False, is_resolve_overdue=False)
        now = as_utc(now)
        return OverdueFlags(
            is_response_overdue=_is_past(request.response_due_at, now),
            is_resolve_overdue=_is_past(request.resolve_due_at, now),
        )
