from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from .errors import InvalidStateTransitionError
from .models import AuditAction, LifecycleAction, RequestStatus


@dataclass(frozen=True, slots=True)
class Transition:
    """Edge of the lifecycle graph triggered by a named action."""

    action: LifecycleAction
    sources: frozenset[RequestStatus]
    target: RequestStatus
    audit_action: AuditAction

    @property
    def changes_status(self) -> bool:
        return any(source != self.target for source in self.sources)


def _edge(
    action: LifecycleAction,
    sources: tuple[RequestStatus, ...],
    target: RequestStatus,
    audit_action: AuditAction = AuditAction.STATUS_CHANGED,
) -> Transition:
    return Transition(action=action, sources=frozenset(sources), target=target, audit_action=audit_action)


class ServiceRequestStateMachine:
    """Validate service request lifecycle transitions."""

    _DEFAULT_TRANSITIONS: Mapping[LifecycleAction, Transition] = {
        LifecycleAction.UPDATE: _edge(
            LifecycleAction.UPDATE, (RequestStatus.DRAFT,), RequestStatus.DRAFT, AuditAction.UPDATED
        ),
        LifecycleAction.SUBMIT: _edge(LifecycleAction.SUBMIT, (RequestStatus.DRAFT,), RequestStatus.SUBMITTED),
        LifecycleAction.TRIAGE: _edge(LifecycleAction.TRIAGE, (RequestStatus.SUBMITTED,), RequestStatus.TRIAGED),
        LifecycleAction.ASSIGN: _edge(
            LifecycleAction.ASSIGN, (RequestStatus.TRIAGED,), RequestStatus.ASSIGNED, AuditAction.ASSIGNED
        ),
        LifecycleAction.START: _edge(LifecycleAction.START, (RequestStatus.ASSIGNED,), RequestStatus.IN_PROGRESS),
        LifecycleAction.COMPLETE: _edge(
            LifecycleAction.COMPLETE, (RequestStatus.IN_PROGRESS,), RequestStatus.COMPLETED
        ),
        LifecycleAction.CLOSE: _edge(LifecycleAction.CLOSE, (RequestStatus.COMPLETED,), RequestStatus.CLOSED),
        LifecycleAction.CANCEL: _edge(
            LifecycleAction.CANCEL,
            (RequestStatus.SUBMITTED, RequestStatus.TRIAGED, RequestStatus.ASSIGNED),
            RequestStatus.CANCELLED,
            AuditAction.CANCELLED,
        ),
    }

    _TERMINAL = frozenset({RequestStatus.CLOSED, RequestStatus.CANCELLED})

    def __init__(self, transitions: Mapping[LifecycleAction, Transition] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    @staticmethod
    def initial_state() -> RequestStatus:
        return RequestStatus.DRAFT

    def is_terminal(self, status: RequestStatus) -> bool:
        return status in self._TERMINAL

    def transition_for(self, action: LifecycleAction) -> Transition:
        try:
            return self._transitions[action]
        except KeyError:
            raise ValueError(f"No transition registered for action {action!s}") from None

    def can_apply(self, current: RequestStatus, action: LifecycleAction) -> bool:
        transition = self._transitions.get(action)
        return transition is not None and current in transition.sources

    def assert_can_apply(self, current: RequestStatus, action: LifecycleAction) -> Transition:
        if not self.can_apply(current, action):
            raise InvalidStateTransitionError(current, action)
        return self._transitions[action]

    def can_transition(self, current: RequestStatus, target: RequestStatus) -> bool:
        """Return whether any action moves ``current`` to ``target``."""

        return any(
            current in transition.sources and transition.target == target
            for transition in self._transitions.values()
        )

    def available_actions(self, current: RequestStatus) -> tuple[LifecycleAction, ...]:
        return tuple(action for action, transition in self._transitions.items() if current in transition.sources)
