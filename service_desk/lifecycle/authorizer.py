from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from .errors import ForbiddenActionError
from .models import CallerContext, LifecycleAction, Role


@dataclass(frozen=True, slots=True)
class AuthorizationDecision:
    """Outcome of an authorization check, kept for actionable error reporting."""

    allowed: bool
    action: LifecycleAction
    required_roles: frozenset[Role]
    actual_roles: frozenset[Role]
    requester_allowed: bool


class TransitionAuthorizer:
    """Decide whether a caller may trigger a lifecycle action.

    ADMIN is implicitly allowed everywhere. Actions listed in ``requester_actions`` are
    additionally open to the request's own requester whatever roles they hold.
    """

    _DEFAULT_ROLES: Mapping[LifecycleAction, frozenset[Role]] = {
        LifecycleAction.UPDATE: frozenset({Role.ADMIN}),
        LifecycleAction.SUBMIT: frozenset({Role.ADMIN}),
        LifecycleAction.TRIAGE: frozenset({Role.SUPERVISOR, Role.ADMIN}),
        LifecycleAction.ASSIGN: frozenset({Role.SUPERVISOR, Role.ADMIN}),
        LifecycleAction.START: frozenset({Role.TECHNICIAN, Role.ADMIN}),
        LifecycleAction.COMPLETE: frozenset({Role.TECHNICIAN, Role.ADMIN}),
        LifecycleAction.CLOSE: frozenset({Role.SUPERVISOR, Role.ADMIN}),
        LifecycleAction.CANCEL: frozenset({Role.SUPERVISOR, Role.ADMIN}),
    }

    _DEFAULT_REQUESTER_ACTIONS = frozenset({LifecycleAction.UPDATE, LifecycleAction.SUBMIT, LifecycleAction.CANCEL})

    def __init__(
        self,
        roles: Mapping[LifecycleAction, frozenset[Role]] | None = None,
        *,
        requester_actions: frozenset[LifecycleAction] | None = None,
    ) -> None:
        self._roles = roles or self._DEFAULT_ROLES
        self._requester_actions = (
            requester_actions if requester_actions is not None else self._DEFAULT_REQUESTER_ACTIONS
        )

    def required_roles(self, action: LifecycleAction) -> frozenset[Role]:
        return self._roles.get(action, frozenset()) | {Role.ADMIN}

    def decide(self, action: LifecycleAction, caller: CallerContext, *, requester_id: str) -> AuthorizationDecision:
        required = self.required_roles(action)
        requester_allowed = action in self._requester_actions
        allowed = bool(required & caller.roles) or (requester_allowed and caller.caller_id == requester_id)
        return AuthorizationDecision(
            allowed=allowed,
            action=action,
            required_roles=required,
            actual_roles=caller.roles,
            requester_allowed=requester_allowed,
        )

    def is_allowed(self, action: LifecycleAction, caller: CallerContext, *, requester_id: str) -> bool:
        return self.decide(action, caller, requester_id=requester_id).allowed

    def assert_allowed(self, action: LifecycleAction, caller: CallerContext, *, requester_id: str) -> None:
        decision = self.decide(action, caller, requester_id=requester_id)
        if not decision.allowed:
            raise ForbiddenActionError(
                action,
                required_roles=decision.required_roles,
                actual_roles=decision.actual_roles,
                requester_allowed=decision.requester_allowed,
            )
