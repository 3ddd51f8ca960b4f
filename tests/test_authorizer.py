import pytest

from service_desk.lifecycle import CallerContext, ForbiddenActionError, LifecycleAction, Role, TransitionAuthorizer


def _caller(caller_id: str, *roles: Role) -> CallerContext:
    return CallerContext(caller_id, frozenset(roles))


@pytest.mark.parametrize("action", list(LifecycleAction))
def test_admin_may_perform_every_action(action):
    authorizer = TransitionAuthorizer()
    assert authorizer.is_allowed(action, _caller("root", Role.ADMIN), requester_id="someone-else")


@pytest.mark.parametrize("action", [LifecycleAction.UPDATE, LifecycleAction.SUBMIT, LifecycleAction.CANCEL])
def test_requester_may_act_on_own_request(action):
    authorizer = TransitionAuthorizer()
    caller = _caller("alice", Role.REQUESTOR)
    assert authorizer.is_allowed(action, caller, requester_id="alice")
    assert not authorizer.is_allowed(action, caller, requester_id="bob")


@pytest.mark.parametrize(
    ("action", "role"),
    [
        (LifecycleAction.TRIAGE, Role.SUPERVISOR),
        (LifecycleAction.ASSIGN, Role.SUPERVISOR),
        (LifecycleAction.CLOSE, Role.SUPERVISOR),
        (LifecycleAction.CANCEL, Role.SUPERVISOR),
        (LifecycleAction.START, Role.TECHNICIAN),
        (LifecycleAction.COMPLETE, Role.TECHNICIAN),
    ],
)
def test_role_gated_actions(action, role):
    authorizer = TransitionAuthorizer()
    assert authorizer.is_allowed(action, _caller("staff", role), requester_id="alice")
    assert not authorizer.is_allowed(action, _caller("alice", Role.REQUESTOR), requester_id="alice")


def test_technician_cannot_triage_or_cancel():
    authorizer = TransitionAuthorizer()
    technician = _caller("tech", Role.TECHNICIAN)
    assert not authorizer.is_allowed(LifecycleAction.TRIAGE, technician, requester_id="alice")
    assert not authorizer.is_allowed(LifecycleAction.CANCEL, technician, requester_id="alice")


def test_forbidden_error_reports_required_and_actual_roles():
    authorizer = TransitionAuthorizer()
    with pytest.raises(ForbiddenActionError) as exc:
        authorizer.assert_allowed(LifecycleAction.START, _caller("alice", Role.REQUESTOR), requester_id="alice")

    assert exc.value.code == "FORBIDDEN"
    assert exc.value.details["required"] == ["ADMIN", "TECHNICIAN"]
    assert exc.value.details["actual"] == ["REQUESTOR"]
    assert exc.value.details["requester_allowed"] is False


def test_caller_context_normalizes_role_names():
    caller = CallerContext.from_role_names("bob", ["supervisor", " Technician ", "janitor"])
    assert caller.roles == frozenset({Role.SUPERVISOR, Role.TECHNICIAN})
    assert caller.has_role(Role.SUPERVISOR)
    assert not caller.has_role(Role.ADMIN)
