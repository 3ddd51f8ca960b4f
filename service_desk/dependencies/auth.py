from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from service_desk.lifecycle.models import CallerContext, Role


class User:
    """Authenticated caller as resolved from a bearer token."""

    def __init__(self, username: str, roles: tuple[Role, ...]):
        self.username = username
        self.roles = roles

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def as_caller(self) -> CallerContext:
        return CallerContext.from_role_names(self.username, (role.value for role in self.roles))


# Static development tokens. Identity and role membership are owned by the
# authentication service in production deployments.
TOKEN_USER_MAP: dict[str, tuple[str, tuple[Role, ...]]] = {
    "admin-token": ("admin", (Role.ADMIN,)),
    "supervisor-token": ("supervisor", (Role.SUPERVISOR,)),
    "technician-token": ("technician", (Role.TECHNICIAN,)),
    "requestor-token": ("requestor", (Role.REQUESTOR,)),
    "requestor-2-token": ("requestor-2", (Role.REQUESTOR,)),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User:
    """Return the user associated with the provided bearer token."""

    if token is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if token not in TOKEN_USER_MAP:
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    username, roles = TOKEN_USER_MAP[token]
    return User(username=username, roles=roles)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
) -> User:
    token = credentials.credentials if credentials is not None else None
    return resolve_user_from_token(token)


def role_required(*roles: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user holds at least one of ``roles``."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not any(user.has_role(role) for role in roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(role_required(Role.ADMIN))]
