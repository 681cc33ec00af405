from typing import Optional

from fastapi import Depends, Header, Request

from encounter_tracker.bootstrap import Container
from encounter_tracker.domain.errors import AuthenticationError, PermissionDeniedError
from encounter_tracker.domain.models.user import User


def get_container(request: Request) -> Container:
    return request.app.state.container


def bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def require_user(
    token: Optional[str] = Depends(bearer_token),
    container: Container = Depends(get_container),
) -> User:
    if token is None:
        raise AuthenticationError("Authentication required", code="AUTHENTICATION_REQUIRED")
    return container.auth.resolve_session(token)


def optional_user(
    token: Optional[str] = Depends(bearer_token),
    container: Container = Depends(get_container),
) -> Optional[User]:
    if token is None:
        return None
    try:
        return container.auth.resolve_session(token)
    except AuthenticationError:
        return None


def require_admin(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return user


def ok(data=None, **extra) -> dict:
    payload = {"success": True, "data": data}
    payload.update(extra)
    return payload
