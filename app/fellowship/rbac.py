from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.fellowship.errors import AuthenticationError, AuthorizationError
from app.fellowship.models import Member


def current_member() -> Member:
    m: Member | None = getattr(g, "current_user", None)
    if not m or m.is_deleted:
        raise AuthenticationError("Authentication required")
    return m


def member_has_role(member: Member | None, *roles: str) -> bool:
    if not member or member.is_deleted:
        return False
    return member.role in roles


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        current_member()
        return fn(*args, **kwargs)

    return wrapped


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            member = current_member()
            # Authenticated but wrong role -> 403
            if not member_has_role(member, *roles):
                g.missing_role = ",".join(roles)
                raise AuthorizationError("Insufficient permissions")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
