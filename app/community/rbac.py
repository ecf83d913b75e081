from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.community.errors import AuthenticationRequired, Forbidden
from app.community.models import User


def current_user() -> User | None:
    return getattr(g, "current_user", None)


def is_visitor() -> bool:
    return bool(getattr(g, "is_visitor", False)) and current_user() is None


def user_is_admin(user: User | None) -> bool:
    return bool(user and user.is_active and user.is_admin)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Any authenticated principal, visitor sessions included (read-only routes)."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_user() is None and not is_visitor():
            raise AuthenticationRequired("Authentication required")
        return fn(*args, **kwargs)

    return wrapped


def require_member(fn: Callable[..., Any]) -> Callable[..., Any]:
    """A real account (student or admin). Visitors get 403."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = current_user()
        if user is None:
            if is_visitor():
                raise Forbidden("Visitors have read-only access")
            raise AuthenticationRequired("Authentication required")
        return fn(*args, **kwargs)

    return wrapped


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = current_user()
        if user is None and not is_visitor():
            raise AuthenticationRequired("Authentication required")
        if not user_is_admin(user):
            raise Forbidden("Admin access required")
        return fn(*args, **kwargs)

    return wrapped


def member() -> User:
    """Current account inside a @require_member/@require_admin route."""
    u = current_user()
    if not u:
        raise RuntimeError("No current user")
    return u
