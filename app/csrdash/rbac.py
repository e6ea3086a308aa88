"""
Dashboard permissions and the roles that bundle them.

Views are gated per action: reading a list needs `<area>.view`, changing
anything needs the matching edit/action/create/delete key. The registry below
is what scripts/init_db.py seeds; keys are never renamed once deployed.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, has_request_context, redirect, request, url_for

from app.csrdash.models import User

PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("admin.view", "Admin: view shell"),
    ("requests.view", "Requests: view"),
    ("requests.action", "Requests: take action"),
    ("customers.view", "Customers: view"),
    ("customers.edit", "Customers: edit profile"),
    ("subscriptions.view", "Subscriptions: view"),
    ("subscriptions.edit", "Subscriptions: edit (status, plan, vehicles, transfer)"),
    ("subscriptions.create", "Subscriptions: create"),
    ("subscriptions.delete", "Subscriptions: delete"),
)

# Role key -> (name, permission keys)
ROLES: dict[str, tuple[str, tuple[str, ...]]] = {
    "admin": ("Administrator", tuple(k for k, _ in PERMISSIONS)),
    "csr": (
        "Customer Service Rep",
        tuple(k for k, _ in PERMISSIONS if k != "subscriptions.delete"),
    ),
    "viewer": ("Read-only", tuple(k for k, _ in PERMISSIONS if k.endswith(".view"))),
}


def permission_keys(user: User | None) -> frozenset[str]:
    """All permission keys granted through the user's roles; memoized per request."""
    if not user or not user.is_active:
        return frozenset()
    cache = getattr(g, "_perm_cache", None) if has_request_context() else None
    if cache is not None and cache[0] == user.id:
        return cache[1]
    keys = frozenset(p.key for role in (user.roles or []) for p in (role.permissions or []))
    if has_request_context():
        g._perm_cache = (user.id, keys)
    return keys


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return permission_key in permission_keys(user)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                # Back to the same page after login; full_path leaves a bare "?".
                nxt = (request.full_path or request.path).rstrip("?")
                return redirect(url_for("auth.login_get", next=nxt))
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
