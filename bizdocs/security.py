"""
bizdocs/security.py

Access control helpers for the JSON API.

Key rules:
- Every API route is protected server-side; clients are never trusted.
- Permissions are resource:action pairs granted through roles
  (e.g. "quotations:create"). The super_admin role passes every check.
- Unauthenticated calls get 401 JSON, missing permissions 403 JSON.
- LOGIN_DISABLED (tests) turns every check off, mirroring Flask-Login.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Tuple

from flask import current_app, jsonify
from flask_login import current_user

RESOURCES = (
    "customers",
    "products",
    "services",
    "quotations",
    "invoices",
    "delivery_notes",
    "payments",
    "users",
    "roles",
)
ACTIONS = ("create", "read", "update", "delete")


def _unauthorized() -> Tuple[Any, int]:
    return jsonify({"error": "Authentication required"}), 401


def _forbidden() -> Tuple[Any, int]:
    return jsonify({"error": "Insufficient permissions"}), 403


def _checks_disabled() -> bool:
    return bool(current_app.config.get("LOGIN_DISABLED", False))


def has_permission(resource: str, action: str) -> bool:
    """True if the current user may perform `action` on `resource`."""
    if _checks_disabled():
        return True
    if not current_user.is_authenticated:
        return False
    return bool(current_user.has_permission(resource, action))


def permission_required(resource: str, action: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator factory: require `resource:action`.

    Usage:
        @bp.route("/", methods=["POST"])
        @permission_required("quotations", "create")
        def create(): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            if _checks_disabled():
                return view_func(*args, **kwargs)
            if not current_user.is_authenticated:
                return _unauthorized()
            if not has_permission(resource, action):
                return _forbidden()
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: super_admin only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if _checks_disabled():
            return view_func(*args, **kwargs)
        if not current_user.is_authenticated:
            return _unauthorized()
        if not getattr(current_user, "is_super_admin", False):
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper
