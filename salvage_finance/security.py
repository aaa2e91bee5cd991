"""
salvage_finance/security.py

Role-based access control for the financial document engine.

Key rules:
- UI is never trusted; every engine operation checks the actor's role server-side.
- Admin: full access.
- Accountant: view/create/edit quotations and invoices, never delete.
- HR / Storekeeper: no access to quotations or invoices.
- Unknown roles fall back to storekeeper (most restricted). Role names are case-insensitive.

Engine operation -> capability:
- create, convert            -> create
- edit and every transition  -> edit
- delete                     -> delete

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, Optional

from flask import jsonify
from flask_login import current_user

from .errors import PermissionDenied

VIEW = "view"
CREATE = "create"
EDIT = "edit"
DELETE = "delete"

FULL_ACCESS = frozenset((VIEW, CREATE, EDIT, DELETE))
NO_DELETE = frozenset((VIEW, CREATE, EDIT))
NO_ACCESS: frozenset = frozenset()

ROLE_PERMISSIONS: Dict[str, Dict[str, frozenset]] = {
    "admin": {"quotations": FULL_ACCESS, "invoices": FULL_ACCESS},
    "accountant": {"quotations": NO_DELETE, "invoices": NO_DELETE},
    "hr": {"quotations": NO_ACCESS, "invoices": NO_ACCESS},
    "storekeeper": {"quotations": NO_ACCESS, "invoices": NO_ACCESS},
}

DEFAULT_ROLE = "storekeeper"


def _role_table(role: Optional[str]) -> Dict[str, frozenset]:
    normalized = (role or "").strip().lower()
    return ROLE_PERMISSIONS.get(normalized, ROLE_PERMISSIONS[DEFAULT_ROLE])


def has_permission(role: Optional[str], module: str, action: str) -> bool:
    """Return True if the role may perform action (view/create/edit/delete) on module."""
    return action in _role_table(role).get(module, NO_ACCESS)


@dataclass(frozen=True)
class Actor:
    """Who is performing an engine operation (snapshot of the logged-in user)."""

    user_id: Optional[int]
    username: Optional[str]
    role: str

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, username=user.username, role=user.role or DEFAULT_ROLE)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"


# Scheduled jobs (flask expire-quotations / mark-overdue) act as this user.
SYSTEM_ACTOR = Actor(user_id=None, username="system", role="admin")


def require_permission(actor: Actor, module: str, action: str) -> None:
    """Raise PermissionDenied unless the actor's role allows the action."""
    if actor is None or not has_permission(actor.role, module, action):
        role = actor.role if actor is not None else "anonymous"
        raise PermissionDenied(f"Role '{role}' may not {action} {module}.")


def current_actor() -> Actor:
    """Actor for the logged-in user (routes are login_required)."""
    return Actor.from_user(current_user)


def permission_required(module: str, action: str) -> Callable[..., Any]:
    """
    Decorator factory for JSON routes: answer 403 before the view runs.

    Usage:
        @permission_required("invoices", "view")
        def list_invoices(): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            if not current_user.is_authenticated or not has_permission(current_user.role, module, action):
                return jsonify(PermissionDenied(f"Not allowed to {action} {module}.").to_dict()), 403
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
