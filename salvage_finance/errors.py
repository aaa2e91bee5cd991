"""
Lifecycle engine errors.

Every error carries a short machine code and the HTTP status the JSON blueprints
answer with. Step-level errors also carry the step names that completed / failed,
so the caller can tell what was actually written.
"""

from __future__ import annotations

from typing import Iterable


class LifecycleError(Exception):
    """Base class for all engine errors."""

    code = "lifecycle_error"
    http_status = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class PermissionDenied(LifecycleError):
    code = "permission_denied"
    http_status = 403


class DocumentNotFound(LifecycleError):
    code = "not_found"
    http_status = 404


class ValidationFailed(LifecycleError):
    """Missing or invalid input. Always raised before any side effect."""

    code = "validation_failed"
    http_status = 400


class IllegalTransition(LifecycleError):
    code = "illegal_transition"
    http_status = 409

    def __init__(self, kind: str, status: str, action: str):
        super().__init__(f"{kind}: '{action}' is not allowed in status '{status}'.")
        self.kind = kind
        self.status = status
        self.action = action


class StaleRecordError(LifecycleError):
    """Stock or tonnage changed between read and write."""

    code = "stale_record"
    http_status = 409

    def __init__(self, table: str, row_id: int, field: str):
        super().__init__(f"{table}#{row_id}.{field} changed concurrently; retry the operation.")
        self.table = table
        self.row_id = row_id
        self.field = field


class _StepError(LifecycleError):
    http_status = 500

    def __init__(self, message: str, completed: Iterable[str] = (), failed: Iterable[str] = ()):
        super().__init__(message)
        self.completed = list(completed)
        self.failed = list(failed)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["steps"] = {"completed": self.completed, "failed": self.failed}
        return data


class TransitionFailed(_StepError):
    """A blocking step failed. In atomic mode nothing was written."""

    code = "transition_failed"


class PartiallyApplied(_StepError):
    """Some steps were committed and at least one failed."""

    code = "partially_applied"
