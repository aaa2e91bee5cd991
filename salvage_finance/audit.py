"""
salvage_finance/audit.py

AuditLog writer for quotation and invoice operations.

Each row records the actor, the document, the action name (CREATE / UPDATE / DELETE or
a transition such as mark_paid) and JSON snapshots before and after. The username is
copied onto the row so the trail survives renamed or deleted users. The IP address is
only known inside a request; CLI jobs leave it empty.

IMPORTANT:
- log_action only adds the row to the session. The caller (usually a StepRunner audit
  step) owns commit/rollback, so the entry lands in the same transaction as the change.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request

from .extensions import db
from .models import AuditLog


def _snapshot_value(value: Any) -> Optional[str]:
    # dates, floats and booleans all serialize through str()
    return None if value is None else str(value)


def serialize_model(instance: Any) -> Dict[str, Any]:
    """
    Column snapshot of a row, values as strings.

    Quotations and invoices also get an "items" list, because edits replace the
    whole item set and the old lines would otherwise be lost from the trail.
    """
    data: Dict[str, Any] = {
        column.name: _snapshot_value(getattr(instance, column.key, None))
        for column in instance.__table__.columns
    }
    items = getattr(instance, "items", None)
    if items is not None:
        data["items"] = [serialize_model(item) for item in items]
    return data


def log_action(
    entity: Any,
    action: str,
    actor=None,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
) -> AuditLog:
    """
    Queue one AuditLog row and return it.

    entity is the flushed document. Deletes pass entity=None with entity_type and
    entity_id, since the row is gone by the time the transaction commits.
    actor=None is recorded as "system".

    Behind a reverse proxy remote_addr is the proxy unless ProxyFix is configured.
    """
    if entity is not None:
        entity_type = entity_type or entity.__class__.__name__
        entity_id = entity_id if entity_id is not None else getattr(entity, "id", None)

    if entity_type is None or entity_id is None:
        raise ValueError("log_action needs an entity with an id (after flush) or entity_type + entity_id.")

    entry = AuditLog(
        user_id=getattr(actor, "user_id", None),
        username_snapshot=getattr(actor, "username", None) or ("system" if actor is None else None),
        entity_type=entity_type,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False, default=str) if before else None,
        after_data=json.dumps(after, ensure_ascii=False, default=str) if after else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    return entry
