# Overview: Service-layer operations for audit; encapsulates business logic and database work.

from __future__ import annotations

import json
from typing import Any, Optional

from flask import has_request_context, request

from ..extensions import db
from ..models import AuditLog
from labdesk.time_utils import utcnow
"""
Audit Log Invariants (authoritative)

- Append-only: rows are never updated or deleted.
- Rows are written inside the same DB transaction as the change they record;
  record_audit_event() flushes but never commits. The caller's commit (or
  rollback) covers both the change and its audit row.
- Snapshots are JSON objects of the fields that changed, serialized with
  sorted keys so equal snapshots compare equal as text.
"""

ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"
ACTION_STATUS_CHANGE = "STATUS_CHANGE"
ACTION_INVOICE_GENERATE = "INVOICE_GENERATE"
ACTION_EMAIL_SEND = "EMAIL_SEND"

VALID_ACTIONS = {
    ACTION_CREATE,
    ACTION_UPDATE,
    ACTION_DELETE,
    ACTION_STATUS_CHANGE,
    ACTION_INVOICE_GENERATE,
    ACTION_EMAIL_SEND,
}


def _dump(values: Optional[dict]) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(values, sort_keys=True, default=str)


def record_audit_event(
    *,
    lab_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    reason: Optional[str] = None,
) -> AuditLog:
    """
    Append an audit row to the current transaction.

    - No business logic here.
    - Never commits; see module invariants.
    """
    if action not in VALID_ACTIONS:
        raise ValueError(f"Unknown audit action '{action}'")

    ip_address = user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")

    entry = AuditLog(
        lab_id=lab_id,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=_dump(old_values),
        new_values=_dump(new_values),
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()  # assigns entry.id without committing
    return entry


def list_audit_logs(
    lab_id: int,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    action: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    """Newest first, scoped to one laboratory."""
    page = max(1, page)
    per_page = min(max(1, per_page), 200)

    q = db.session.query(AuditLog).filter(AuditLog.lab_id == lab_id)
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditLog.entity_id == entity_id)
    if action:
        q = q.filter(AuditLog.action == action)

    total = q.count()
    rows = (
        q.order_by(AuditLog.occurred_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [r.to_dict() for r in rows],
        "count": len(rows),
        "total": total,
        "page": page,
        "per_page": per_page,
    }
