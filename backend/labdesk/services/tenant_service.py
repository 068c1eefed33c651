"""
Multi-Tenant Service: lab-scoped lookups

WHY: Every request is scoped to one laboratory (g.lab_id). Ids arriving
from the client must be resolved inside that laboratory; an id that
belongs to another lab is reported exactly like a missing one so its
existence is not revealed, and the attempt is logged.

USAGE:
    from labdesk.services.tenant_service import get_in_lab

    invoice = get_in_lab(Invoice, invoice_id, g.lab_id)
"""

from flask import g, has_request_context, request
from ..extensions import db
from ..validation import NotFoundError
from .permission_service import log_security_event


class TenantAccessError(NotFoundError):
    """Raised when cross-tenant access is attempted."""
    pass


def get_in_lab(model, entity_id: int, lab_id: int, *, label: str | None = None):
    """
    Load model row by id, requiring row.lab_id == lab_id.

    Raises:
        NotFoundError if the row does not exist
        TenantAccessError if it belongs to another laboratory
    """
    label = label or model.__name__
    obj = db.session.get(model, entity_id)

    if obj is None:
        raise NotFoundError(f"{label} {entity_id} not found")

    if obj.lab_id != lab_id:
        _log_cross_tenant_attempt(
            f"{label} {entity_id} belongs to lab {obj.lab_id}, not {lab_id}",
            lab_id=lab_id,
        )
        raise TenantAccessError(f"{label} {entity_id} not found")

    return obj


def get_many_in_lab(model, entity_ids: list[int], lab_id: int, *, label: str | None = None) -> list:
    """
    Batch variant of get_in_lab. Returns rows in the order of entity_ids.
    """
    label = label or model.__name__
    if not entity_ids:
        return []

    rows = db.session.query(model).filter(model.id.in_(entity_ids)).all()
    by_id = {row.id: row for row in rows}

    missing = [i for i in entity_ids if i not in by_id]
    if missing:
        raise NotFoundError(f"{label} not found: {', '.join(str(i) for i in missing)}")

    foreign = [row.id for row in rows if row.lab_id != lab_id]
    if foreign:
        _log_cross_tenant_attempt(
            f"{label} ids {foreign} belong to another lab (caller lab {lab_id})",
            lab_id=lab_id,
        )
        raise TenantAccessError(f"{label} not found: {', '.join(str(i) for i in foreign)}")

    return [by_id[i] for i in entity_ids]


def _log_cross_tenant_attempt(reason: str, lab_id: int | None) -> None:
    user_id = None
    resource = ip_address = user_agent = None
    if has_request_context():
        current_user = getattr(g, "current_user", None)
        user_id = current_user.id if current_user else None
        resource = request.path
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")

    log_security_event(
        user_id=user_id,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=resource,
        action="LOOKUP",
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        lab_id=lab_id,
    )
