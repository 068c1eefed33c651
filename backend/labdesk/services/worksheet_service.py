# Overview: Service-layer operations for worksheets; encapsulates business logic and database work.

"""
Worksheet Status State Machine

================================================================================
PURPOSE: Govern the production lifecycle of a worksheet
================================================================================

STATE MACHINE:
    DRAFT         -> IN_PRODUCTION | CANCELLED
    IN_PRODUCTION -> QC_PENDING | CANCELLED
    IN_PRODUCTION -> DRAFT              (rollback only, reason required)
    QC_PENDING    -> QC_APPROVED | QC_REJECTED | CANCELLED
    QC_REJECTED   -> IN_PRODUCTION | CANCELLED
    QC_APPROVED   -> DELIVERED          (invoice finalization only)
    QC_APPROVED   -> CANCELLED          (VOID_WORKSHEETS only)
    QC_APPROVED, DELIVERED -> VOIDED    (void only, reason required)
    DELIVERED, CANCELLED, VOIDED: terminal

    INVOICED is not stored. A worksheet is invoiced while a non-draft,
    non-cancelled invoice carries a line item pointing at it.
    VOIDED takes precedence over INVOICED in effective_status.

RULES:
1. A rejected transition never mutates state and never writes an audit row.
2. Every accepted transition writes exactly one audit row in the same
   transaction as the status change.
3. The permission needed depends on the target status (see
   TRANSITION_PERMISSIONS, overridden per edge by EDGE_PERMISSIONS);
   production staff cannot approve QC through a permission they lack, and
   nobody can deliver outside of invoicing.
4. Rollback is the only way back to DRAFT.
5. Once invoiced, a worksheet's dentist cannot change.
6. A worksheet sitting on an open draft invoice cannot be cancelled or
   voided until it is removed from that draft.

================================================================================
"""

from __future__ import annotations
from typing import Literal

from flask import current_app

from ..extensions import db
from ..models import Worksheet, WorksheetProduct, Product, Dentist, Invoice, InvoiceLineItem
from ..validation import ValidationError, ConflictError, parse_int
from . import permission_service
from .audit_service import record_audit_event, ACTION_CREATE, ACTION_UPDATE, ACTION_STATUS_CHANGE
from .document_service import next_worksheet_number
from .tenant_service import get_in_lab
from labdesk.time_utils import utcnow


VALID_STATUSES = {
    "DRAFT",
    "IN_PRODUCTION",
    "QC_PENDING",
    "QC_APPROVED",
    "QC_REJECTED",
    "DELIVERED",
    "CANCELLED",
    "VOIDED",
}
WorksheetStatus = Literal[
    "DRAFT",
    "IN_PRODUCTION",
    "QC_PENDING",
    "QC_APPROVED",
    "QC_REJECTED",
    "DELIVERED",
    "CANCELLED",
    "VOIDED",
]

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "DRAFT": {"IN_PRODUCTION", "CANCELLED"},
    "IN_PRODUCTION": {"QC_PENDING", "CANCELLED"},
    "QC_PENDING": {"QC_APPROVED", "QC_REJECTED", "CANCELLED"},
    "QC_REJECTED": {"IN_PRODUCTION", "CANCELLED"},
    "QC_APPROVED": {"DELIVERED", "CANCELLED"},
    "DELIVERED": set(),
    "CANCELLED": set(),
    "VOIDED": set(),
}

TRANSITION_PERMISSIONS: dict[str, str] = {
    "IN_PRODUCTION": "MANAGE_PRODUCTION",
    "QC_PENDING": "MANAGE_PRODUCTION",
    "CANCELLED": "MANAGE_PRODUCTION",
    "QC_APPROVED": "PERFORM_QC",
    "QC_REJECTED": "PERFORM_QC",
}

# Per-edge overrides of TRANSITION_PERMISSIONS
EDGE_PERMISSIONS: dict[tuple[str, str], str] = {
    ("QC_APPROVED", "CANCELLED"): "VOID_WORKSHEETS",
}

# Reached only as a side effect of invoice finalization
INVOICE_CONTROLLED_STATUSES = {"DELIVERED"}

ROLLBACK_FROM = "IN_PRODUCTION"
ROLLBACK_TO = "DRAFT"

VOIDED = "VOIDED"
VOIDABLE_FROM = {"QC_APPROVED", "DELIVERED"}
VOID_PERMISSION = "VOID_WORKSHEETS"

READ_ONLY_STATUSES = {"DELIVERED", "CANCELLED", "VOIDED"}

WORKSHEET_MUTABLE_FIELDS = {"dentist_id", "patient_name", "technical_notes"}


class InvalidTransitionError(ValueError):
    """
    Raised when a requested status change violates the state machine.

    This is a domain error: the worksheet is in the wrong state for the
    requested operation.
    """
    pass


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    return to_status in ALLOWED_TRANSITIONS[from_status]


def required_permission(from_status: str, to_status: str) -> str | None:
    return EDGE_PERMISSIONS.get((from_status, to_status), TRANSITION_PERMISSIONS.get(to_status))


def get_available_transitions(status: str, permissions: set[str]) -> list[str]:
    """
    Targets a user holding `permissions` may request from `status`.

    Invoice-controlled targets are never offered here.
    """
    validate_status(status)
    return sorted(
        target
        for target in ALLOWED_TRANSITIONS[status]
        if target not in INVOICE_CONTROLLED_STATUSES
        and required_permission(status, target) in permissions
    )


def get_worksheet(worksheet_id: int, lab_id: int) -> Worksheet:
    return get_in_lab(Worksheet, worksheet_id, lab_id)


def create_worksheet(
    *,
    lab_id: int,
    dentist_id: int,
    patient_name: str | None = None,
    technical_notes: str | None = None,
    created_by_user_id: int | None = None,
) -> Worksheet:
    """Create a DRAFT worksheet with the next WS-NNN number for the lab."""
    dentist = get_in_lab(Dentist, dentist_id, lab_id)
    if not dentist.is_active:
        raise ValidationError(f"Dentist {dentist_id} is not active")

    try:
        ws = Worksheet(
            lab_id=lab_id,
            worksheet_number=next_worksheet_number(lab_id),
            dentist_id=dentist.id,
            patient_name=patient_name,
            technical_notes=technical_notes,
            status="DRAFT",
            created_by_user_id=created_by_user_id,
        )
        db.session.add(ws)
        db.session.flush()

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=created_by_user_id,
            action=ACTION_CREATE,
            entity_type="Worksheet",
            entity_id=ws.id,
            new_values={
                "worksheet_number": ws.worksheet_number,
                "dentist_id": ws.dentist_id,
                "status": ws.status,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return ws


def add_worksheet_product(
    *,
    worksheet_id: int,
    lab_id: int,
    product_id: int,
    quantity: int = 1,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> WorksheetProduct:
    """
    Attach a product to a DRAFT worksheet, freezing its current price.
    """
    product_id = parse_int(product_id, field="product_id")
    quantity = parse_int(quantity, field="quantity")
    if quantity < 1:
        raise ValidationError("quantity must be an integer >= 1")

    ws = get_worksheet(worksheet_id, lab_id)
    if ws.status != "DRAFT":
        raise InvalidTransitionError(
            f"Cannot add products to worksheet {ws.worksheet_number}: "
            f"current status is '{ws.status}', must be 'DRAFT'"
        )

    product = get_in_lab(Product, product_id, lab_id)
    if not product.is_active:
        raise ValidationError(f"Product {product.code} is not active")

    try:
        line = WorksheetProduct(
            worksheet_id=ws.id,
            product_id=product.id,
            quantity=quantity,
            price_at_selection_cents=product.price_cents,
            notes=notes,
        )
        ws.products.append(line)
        ws.updated_at = utcnow()
        db.session.flush()

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_UPDATE,
            entity_type="Worksheet",
            entity_id=ws.id,
            new_values={
                "product_id": product.id,
                "quantity": quantity,
                "price_at_selection_cents": product.price_cents,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return line


def update_worksheet(
    *,
    worksheet_id: int,
    lab_id: int,
    patch: dict,
    actor_user_id: int | None = None,
) -> Worksheet:
    """
    Edit worksheet header fields.

    The dentist may not change once the worksheet is invoiced, and
    terminal worksheets are read-only.
    """
    ws = get_worksheet(worksheet_id, lab_id)

    if ws.status in READ_ONLY_STATUSES:
        raise ConflictError(f"Worksheet {ws.worksheet_number} is {ws.status} and cannot be edited")

    changes = {k: v for k, v in patch.items() if k in WORKSHEET_MUTABLE_FIELDS and getattr(ws, k) != v}
    if not changes:
        return ws

    if "dentist_id" in changes:
        if ws.is_invoiced:
            raise ConflictError(
                f"Worksheet {ws.worksheet_number} is invoiced; its dentist cannot change"
            )
        get_in_lab(Dentist, changes["dentist_id"], lab_id)

    old_values = {k: getattr(ws, k) for k in changes}

    try:
        for k, v in changes.items():
            setattr(ws, k, v)
        ws.updated_at = utcnow()

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_UPDATE,
            entity_type="Worksheet",
            entity_id=ws.id,
            old_values=old_values,
            new_values=changes,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return ws


def _on_open_draft_invoice(ws: Worksheet) -> bool:
    return db.session.query(
        db.session.query(InvoiceLineItem.id)
        .join(Invoice, Invoice.id == InvoiceLineItem.invoice_id)
        .filter(
            InvoiceLineItem.worksheet_id == ws.id,
            Invoice.is_draft.is_(True),
            Invoice.payment_status != "CANCELLED",
        )
        .exists()
    ).scalar()


def _ensure_not_on_draft_invoice(ws: Worksheet, action: str) -> None:
    if _on_open_draft_invoice(ws):
        raise ConflictError(
            f"Worksheet {ws.worksheet_number} is on a draft invoice; "
            f"remove it from the invoice before it can be {action}"
        )


def _apply_status(ws: Worksheet, to_status: str) -> None:
    now = utcnow()
    if to_status == "IN_PRODUCTION" and ws.manufacture_date is None:
        ws.manufacture_date = now
    ws.completed_at = now if to_status == "DELIVERED" else None
    ws.status = to_status
    ws.updated_at = now


def transition_worksheet(
    *,
    worksheet_id: int,
    lab_id: int,
    to_status: str,
    actor_user_id: int,
) -> Worksheet:
    """
    Move a worksheet forward along the state machine.

    Raises:
        ValidationError: unknown target status
        NotFoundError: worksheet missing or in another lab
        PermissionDeniedError: actor lacks the permission for this edge
        InvalidTransitionError: transition not allowed from the current status
        ConflictError: cancelling a worksheet that is on a draft invoice
    """
    validate_status(to_status)

    ws = get_worksheet(worksheet_id, lab_id)

    if to_status == ROLLBACK_TO:
        raise InvalidTransitionError(
            f"Worksheet {ws.worksheet_number} can only return to DRAFT through rollback"
        )
    if to_status in INVOICE_CONTROLLED_STATUSES:
        raise InvalidTransitionError(
            f"Worksheet {ws.worksheet_number} is delivered by finalizing its invoice"
        )
    if to_status == VOIDED:
        raise InvalidTransitionError(
            f"Worksheet {ws.worksheet_number} can only be voided through void, with a reason"
        )

    permission_service.require_permission(
        actor_user_id, required_permission(ws.status, to_status), lab_id=lab_id
    )

    if not can_transition(ws.status, to_status):
        raise InvalidTransitionError(
            f"Cannot move worksheet {ws.worksheet_number} from '{ws.status}' to '{to_status}'"
        )
    if to_status == "CANCELLED":
        _ensure_not_on_draft_invoice(ws, "cancelled")

    old_status = ws.status
    try:
        _apply_status(ws, to_status)
        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_STATUS_CHANGE,
            entity_type="Worksheet",
            entity_id=ws.id,
            old_values={"status": old_status},
            new_values={"status": to_status},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Worksheet %s moved %s -> %s by user %s", ws.worksheet_number, old_status, to_status, actor_user_id
    )
    return ws


def rollback_worksheet(
    *,
    worksheet_id: int,
    lab_id: int,
    reason: str | None,
    actor_user_id: int,
) -> Worksheet:
    """
    Roll a worksheet back from IN_PRODUCTION to DRAFT.

    Succeeds iff the current status is exactly IN_PRODUCTION and the reason
    is non-empty after stripping. The status change and its audit row
    commit together.
    """
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("A non-empty rollback reason is required")
    reason = reason.strip()

    ws = get_worksheet(worksheet_id, lab_id)

    if ws.status != ROLLBACK_FROM:
        raise InvalidTransitionError(
            f"Cannot roll back worksheet {ws.worksheet_number}: "
            f"current status is '{ws.status}', must be '{ROLLBACK_FROM}'"
        )

    try:
        ws.status = ROLLBACK_TO
        ws.updated_at = utcnow()
        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_UPDATE,
            entity_type="Worksheet",
            entity_id=ws.id,
            old_values={"status": ROLLBACK_FROM},
            new_values={"status": ROLLBACK_TO, "rollback_reason": reason},
            reason=reason,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Worksheet %s rolled back to DRAFT by user %s", ws.worksheet_number, actor_user_id
    )
    return ws


def void_worksheet(
    *,
    worksheet_id: int,
    lab_id: int,
    reason: str | None,
    actor_user_id: int,
) -> Worksheet:
    """
    Void finished work (QC_APPROVED or DELIVERED -> VOIDED).

    Requires VOID_WORKSHEETS and a non-empty reason. The reason, the actor
    and the time are stored on the worksheet; the status change and its
    audit row commit together. An invoice that already billed a delivered
    worksheet keeps its line item.
    """
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("A non-empty void reason is required")
    reason = reason.strip()

    ws = get_worksheet(worksheet_id, lab_id)

    permission_service.require_permission(actor_user_id, VOID_PERMISSION, lab_id=lab_id)

    if ws.status not in VOIDABLE_FROM:
        raise InvalidTransitionError(
            f"Cannot void worksheet with status {ws.status}. "
            f"Only QC_APPROVED or DELIVERED worksheets can be voided."
        )
    _ensure_not_on_draft_invoice(ws, "voided")

    old_status = ws.status
    try:
        now = utcnow()
        ws.status = VOIDED
        ws.void_reason = reason
        ws.voided_at = now
        ws.voided_by_user_id = actor_user_id
        ws.updated_at = now
        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_UPDATE,
            entity_type="Worksheet",
            entity_id=ws.id,
            old_values={"status": old_status},
            new_values={"status": VOIDED, "void_reason": reason},
            reason=reason,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Worksheet %s voided (was %s) by user %s", ws.worksheet_number, old_status, actor_user_id
    )
    return ws


def mark_delivered(ws: Worksheet, *, actor_user_id: int | None, invoice_id: int) -> None:
    """
    QC_APPROVED -> DELIVERED as part of invoice finalization.

    Runs inside the caller's transaction; does not commit.
    """
    if ws.status != "QC_APPROVED":
        raise InvalidTransitionError(
            f"Worksheet {ws.worksheet_number} must be QC_APPROVED to be delivered (is '{ws.status}')"
        )
    _apply_status(ws, "DELIVERED")
    record_audit_event(
        lab_id=ws.lab_id,
        actor_user_id=actor_user_id,
        action=ACTION_STATUS_CHANGE,
        entity_type="Worksheet",
        entity_id=ws.id,
        old_values={"status": "QC_APPROVED"},
        new_values={"status": "DELIVERED", "invoice_id": invoice_id},
    )


def revert_delivery(ws: Worksheet, *, actor_user_id: int | None, invoice_id: int) -> None:
    """
    DELIVERED -> QC_APPROVED when the invoice that delivered it is cancelled.
    Any other status, VOIDED included, is left untouched.

    Runs inside the caller's transaction; does not commit.
    """
    if ws.status != "DELIVERED":
        return
    _apply_status(ws, "QC_APPROVED")
    record_audit_event(
        lab_id=ws.lab_id,
        actor_user_id=actor_user_id,
        action=ACTION_STATUS_CHANGE,
        entity_type="Worksheet",
        entity_id=ws.id,
        old_values={"status": "DELIVERED"},
        new_values={"status": "QC_APPROVED", "invoice_id": invoice_id},
        reason="Invoice cancelled",
    )


def list_worksheets(
    lab_id: int,
    *,
    status: str | None = None,
    dentist_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(Worksheet).filter(Worksheet.lab_id == lab_id)

    if status is not None:
        validate_status(status)
        q = q.filter(Worksheet.status == status)
    if dentist_id is not None:
        q = q.filter(Worksheet.dentist_id == dentist_id)

    q = q.order_by(Worksheet.created_at.desc(), Worksheet.id.desc())

    if page is None:
        items = q.all()
        return {"items": [w.to_dict(include_products=False) for w in items], "count": len(items)}

    per_page = min(max(1, per_page or 20), 100)
    page = max(1, page)
    total = q.count()
    items = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [w.to_dict(include_products=False) for w in items],
        "count": len(items),
        "total": total,
        "page": page,
        "per_page": per_page,
    }


def list_invoiceable_worksheets(lab_id: int, dentist_id: int) -> list[Worksheet]:
    """QC_APPROVED worksheets of one dentist not yet on an active invoice."""
    candidates = (
        db.session.query(Worksheet)
        .filter(
            Worksheet.lab_id == lab_id,
            Worksheet.dentist_id == dentist_id,
            Worksheet.status == "QC_APPROVED",
        )
        .order_by(Worksheet.id)
        .all()
    )
    return [ws for ws in candidates if not ws.is_invoiced]

