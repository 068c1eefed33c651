# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Lifecycle Manager

================================================================================
PURPOSE: Build invoices from worksheets + custom lines and move them through
payment statuses
================================================================================

PAYMENT STATUSES:
    DRAFT -> SENT                    (successful e-mail dispatch only)
    DRAFT | SENT draft -> FINALIZED  (finalize: numbered, worksheets DELIVERED)
    FINALIZED | SENT | VIEWED | OVERDUE -> PAID | OVERDUE | VIEWED
    any non-PAID -> CANCELLED        (DELIVERED worksheets revert to QC_APPROVED)

    is_draft is the editing flag. An invoice stays a draft (no number,
    editable, deletable) until it is finalized, even after being e-mailed.
    A finalized invoice never returns to DRAFT.

LINE ITEMS:
    worksheet   one per worksheet, quantity 1, unit price = worksheet subtotal
    shipping    amount >= 0
    discount    amount <= 0
    adjustment  any sign
    custom      any sign
    amount_cents = quantity * unit_price_cents; quantity >= 1

TOTALS:
    total_cents is a cached projection: recalculate_invoice_total() re-derives
    it from the persisted lines at any time, and every mutation here refreshes
    it before committing.

================================================================================
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Literal

from flask import current_app

from ..extensions import db
from ..models import Invoice, InvoiceLineItem, Worksheet, Dentist, BankAccount, Laboratory
from ..validation import (
    ValidationError,
    ConflictError,
    normalize_keys,
    parse_date,
    parse_int,
    validate_email_address,
)
from . import notification_service
from .notification_service import DispatchError
from .audit_service import (
    record_audit_event,
    ACTION_INVOICE_GENERATE,
    ACTION_STATUS_CHANGE,
    ACTION_UPDATE,
    ACTION_DELETE,
    ACTION_EMAIL_SEND,
)
from .document_service import next_invoice_number
from .tenant_service import get_in_lab, get_many_in_lab
from .worksheet_service import mark_delivered, revert_delivery
from labdesk.time_utils import parse_iso_datetime, utcnow


VALID_PAYMENT_STATUSES = {"DRAFT", "FINALIZED", "SENT", "VIEWED", "PAID", "OVERDUE", "CANCELLED"}
PaymentStatus = Literal["DRAFT", "FINALIZED", "SENT", "VIEWED", "PAID", "OVERDUE", "CANCELLED"]

# Targets reachable through update_invoice_payment (finalized invoices only)
PAYMENT_TRANSITIONS: dict[str, set[str]] = {
    "FINALIZED": {"VIEWED", "PAID", "OVERDUE", "CANCELLED"},
    "SENT": {"VIEWED", "PAID", "OVERDUE", "CANCELLED"},
    "VIEWED": {"PAID", "OVERDUE", "CANCELLED"},
    "OVERDUE": {"PAID", "CANCELLED"},
    "PAID": set(),
    "CANCELLED": set(),
}

VALID_PAYMENT_METHODS = {"BANK_TRANSFER", "CASH", "CARD", "OTHER"}

LINE_TYPE_WORKSHEET = "worksheet"
CUSTOM_LINE_TYPES = {"shipping", "discount", "adjustment", "custom"}

MAX_LINE_QUANTITY = 10_000
MAX_ABS_UNIT_PRICE_CENTS = 999_999_999


class DentistMismatchError(ValidationError):
    """A worksheet on the invoice belongs to a different dentist."""


class NoRecipientError(ValidationError):
    """Neither an override nor the dentist's e-mail address is available."""


class InvoiceStateError(ValidationError):
    """The invoice is in the wrong state for the requested operation."""


# -----------------------------------------------------------------------------
# Totals
# -----------------------------------------------------------------------------

def recalculate_invoice_total(invoice: Invoice) -> int:
    """Pure: sum of signed line amounts. Touches nothing."""
    return sum(li.amount_cents for li in invoice.line_items)


def refresh_invoice_total(invoice: Invoice) -> int:
    invoice.total_cents = recalculate_invoice_total(invoice)
    return invoice.total_cents


def find_total_mismatches(lab_id: int | None = None) -> list[dict]:
    """
    Re-derive every invoice total from its lines and report discrepancies.

    Any row returned here is a bug; used by `flask invoices verify-totals`.
    """
    q = db.session.query(Invoice)
    if lab_id is not None:
        q = q.filter(Invoice.lab_id == lab_id)

    mismatches = []
    for invoice in q.order_by(Invoice.id).all():
        computed = recalculate_invoice_total(invoice)
        if computed != invoice.total_cents:
            mismatches.append({
                "invoice_id": invoice.id,
                "lab_id": invoice.lab_id,
                "invoice_number": invoice.invoice_number,
                "stored_total_cents": invoice.total_cents,
                "computed_total_cents": computed,
            })
    return mismatches


# -----------------------------------------------------------------------------
# Line item construction
# -----------------------------------------------------------------------------

def build_custom_line(entry: Any, position: int) -> InvoiceLineItem:
    """
    Validate one custom line entry and return an unsaved InvoiceLineItem.

    Accepted keys (snake_case or camelCase): line_type (alias "kind"),
    description, quantity, unit_price_cents, notes.
    """
    if not isinstance(entry, dict):
        raise ValidationError("custom line items must be objects")
    data = normalize_keys(entry, {"kind": "line_type", "type": "line_type"})

    line_type = (data.get("line_type") or "custom").strip().lower()
    if line_type not in CUSTOM_LINE_TYPES:
        raise ValidationError(
            f"line_type must be one of: {', '.join(sorted(CUSTOM_LINE_TYPES))}"
        )

    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("Line item description is required")
    if len(description.strip()) > 500:
        raise ValidationError("Line item description exceeds max length 500")

    quantity = parse_int(data.get("quantity", 1), field="quantity")
    if not 1 <= quantity <= MAX_LINE_QUANTITY:
        raise ValidationError(f"quantity must be between 1 and {MAX_LINE_QUANTITY}")

    if data.get("unit_price_cents") is None:
        raise ValidationError("unit_price_cents is required")
    unit_price = parse_int(data["unit_price_cents"], field="unit_price_cents")
    if abs(unit_price) > MAX_ABS_UNIT_PRICE_CENTS:
        raise ValidationError("unit_price_cents is out of range")

    amount = quantity * unit_price
    if line_type == "discount" and amount > 0:
        raise ValidationError("discount lines must carry a zero or negative amount")
    if line_type == "shipping" and amount < 0:
        raise ValidationError("shipping lines must carry a zero or positive amount")

    return InvoiceLineItem(
        line_type=line_type,
        description=description.strip(),
        quantity=quantity,
        unit_price_cents=unit_price,
        amount_cents=amount,
        position=position,
        notes=data.get("notes"),
    )


def build_worksheet_line(ws: Worksheet, position: int) -> InvoiceLineItem:
    subtotal = ws.subtotal_cents
    description = ws.worksheet_number
    if ws.patient_name:
        description = f"{ws.worksheet_number} - {ws.patient_name}"
    return InvoiceLineItem(
        worksheet_id=ws.id,
        line_type=LINE_TYPE_WORKSHEET,
        description=description,
        quantity=1,
        unit_price_cents=subtotal,
        amount_cents=subtotal,
        position=position,
    )


def _worksheet_on_other_invoice(ws: Worksheet, exclude_invoice_id: int | None) -> bool:
    q = (
        db.session.query(InvoiceLineItem.id)
        .join(Invoice, Invoice.id == InvoiceLineItem.invoice_id)
        .filter(
            InvoiceLineItem.worksheet_id == ws.id,
            Invoice.payment_status != "CANCELLED",
        )
    )
    if exclude_invoice_id is not None:
        q = q.filter(Invoice.id != exclude_invoice_id)
    return db.session.query(q.exists()).scalar()


def _load_invoiceable_worksheets(
    lab_id: int,
    dentist_id: int,
    worksheet_ids: list[int],
    *,
    exclude_invoice_id: int | None = None,
) -> list[Worksheet]:
    """
    Resolve worksheet ids in order of checks: existence, dentist, status.
    """
    worksheets = get_many_in_lab(Worksheet, worksheet_ids, lab_id, label="Worksheet")

    mismatched = [ws.worksheet_number for ws in worksheets if ws.dentist_id != dentist_id]
    if mismatched:
        raise DentistMismatchError(
            f"Worksheets {', '.join(mismatched)} do not belong to dentist {dentist_id}"
        )

    for ws in worksheets:
        if ws.status != "QC_APPROVED":
            raise ValidationError(
                f"Worksheet {ws.worksheet_number} must be QC_APPROVED to be invoiced (is '{ws.status}')"
            )
        if not ws.products:
            raise ValidationError(f"Worksheet {ws.worksheet_number} has no products")
        if _worksheet_on_other_invoice(ws, exclude_invoice_id):
            raise ConflictError(f"Worksheet {ws.worksheet_number} is already on an invoice")

    return worksheets


def _parse_worksheet_ids(value: Any) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("worksheet_ids must be a list")
    ids: list[int] = []
    for raw in value:
        wid = parse_int(raw, field="worksheet_ids")
        if wid <= 0:
            raise ValidationError("worksheet_ids must contain positive ids")
        if wid in ids:
            raise ValidationError(f"Worksheet {wid} is listed twice")
        ids.append(wid)
    return ids


def _compose_lines(worksheets: list[Worksheet], custom_line_items: list | None) -> list[InvoiceLineItem]:
    if custom_line_items is not None and not isinstance(custom_line_items, list):
        raise ValidationError("custom_line_items must be a list")

    lines = [build_worksheet_line(ws, pos) for pos, ws in enumerate(worksheets)]
    offset = len(lines)
    for i, entry in enumerate(custom_line_items or []):
        lines.append(build_custom_line(entry, offset + i))

    if not lines:
        raise ValidationError("An invoice needs at least one worksheet or line item")
    return lines


def _due_date_for(dentist: Dentist, invoice_date: date) -> date:
    terms = dentist.payment_terms_days
    if terms is None:
        terms = current_app.config.get("DEFAULT_PAYMENT_TERMS_DAYS", 30)
    return invoice_date + timedelta(days=terms)


def _today() -> date:
    return utcnow().date()


# -----------------------------------------------------------------------------
# Lifecycle operations
# -----------------------------------------------------------------------------

def get_invoice(invoice_id: int, lab_id: int) -> Invoice:
    return get_in_lab(Invoice, invoice_id, lab_id)


def create_invoice(
    *,
    lab_id: int,
    dentist_id: int,
    worksheet_ids: list | None = None,
    custom_line_items: list | None = None,
    invoice_date: date | str | None = None,
    finalize: bool = False,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Build an invoice from worksheets plus custom lines.

    Checks run before anything is written, in this order:
      1. dentist exists in the lab                      NotFoundError
      2. every worksheet exists in the lab              NotFoundError
      3. every worksheet belongs to dentist_id          DentistMismatchError
      4. worksheets are QC_APPROVED and not invoiced    ValidationError / ConflictError
      5. custom lines are well formed                   ValidationError

    Invoice, lines and audit rows commit together. With finalize=True the
    finalization runs inside the same transaction.
    """
    if not isinstance(finalize, bool):
        raise ValidationError("finalize must be a boolean")

    dentist = get_in_lab(Dentist, dentist_id, lab_id, label="Dentist")
    ids = _parse_worksheet_ids(worksheet_ids)
    worksheets = _load_invoiceable_worksheets(lab_id, dentist.id, ids)
    lines = _compose_lines(worksheets, custom_line_items)

    issue_date = parse_date(invoice_date, field="invoice_date") if invoice_date else _today()

    try:
        invoice = Invoice(
            lab_id=lab_id,
            dentist_id=dentist.id,
            created_by_user_id=actor_user_id,
            invoice_date=issue_date,
            due_date=_due_date_for(dentist, issue_date),
            payment_status="DRAFT",
            is_draft=True,
            notes=notes,
        )
        invoice.line_items.extend(lines)
        refresh_invoice_total(invoice)
        db.session.add(invoice)
        db.session.flush()

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_INVOICE_GENERATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            new_values={
                "dentist_id": dentist.id,
                "worksheet_ids": [ws.id for ws in worksheets],
                "line_count": len(lines),
                "total_cents": invoice.total_cents,
                "payment_status": invoice.payment_status,
            },
        )

        if finalize:
            _finalize(invoice, actor_user_id=actor_user_id)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Invoice %s created for dentist %s (%s lines, total %s cents, finalized=%s)",
        invoice.id, dentist.id, len(lines), invoice.total_cents, finalize,
    )
    return invoice


def update_draft_invoice(
    *,
    invoice_id: int,
    lab_id: int,
    patch: dict,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Edit a draft: invoice_date, due_date, notes, and/or replace its lines.

    When worksheet_ids or custom_line_items is present the corresponding
    lines are rebuilt with the same checks as create_invoice.
    """
    invoice = get_invoice(invoice_id, lab_id)
    if not invoice.is_draft:
        raise InvoiceStateError(f"Invoice {invoice.invoice_number} is finalized and cannot be edited")

    patch = normalize_keys(patch or {})
    allowed = {"invoice_date", "due_date", "notes", "worksheet_ids", "custom_line_items"}
    unknown = sorted(set(patch) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    old_values = {
        "invoice_date": invoice.invoice_date,
        "due_date": invoice.due_date,
        "total_cents": invoice.total_cents,
    }

    if "worksheet_ids" in patch:
        ids = _parse_worksheet_ids(patch["worksheet_ids"])
        worksheets = _load_invoiceable_worksheets(
            lab_id, invoice.dentist_id, ids, exclude_invoice_id=invoice.id
        )
    else:
        worksheets = [li.worksheet for li in invoice.line_items if li.line_type == LINE_TYPE_WORKSHEET and li.worksheet]

    rebuild = "worksheet_ids" in patch or "custom_line_items" in patch
    if rebuild:
        if "custom_line_items" in patch:
            custom = patch["custom_line_items"]
            lines = _compose_lines(worksheets, custom)
        else:
            kept_custom = [li for li in invoice.line_items if li.line_type != LINE_TYPE_WORKSHEET]
            lines = [build_worksheet_line(ws, pos) for pos, ws in enumerate(worksheets)]
            for i, li in enumerate(kept_custom):
                li.position = len(lines) + i
                lines.append(li)
            if not lines:
                raise ValidationError("An invoice needs at least one worksheet or line item")

    new_invoice_date = parse_date(patch["invoice_date"], field="invoice_date") if patch.get("invoice_date") else None
    new_due_date = parse_date(patch["due_date"], field="due_date") if patch.get("due_date") else None

    try:
        if rebuild:
            invoice.line_items[:] = lines
        if new_invoice_date:
            invoice.invoice_date = new_invoice_date
            if not new_due_date:
                invoice.due_date = _due_date_for(invoice.dentist, new_invoice_date)
        if new_due_date:
            invoice.due_date = new_due_date
        if "notes" in patch:
            invoice.notes = patch["notes"]
        if invoice.due_date and invoice.due_date < invoice.invoice_date:
            raise ValidationError("due_date cannot be before invoice_date")

        refresh_invoice_total(invoice)
        invoice.updated_at = utcnow()
        db.session.flush()

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_UPDATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            old_values=old_values,
            new_values={
                "invoice_date": invoice.invoice_date,
                "due_date": invoice.due_date,
                "total_cents": invoice.total_cents,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return invoice


def _finalize(invoice: Invoice, *, actor_user_id: int | None, invoice_date: date | None = None) -> None:
    """Finalization steps; runs inside the caller's transaction."""
    if not invoice.is_draft:
        raise InvoiceStateError(f"Invoice {invoice.invoice_number} is already finalized")
    if invoice.payment_status == "CANCELLED":
        raise InvoiceStateError("Cancelled invoices cannot be finalized")
    if not invoice.line_items:
        raise InvoiceStateError("An invoice needs at least one line item to be finalized")

    if invoice_date is not None:
        invoice.invoice_date = invoice_date
        invoice.due_date = _due_date_for(invoice.dentist, invoice_date)

    worksheets = [li.worksheet for li in invoice.line_items if li.line_type == LINE_TYPE_WORKSHEET and li.worksheet]
    for ws in worksheets:
        if ws.dentist_id != invoice.dentist_id:
            raise DentistMismatchError(
                f"Worksheet {ws.worksheet_number} does not belong to dentist {invoice.dentist_id}"
            )
        if ws.is_invoiced:
            raise ConflictError(f"Worksheet {ws.worksheet_number} is already invoiced")

    old_status = invoice.payment_status
    prefix = current_app.config.get("INVOICE_NUMBER_PREFIX", "RAC")
    invoice.invoice_number = next_invoice_number(invoice.lab_id, invoice.invoice_date.year, prefix)
    invoice.is_draft = False
    if invoice.payment_status == "DRAFT":
        invoice.payment_status = "FINALIZED"
    invoice.finalized_at = utcnow()
    invoice.updated_at = invoice.finalized_at
    refresh_invoice_total(invoice)

    for ws in worksheets:
        mark_delivered(ws, actor_user_id=actor_user_id, invoice_id=invoice.id)

    record_audit_event(
        lab_id=invoice.lab_id,
        actor_user_id=actor_user_id,
        action=ACTION_STATUS_CHANGE,
        entity_type="Invoice",
        entity_id=invoice.id,
        old_values={"payment_status": old_status, "is_draft": True},
        new_values={
            "payment_status": invoice.payment_status,
            "is_draft": False,
            "invoice_number": invoice.invoice_number,
            "total_cents": invoice.total_cents,
        },
    )


def finalize_invoice(
    *,
    invoice_id: int,
    lab_id: int,
    invoice_date: date | str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    invoice = get_invoice(invoice_id, lab_id)
    issue_date = parse_date(invoice_date, field="invoice_date") if invoice_date else None

    try:
        _finalize(invoice, actor_user_id=actor_user_id, invoice_date=issue_date)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Invoice %s finalized as %s", invoice.id, invoice.invoice_number)
    return invoice


def _format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100:,}.{cents % 100:02d}"


def render_invoice_email(invoice: Invoice) -> tuple[str, str]:
    """Plain-text subject and body for an invoice e-mail."""
    lab = db.session.get(Laboratory, invoice.lab_id)
    currency = current_app.config.get("INVOICE_CURRENCY", "EUR")
    label = invoice.invoice_number or f"draft #{invoice.id}"

    subject = f"Invoice {label} from {lab.name}"

    lines = [
        f"Dear {invoice.dentist.dentist_name},",
        "",
        f"please find below invoice {label} dated {invoice.invoice_date.isoformat()}.",
        "",
    ]
    for li in invoice.line_items:
        lines.append(
            f"  {li.description:<40} {li.quantity:>4} x {_format_cents(li.unit_price_cents):>12}"
            f" = {_format_cents(li.amount_cents):>12}"
        )
    lines.append("")
    lines.append(f"Total: {_format_cents(invoice.total_cents)} {currency}")
    if invoice.due_date:
        lines.append(f"Due date: {invoice.due_date.isoformat()}")

    accounts = (
        db.session.query(BankAccount)
        .filter_by(lab_id=invoice.lab_id, is_active=True)
        .order_by(BankAccount.is_primary.desc(), BankAccount.display_order, BankAccount.id)
        .all()
    )
    if accounts:
        lines.append("")
        lines.append("Payment details:")
        for account in accounts:
            bic = f" (BIC {account.swift_bic})" if account.swift_bic else ""
            lines.append(f"  {account.bank_name}: {account.iban}{bic}")
        if invoice.invoice_number:
            lines.append(f"  Reference: {invoice.invoice_number}")

    lines.extend(["", "Kind regards,", lab.name])
    return subject, "\n".join(lines)


def send_invoice_email(
    *,
    invoice_id: int,
    lab_id: int,
    recipient_override: str | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """
    E-mail an invoice to its dentist (or to recipient_override).

    - NotFoundError if the invoice does not exist in the lab
    - NoRecipientError if neither override nor dentist e-mail is present
    - DispatchError (after the FAILED EmailLog row is committed) when the
      dispatcher reports failure; the invoice status is left unchanged
    - On success a DRAFT invoice becomes SENT exactly once; an EMAIL_SEND
      audit row is written for every successful send
    """
    invoice = get_invoice(invoice_id, lab_id)

    if recipient_override is not None and str(recipient_override).strip():
        recipient = validate_email_address(recipient_override, field="recipient_email")
    elif invoice.dentist and invoice.dentist.email:
        recipient = invoice.dentist.email.strip()
    else:
        raise NoRecipientError("No recipient email address available")

    subject, body = render_invoice_email(invoice)

    try:
        result, email_log = notification_service.dispatch(
            lab_id=lab_id,
            recipient=recipient,
            subject=subject,
            body=body,
            invoice_id=invoice.id,
            sent_by_user_id=actor_user_id,
        )

        if result.success:
            old_status = invoice.payment_status
            if invoice.payment_status == "DRAFT":
                invoice.payment_status = "SENT"
                invoice.sent_at = utcnow()
                invoice.updated_at = invoice.sent_at
            db.session.flush()

            record_audit_event(
                lab_id=lab_id,
                actor_user_id=actor_user_id,
                action=ACTION_EMAIL_SEND,
                entity_type="Invoice",
                entity_id=invoice.id,
                old_values={"payment_status": old_status},
                new_values={
                    "payment_status": invoice.payment_status,
                    "recipient": recipient,
                    "message_id": result.message_id,
                    "email_log_id": email_log.id,
                },
            )

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if not result.success:
        raise DispatchError(result.error or "E-mail delivery failed")

    current_app.logger.info("Invoice %s e-mailed to %s", invoice.id, recipient)
    return {
        "invoice": invoice,
        "message_id": result.message_id,
        "sent_to": recipient,
    }


def update_invoice_payment(
    *,
    invoice_id: int,
    lab_id: int,
    payment_status: str,
    payment_method: str | None = None,
    paid_at: str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Record a payment-status change on a finalized invoice.

    DRAFT and SENT are never valid targets here: SENT is reached only by
    e-mail dispatch and nothing returns to DRAFT.
    """
    if payment_status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment_status '{payment_status}'. Must be one of: {', '.join(sorted(VALID_PAYMENT_STATUSES))}"
        )
    if payment_method is not None and payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(sorted(VALID_PAYMENT_METHODS))}"
        )

    if payment_status == "CANCELLED":
        return cancel_invoice(invoice_id=invoice_id, lab_id=lab_id, actor_user_id=actor_user_id)

    invoice = get_invoice(invoice_id, lab_id)

    if invoice.is_draft:
        raise InvoiceStateError("Finalize the invoice before recording payment status")
    if payment_status not in PAYMENT_TRANSITIONS.get(invoice.payment_status, set()):
        raise InvoiceStateError(
            f"Cannot change payment status from '{invoice.payment_status}' to '{payment_status}'"
        )

    paid_at_dt = None
    if payment_status == "PAID":
        try:
            paid_at_dt = parse_iso_datetime(paid_at) if paid_at else utcnow()
        except ValueError:
            raise ValidationError("paid_at must be an ISO-8601 datetime")

    old_status = invoice.payment_status
    try:
        invoice.payment_status = payment_status
        if paid_at_dt is not None:
            invoice.paid_at = paid_at_dt
            invoice.payment_method = payment_method
        invoice.updated_at = utcnow()

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_STATUS_CHANGE,
            entity_type="Invoice",
            entity_id=invoice.id,
            old_values={"payment_status": old_status},
            new_values={
                "payment_status": payment_status,
                "payment_method": invoice.payment_method,
                "paid_at": invoice.paid_at,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return invoice


def cancel_invoice(
    *,
    invoice_id: int,
    lab_id: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Cancel an invoice. Worksheets it delivered go back to QC_APPROVED so
    they can be invoiced again.
    """
    invoice = get_invoice(invoice_id, lab_id)

    if invoice.payment_status == "CANCELLED":
        raise InvoiceStateError("Invoice is already cancelled")
    if invoice.payment_status == "PAID":
        raise InvoiceStateError("Paid invoices cannot be cancelled")

    old_status = invoice.payment_status
    try:
        invoice.payment_status = "CANCELLED"
        invoice.cancelled_at = utcnow()
        invoice.updated_at = invoice.cancelled_at

        if not invoice.is_draft:
            for li in invoice.line_items:
                if li.line_type == LINE_TYPE_WORKSHEET and li.worksheet is not None:
                    revert_delivery(li.worksheet, actor_user_id=actor_user_id, invoice_id=invoice.id)

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_STATUS_CHANGE,
            entity_type="Invoice",
            entity_id=invoice.id,
            old_values={"payment_status": old_status},
            new_values={"payment_status": "CANCELLED"},
            reason=reason,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Invoice %s cancelled (was %s)", invoice.id, old_status)
    return invoice


def delete_draft_invoice(*, invoice_id: int, lab_id: int, actor_user_id: int | None = None) -> None:
    invoice = get_invoice(invoice_id, lab_id)
    if not invoice.is_draft:
        raise InvoiceStateError("Only draft invoices can be deleted")

    snapshot = {
        "dentist_id": invoice.dentist_id,
        "payment_status": invoice.payment_status,
        "total_cents": invoice.total_cents,
        "worksheet_ids": [li.worksheet_id for li in invoice.line_items if li.worksheet_id],
    }
    try:
        db.session.delete(invoice)
        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_DELETE,
            entity_type="Invoice",
            entity_id=invoice_id,
            old_values=snapshot,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def list_invoices(
    lab_id: int,
    *,
    payment_status: str | None = None,
    dentist_id: int | None = None,
    is_draft: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(Invoice).filter(Invoice.lab_id == lab_id)

    if payment_status is not None:
        if payment_status not in VALID_PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment_status '{payment_status}'")
        q = q.filter(Invoice.payment_status == payment_status)
    if dentist_id is not None:
        q = q.filter(Invoice.dentist_id == dentist_id)
    if is_draft is not None:
        q = q.filter(Invoice.is_draft.is_(is_draft))

    q = q.order_by(Invoice.invoice_date.desc(), Invoice.id.desc())

    if page is None:
        items = q.all()
        return {"items": [i.to_dict(include_lines=False) for i in items], "count": len(items)}

    per_page = min(max(1, per_page or 20), 100)
    page = max(1, page)
    total = q.count()
    items = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [i.to_dict(include_lines=False) for i in items],
        "count": len(items),
        "total": total,
        "page": page,
        "per_page": per_page,
    }
