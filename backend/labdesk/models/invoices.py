from __future__ import annotations

from ..extensions import db
from labdesk.time_utils import to_iso_date, to_utc_z


class Invoice(db.Model):
    """
    Invoice issued to one dentist for one or more worksheets plus custom lines.

    invoice_number stays NULL while the invoice is a draft; it is allocated
    from the per-lab, per-year sequence on finalization.

    total_cents is a cached projection of the line items, re-derivable at
    any time (see invoice_service.recalculate_invoice_total).
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("lab_id", "invoice_number", name="uq_invoices_lab_number"),
        db.Index("ix_invoices_lab_status", "lab_id", "payment_status"),
        db.Index("ix_invoices_dentist", "dentist_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(32), nullable=True)

    dentist_id = db.Column(db.Integer, db.ForeignKey("dentists.id"), nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    payment_status = db.Column(db.String(16), nullable=False, default="DRAFT")
    is_draft = db.Column(db.Boolean, nullable=False, default=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    dentist = db.relationship("Dentist", backref=db.backref("invoices", lazy=True))
    created_by = db.relationship("User")
    line_items = db.relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.payment_status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "lab_id": self.lab_id,
            "invoice_number": self.invoice_number,
            "dentist_id": self.dentist_id,
            "created_by_user_id": self.created_by_user_id,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "payment_status": self.payment_status,
            "is_draft": self.is_draft,
            "total_cents": self.total_cents,
            "paid_at": to_utc_z(self.paid_at),
            "payment_method": self.payment_method,
            "notes": self.notes,
            "finalized_at": to_utc_z(self.finalized_at),
            "sent_at": to_utc_z(self.sent_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["line_items"] = [li.to_dict() for li in self.line_items]
        return data


class InvoiceLineItem(db.Model):
    """
    One billable entry on an invoice.

    line_type "worksheet" rows are derived from a worksheet; worksheet_id is
    a weak lookup reference (SET NULL on delete), never ownership.
    amount_cents = quantity * unit_price_cents and carries the sign.
    """
    __tablename__ = "invoice_line_items"
    __table_args__ = (
        db.Index("ix_invoice_line_items_worksheet", "worksheet_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id", ondelete="SET NULL"), nullable=True)

    line_type = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    invoice = db.relationship("Invoice", back_populates="line_items")
    worksheet = db.relationship("Worksheet")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "worksheet_id": self.worksheet_id,
            "line_type": self.line_type,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "amount_cents": self.amount_cents,
            "position": self.position,
            "notes": self.notes,
        }


class EmailLog(db.Model):
    """One row per outbound invoice e-mail attempt, successful or not."""
    __tablename__ = "email_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    sent_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    recipient = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False)  # SENT | FAILED
    message_id = db.Column(db.String(255), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "sent_by_user_id": self.sent_by_user_id,
            "recipient": self.recipient,
            "subject": self.subject,
            "status": self.status,
            "message_id": self.message_id,
            "error_message": self.error_message,
            "sent_at": to_utc_z(self.sent_at),
            "failed_at": to_utc_z(self.failed_at),
        }
