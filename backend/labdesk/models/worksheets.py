from __future__ import annotations

from ..extensions import db
from labdesk.time_utils import to_utc_z


class Worksheet(db.Model):
    """
    A unit of dental lab production work (one case for one patient).

    Stored status follows the production state machine in
    services/worksheet_service.py. "Invoiced" is never stored: it is
    derived from line items on non-draft, non-cancelled invoices.
    A VOIDED worksheet reports VOIDED even when it is invoiced.
    """
    __tablename__ = "worksheets"
    __table_args__ = (
        db.UniqueConstraint("lab_id", "worksheet_number", name="uq_worksheets_lab_number"),
        db.Index("ix_worksheets_lab_status", "lab_id", "status"),
        db.Index("ix_worksheets_dentist", "dentist_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=False, index=True)
    worksheet_number = db.Column(db.String(32), nullable=False)

    dentist_id = db.Column(db.Integer, db.ForeignKey("dentists.id"), nullable=False)
    patient_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="DRAFT")
    technical_notes = db.Column(db.Text, nullable=True)

    manufacture_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    void_reason = db.Column(db.Text, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    dentist = db.relationship("Dentist", backref=db.backref("worksheets", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    voided_by = db.relationship("User", foreign_keys=[voided_by_user_id])
    products = db.relationship(
        "WorksheetProduct",
        back_populates="worksheet",
        cascade="all, delete-orphan",
        order_by="WorksheetProduct.id",
    )

    @property
    def subtotal_cents(self) -> int:
        return sum(p.line_total_cents for p in self.products)

    @property
    def is_invoiced(self) -> bool:
        from .invoices import Invoice, InvoiceLineItem

        return db.session.query(
            db.session.query(InvoiceLineItem.id)
            .join(Invoice, Invoice.id == InvoiceLineItem.invoice_id)
            .filter(
                InvoiceLineItem.worksheet_id == self.id,
                Invoice.is_draft.is_(False),
                Invoice.payment_status != "CANCELLED",
            )
            .exists()
        ).scalar()

    @property
    def effective_status(self) -> str:
        if self.status == "VOIDED":
            return self.status
        return "INVOICED" if self.is_invoiced else self.status

    def __repr__(self) -> str:
        return f"<Worksheet id={self.id} number={self.worksheet_number!r} status={self.status}>"

    def to_dict(self, include_products: bool = True) -> dict:
        data = {
            "id": self.id,
            "lab_id": self.lab_id,
            "worksheet_number": self.worksheet_number,
            "dentist_id": self.dentist_id,
            "patient_name": self.patient_name,
            "status": self.status,
            "effective_status": self.effective_status,
            "is_invoiced": self.is_invoiced,
            "technical_notes": self.technical_notes,
            "subtotal_cents": self.subtotal_cents,
            "manufacture_date": to_utc_z(self.manufacture_date),
            "completed_at": to_utc_z(self.completed_at),
            "void_reason": self.void_reason,
            "voided_at": to_utc_z(self.voided_at),
            "voided_by_user_id": self.voided_by_user_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_products:
            data["products"] = [p.to_dict() for p in self.products]
        return data


class WorksheetProduct(db.Model):
    """Product used on a worksheet, with the unit price frozen at selection time."""
    __tablename__ = "worksheet_products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    price_at_selection_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    worksheet = db.relationship("Worksheet", back_populates="products")
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.price_at_selection_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "price_at_selection_cents": self.price_at_selection_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
        }
