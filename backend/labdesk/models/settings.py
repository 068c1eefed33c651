from __future__ import annotations

from ..extensions import db
from labdesk.time_utils import to_utc_z


class BankAccount(db.Model):
    """
    Laboratory bank account printed on invoices.

    At most one account per lab is primary; display_order drives the
    order accounts appear in on invoices.
    """
    __tablename__ = "bank_accounts"
    __table_args__ = (
        db.UniqueConstraint("lab_id", "iban", name="uq_bank_accounts_lab_iban"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=False, index=True)

    bank_name = db.Column(db.String(255), nullable=False)
    iban = db.Column(db.String(34), nullable=False)
    swift_bic = db.Column(db.String(11), nullable=True)
    account_type = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lab_id": self.lab_id,
            "bank_name": self.bank_name,
            "iban": self.iban,
            "swift_bic": self.swift_bic,
            "account_type": self.account_type,
            "is_active": self.is_active,
            "is_primary": self.is_primary,
            "display_order": self.display_order,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
