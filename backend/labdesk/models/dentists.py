from __future__ import annotations

from ..extensions import db
from labdesk.time_utils import to_utc_z


class Dentist(db.Model):
    """A dental clinic / dentist the laboratory produces work for and invoices."""
    __tablename__ = "dentists"
    __table_args__ = (
        db.Index("ix_dentists_lab_active", "lab_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=False, index=True)

    clinic_name = db.Column(db.String(255), nullable=False)
    dentist_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.Text, nullable=True)
    city = db.Column(db.String(128), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)
    country = db.Column(db.String(64), nullable=True)

    payment_terms_days = db.Column(db.Integer, nullable=False, default=30)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Dentist id={self.id} clinic={self.clinic_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lab_id": self.lab_id,
            "clinic_name": self.clinic_name,
            "dentist_name": self.dentist_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
            "payment_terms_days": self.payment_terms_days,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
