from __future__ import annotations

from ..extensions import db
from labdesk.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog entry for a billable lab product (crown, bridge unit, denture...).

    Soft delete: bulk-delete sets is_active=False and stamps deleted_at;
    rows stay so historical worksheets keep their product references.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("lab_id", "code", name="uq_products_lab_code"),
        db.Index("ix_products_lab_active", "lab_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=False, index=True)

    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=False, default="OTHER", index=True)

    # Price in cents (integer for precision)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=False, default="piece")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lab_id": self.lab_id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "unit": self.unit,
            "is_active": self.is_active,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
