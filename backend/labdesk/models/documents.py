from __future__ import annotations

from ..extensions import db
from labdesk.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-lab document sequences.

    document_type carries the scope, e.g. "WORKSHEET" or "INVOICE:2026"
    so invoice numbering restarts every calendar year.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("lab_id", "document_type", name="uq_doc_sequences_lab_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lab_id": self.lab_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
