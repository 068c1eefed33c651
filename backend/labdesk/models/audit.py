from __future__ import annotations

import json

from ..extensions import db
from labdesk.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only record of every state-changing business action.

    Rows are written inside the same transaction as the change they
    describe. old_values / new_values hold JSON snapshots of the fields
    that changed.

    IMMUTABLE: Never update or delete.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_lab_occurred", "lab_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    action = db.Column(db.String(32), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    old_values = db.Column(db.Text, nullable=True)
    new_values = db.Column(db.Text, nullable=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    actor = db.relationship("User", backref=db.backref("audit_logs", lazy=True))

    @property
    def old_snapshot(self) -> dict | None:
        return json.loads(self.old_values) if self.old_values else None

    @property
    def new_snapshot(self) -> dict | None:
        return json.loads(self.new_values) if self.new_values else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lab_id": self.lab_id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_values": self.old_snapshot,
            "new_values": self.new_snapshot,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
