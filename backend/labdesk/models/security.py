from __future__ import annotations

from ..extensions import db
from labdesk.time_utils import to_utc_z

class SecurityEvent(db.Model):
    """
    Security event log (permission denials, cross-lab access attempts,
    failed logins).

    IMMUTABLE: Never update or delete.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_lab_occurred", "lab_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    lab_id = db.Column(db.Integer, db.ForeignKey("laboratories.id"), nullable=True, index=True)  # Nullable for pre-auth events
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # PERMISSION_DENIED, LOGIN_FAILED, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g. "/api/products/bulk-update"
    action = db.Column(db.String(64), nullable=True)     # e.g. "MANAGE_PRODUCT_CATALOG"

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lab_id": self.lab_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
