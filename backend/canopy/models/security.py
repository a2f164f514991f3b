from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from canopy.time_utils import to_utc_z


class ImmutableRecordError(Exception):
    """Raised when an append-only audit row is modified."""
    pass


def append_only(model, label: str):
    """Make ORM updates and deletes of model rows raise ImmutableRecordError."""
    def _block(mapper, connection, target):
        raise ImmutableRecordError(f"{label} are immutable")

    event.listen(model, "before_update", _block)
    event.listen(model, "before_delete", _block)
    return model


class SecurityEvent(db.Model):
    """
    Denied or suspicious access: permission denials, failed logins,
    cross-tenant site/user probes (including ones from the sync orchestrator
    and CLI, which have no request and leave resource null).

    org_id is the tenant the caller acted as; null only for failed logins.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_org_occurred", "org_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    resource = db.Column(db.String(128), nullable=True)  # request path
    action = db.Column(db.String(64), nullable=True)  # HTTP method or permission code
    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }


append_only(SecurityEvent, "Security events")
