from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """Append-only record of document and payment lifecycle events."""
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., DOCUMENT_TRANSFERRED, PAYMENT_COMMITTED
    event_category = db.Column(db.String(32), nullable=False, index=True)  # documents, transfers, settlement

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(64), nullable=False)  # document, payment
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "document_id": self.document_id,
            "payment_id": self.payment_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
