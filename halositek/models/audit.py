"""Audit event model.

Logs payment-related state changes (transaction transitions, account
activation, admin overrides, rejected transitions) for debugging and
manual reconciliation.
"""

import uuid

from halositek.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    architect_id = db.Column(
        db.String(36),
        db.ForeignKey("architects.id", ondelete="CASCADE"),
        nullable=True,
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # None for webhook / sweeper events
    action = db.Column(db.String(255), nullable=False)  # e.g. "transaction.success"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid the declarative attribute clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    architect = db.relationship("Architect", back_populates="audit_events")
    actor = db.relationship("User", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
