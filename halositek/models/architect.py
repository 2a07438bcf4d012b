"""Architect model — the account that pays the registration fee.

Status lifecycle:
    UNPAID -> ACTIVE   on a successful registration payment
    *      -> BANNED   admin action only; never undone by a payment webhook
"""

import uuid

from halositek.extensions import db


class Architect(db.Model):
    __tablename__ = "architects"

    UNPAID = "UNPAID"
    ACTIVE = "ACTIVE"
    BANNED = "BANNED"

    STATUSES = [UNPAID, ACTIVE, BANNED]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=UNPAID)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    transactions = db.relationship(
        "Transaction",
        back_populates="architect",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="architect", lazy="dynamic"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "status": self.status,
        }

    def __repr__(self):
        return f"<Architect {self.email} ({self.status})>"
