"""Admin user model.

Back-office accounts that can inspect and override transactions.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from halositek.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    is_admin = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )

    def __repr__(self):
        return f"<User {self.email}>"
