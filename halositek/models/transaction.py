"""Transaction model — one payment attempt for the architect registration fee.

Status is a one-way state machine:

    PENDING -> SUCCESS | FAILED | EXPIRED

Terminal states never change again. Every transition is written as a
conditional UPDATE scoped to status='PENDING' (see transaction_service),
so a webhook, the expiry sweeper and an admin override racing on the same
row resolve to whichever lands first.
"""

import uuid
from datetime import timezone

from halositek.extensions import db
from halositek.services.token_service import is_expired


def _as_utc(value):
    # SQLite returns naive datetimes; Postgres returns aware ones.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Transaction(db.Model):
    __tablename__ = "transactions"

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    STATUSES = [PENDING, SUCCESS, FAILED, EXPIRED]
    TERMINAL_STATUSES = (SUCCESS, FAILED, EXPIRED)

    PAYMENT_METHODS = [
        "BANK_TRANSFER",
        "E_WALLET",
        "CREDIT_CARD",
        "QRIS",
        "RETAIL_OUTLET",
        "OTHER",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    architect_id = db.Column(
        db.String(36),
        db.ForeignKey("architects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_id = db.Column(
        db.String(64), unique=True, nullable=False
    )  # e.g. ARCH-1704067200000-A5B9C3, sent to Midtrans
    payment_token = db.Column(
        db.String(36), unique=True, nullable=False
    )  # uuid4, used only in the public payment page URL
    gateway_token = db.Column(
        db.String(255), nullable=True
    )  # Snap token, backfilled lazily
    amount = db.Column(db.Integer, nullable=False)  # IDR, no decimals
    status = db.Column(
        db.String(20), nullable=False, default=PENDING, index=True
    )
    payment_method = db.Column(db.String(32), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=False)
    gateway_response = db.Column(db.JSON, nullable=True)  # last raw notification
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    architect = db.relationship("Architect", back_populates="transactions")

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def is_past_expiry(self, now=None):
        """True once the grace period is over, whatever the stored status."""
        return is_expired(self.expired_at, now)

    def effective_status(self, now=None):
        """Status for decision purposes.

        A PENDING row past expired_at reads as EXPIRED even before the
        sweeper has physically flipped it.
        """
        if self.status == self.PENDING and self.is_past_expiry(now):
            return self.EXPIRED
        return self.status

    def to_dict(self, include_architect=False):
        data = {
            "id": self.id,
            "architect_id": self.architect_id,
            "order_id": self.order_id,
            "payment_token": self.payment_token,
            "gateway_token": self.gateway_token,
            "amount": self.amount,
            "status": self.status,
            "effective_status": self.effective_status(),
            "payment_method": self.payment_method,
            "paid_at": _isoformat(self.paid_at),
            "expired_at": _isoformat(self.expired_at),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
        if include_architect and self.architect is not None:
            data["architect"] = self.architect.to_dict()
        return data

    def __repr__(self):
        return f"<Transaction {self.order_id} ({self.status})>"


def _isoformat(value):
    value = _as_utc(value)
    return value.isoformat() if value else None
