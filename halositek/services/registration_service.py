"""Registration service — the architect sign-up entry point of the payment flow.

Responsible for:
- Creating the UNPAID architect and its first PENDING transaction
- Re-issuing a transaction for an UNPAID architect whose last one lapsed
- The public payment page (validation gate + lazy Snap token backfill)
- Resending the payment link email

Snap checkout creation is optional at registration time and happens only
after the architect and transaction rows are committed: when the gateway
is down the transaction still exists and the token is backfilled when the
payment page is first opened.
"""

import logging
import re

from flask import current_app
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from halositek.errors import ConflictError, NotFoundError, PaymentGatewayError, ValidationError
from halositek.extensions import db
from halositek.models.architect import Architect
from halositek.models.transaction import Transaction
from halositek.services import token_service, transaction_service
from halositek.services.audit_service import log_audit
from halositek.services.midtrans_service import get_gateway
from halositek.services.notification_service import payment_url, send_payment_link_email

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def _validate_registration(data):
    errors = []

    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip()
    phone = (data.get("phone") or "").strip()

    if not email:
        errors.append({"field": "email", "message": "Email is required"})
    elif not EMAIL_RE.match(email):
        errors.append({"field": "email", "message": "Email is invalid"})

    if not password:
        errors.append({"field": "password", "message": "Password is required"})
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors.append({
            "field": "password",
            "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        })

    if not name:
        errors.append({"field": "name", "message": "Name is required"})
    if not phone:
        errors.append({"field": "phone", "message": "Phone is required"})

    if errors:
        raise ValidationError("Validation failed", errors=errors)

    return {"email": email, "password": password, "name": name, "phone": phone}


def _customer_details(architect):
    return {
        "first_name": architect.name,
        "email": architect.email,
        "phone": architect.phone,
    }


def _has_payable_transaction(architect_id):
    latest = transaction_service.get_latest_by_architect(architect_id)
    return latest is not None and latest.effective_status() == Transaction.PENDING


def _create_pending_transaction(architect):
    """Insert the PENDING registration-fee transaction (flushed, not committed)."""
    return transaction_service.create_transaction(
        architect_id=architect.id,
        order_id=token_service.generate_order_id(),
        payment_token=token_service.generate_payment_token(),
        amount=current_app.config["ARCHITECT_REGISTRATION_FEE"],
        expired_at=token_service.get_expiry_date(),
    )


def _backfill_checkout_token(transaction, architect, gateway):
    """Open a Snap session for a committed transaction and store its token.

    Gateway failures are logged and leave gateway_token empty. Returns the
    Snap redirect_url, or None.
    """
    if not gateway.is_configured():
        logger.warning(f"Midtrans not configured, {transaction.order_id} has no Snap token")
        return None

    try:
        snap = gateway.create_transaction(
            transaction.order_id, transaction.amount, _customer_details(architect)
        )
        transaction_service.set_gateway_token(transaction, snap["checkout_token"])
        db.session.commit()
    except PaymentGatewayError as e:
        db.session.rollback()
        logger.error(f"Snap token creation failed for {transaction.order_id}: {e}")
        return None

    logger.info(f"Snap token stored for {transaction.order_id}")
    return snap["redirect_url"]


def _payment_summary(transaction, redirect_url=None):
    return {
        "order_id": transaction.order_id,
        "payment_token": transaction.payment_token,
        "amount": transaction.amount,
        "expired_at": transaction.to_dict()["expired_at"],
        "payment_url": payment_url(transaction.payment_token),
        "checkout_token": transaction.gateway_token,
        "redirect_url": redirect_url,
    }


def _send_link_quietly(architect, transaction):
    try:
        send_payment_link_email(architect, transaction)
    except Exception as e:
        logger.error(f"Failed to send payment link to {architect.email}: {e}", exc_info=True)


# ──────────────────────────────────────────────
# Registration
# ──────────────────────────────────────────────

def register_architect(data, gateway=None):
    """Register an architect and issue the registration-fee transaction.

    Args:
        data: dict with name, email, phone, password.

    Returns {"architect": {...}, "payment": {...}, "reissued": bool}.

    Raises:
        ValidationError: missing or malformed fields.
        ConflictError: the email belongs to an account that is active,
            banned, already paid, or still has a payable transaction.
    """
    gateway = gateway or get_gateway()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    fields = _validate_registration(data)

    architect = Architect.query.filter_by(email=fields["email"]).first()
    reissued = architect is not None

    if architect is not None:
        if (architect.status != Architect.UNPAID
                or transaction_service.has_successful_transaction(architect.id)):
            raise ConflictError("Email is already registered")
        if _has_payable_transaction(architect.id):
            raise ConflictError(
                "A payment link is still active for this email; use resend instead"
            )
        logger.info(f"Re-issuing registration payment for {architect.email}")

    try:
        if not reissued:
            architect = Architect(
                email=fields["email"],
                password_hash=generate_password_hash(fields["password"]),
                name=fields["name"],
                phone=fields["phone"],
                status=Architect.UNPAID,
            )
            db.session.add(architect)
            db.session.flush()  # get architect.id

        transaction = _create_pending_transaction(architect)
        log_audit(
            "architect.reissued" if reissued else "architect.registered",
            architect_id=architect.id,
            metadata={"order_id": transaction.order_id},
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if reissued:
            raise
        # A concurrent registration inserted the same email first.
        logger.warning(f"Duplicate registration for {fields['email']} lost the insert race")
        raise ConflictError("Email is already registered")
    except Exception:
        db.session.rollback()
        raise

    # Snap is called only once the rows are committed.
    redirect_url = _backfill_checkout_token(transaction, architect, gateway)

    logger.info(f"Architect {architect.email} registered, order {transaction.order_id}")
    _send_link_quietly(architect, transaction)

    return {
        "architect": architect.to_dict(),
        "payment": _payment_summary(transaction, redirect_url),
        "reissued": reissued,
    }


# ──────────────────────────────────────────────
# Payment page
# ──────────────────────────────────────────────

def get_payment_info(payment_token, gateway=None):
    """Everything the public payment page needs to open Snap checkout.

    Raises NotFoundError for an unknown token and ValidationError with the
    gate's reason for any other invalid link.
    """
    gateway = gateway or get_gateway()

    validation = transaction_service.validate_for_payment(payment_token)
    if not validation["valid"]:
        if validation["transaction"] is None:
            raise NotFoundError(validation["reason"])
        raise ValidationError(validation["reason"])

    transaction = validation["transaction"]
    architect = transaction.architect
    redirect_url = None
    if not transaction.gateway_token:
        redirect_url = _backfill_checkout_token(transaction, architect, gateway)

    return {
        "architect": {"name": architect.name, "email": architect.email},
        "transaction": {
            "order_id": transaction.order_id,
            "amount": transaction.amount,
            "status": transaction.status,
            "expired_at": transaction.to_dict()["expired_at"],
            "checkout_token": transaction.gateway_token,
            "redirect_url": redirect_url,
        },
        "payment": {
            "client_key": gateway.client_key,
            "snap_js_url": gateway.snap_js_url,
        },
    }


def resend_payment_link(email, gateway=None):
    """Email the current payment link again.

    A transaction without a Snap token gets one now; unlike the payment
    page, a gateway failure here is reported to the caller.
    """
    gateway = gateway or get_gateway()
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "email", "message": "Email is required"}],
        )

    architect = Architect.query.filter_by(email=email).first()
    if architect is None:
        raise NotFoundError("Email not found")
    if architect.status == Architect.ACTIVE:
        raise ConflictError("Account already active")
    if architect.status == Architect.BANNED:
        raise ConflictError("Account is banned")

    transaction = transaction_service.get_latest_by_architect(architect.id)
    if transaction is None:
        raise ValidationError("No pending transaction found")
    if transaction.status != Transaction.PENDING:
        raise ValidationError(f"Transaction already {transaction.status.lower()}")
    if transaction.is_past_expiry():
        raise ValidationError("Payment link has expired. Please register again.")

    if not transaction.gateway_token:
        if not gateway.is_configured():
            raise PaymentGatewayError("Payment gateway is not configured")
        snap = gateway.create_transaction(
            transaction.order_id, transaction.amount, _customer_details(architect)
        )
        transaction_service.set_gateway_token(transaction, snap["checkout_token"])
        db.session.commit()

    send_payment_link_email(architect, transaction)
    logger.info(f"Payment link resent to {architect.email} ({transaction.order_id})")

    return {
        "message": "Payment link has been resent to your email",
        "order_id": transaction.order_id,
    }
