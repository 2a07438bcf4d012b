"""Webhook service — reconciles Midtrans notifications with local state.

Processing order for every notification:

1. Verify the signature. Invalid -> AuthenticationError, no writes.
2. Look up the transaction by order_id. Missing -> NotFoundError.
3. Already SUCCESS -> short-circuit as "already processed", no writes.
4. Store the raw payload on the transaction.
5. Apply the status mapping (SUCCESS activates the account), commit, then
   run post-commit hooks (welcome / failure emails).
6. Return a result dict.

Midtrans retries on non-2xx, so errors before step 3 leave the database
untouched and are safe to retry. Email failures in step 5 are logged and
swallowed.
"""

import logging
from functools import partial

from halositek.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from halositek.extensions import db
from halositek.models.transaction import Transaction
from halositek.services import account_service, transaction_service
from halositek.services.midtrans_service import get_gateway
from halositek.services.notification_service import (
    send_payment_failed_email,
    send_welcome_email,
)

logger = logging.getLogger(__name__)

SIGNATURE_FIELDS = ("order_id", "status_code", "gross_amount", "signature_key")


# ──────────────────────────────────────────────
# Vocabulary mapping
# ──────────────────────────────────────────────

def map_notification(transaction_status, fraud_status=None):
    """Map Midtrans transaction_status / fraud_status to a local status.

    Returns (status, should_activate).

        capture + accept       -> SUCCESS, activate
        capture + challenge    -> PENDING
        capture + anything     -> FAILED
        settlement             -> SUCCESS, activate
        pending                -> PENDING
        deny / cancel / expire -> FAILED
        anything else          -> PENDING (logged as unrecognized)
    """
    transaction_status = (transaction_status or "").lower()
    fraud_status = (fraud_status or "").lower()

    if transaction_status == "capture":
        if fraud_status == "accept":
            return Transaction.SUCCESS, True
        if fraud_status == "challenge":
            return Transaction.PENDING, False
        return Transaction.FAILED, False

    if transaction_status == "settlement":
        return Transaction.SUCCESS, True

    if transaction_status == "pending":
        return Transaction.PENDING, False

    if transaction_status in ("deny", "cancel", "expire"):
        return Transaction.FAILED, False

    logger.warning(
        f"Unrecognized Midtrans transaction_status={transaction_status!r} "
        f"fraud_status={fraud_status!r}, treating as PENDING"
    )
    return Transaction.PENDING, False


def verify_notification(notification, gateway=None):
    """True if the notification carries every signed field and a valid signature."""
    gateway = gateway or get_gateway()
    missing = [f for f in SIGNATURE_FIELDS if not notification.get(f)]
    if missing:
        logger.warning(f"Webhook missing signature fields: {', '.join(missing)}")
        return False

    return gateway.verify_signature(
        notification["order_id"],
        notification["status_code"],
        notification["gross_amount"],
        notification["signature_key"],
    )


# ──────────────────────────────────────────────
# Post-commit hooks
# ──────────────────────────────────────────────

def run_post_commit_hooks(hooks):
    """Run each hook in order. A failing hook is logged and does not stop the rest.

    Returns the number of hooks that raised.
    """
    failures = 0
    for hook in hooks:
        try:
            hook()
        except Exception as e:
            failures += 1
            name = getattr(getattr(hook, "func", hook), "__name__", repr(hook))
            logger.error(f"Post-commit hook {name} failed: {e}", exc_info=True)
    return failures


# ──────────────────────────────────────────────
# Reconciliation
# ──────────────────────────────────────────────

def process_notification(notification, gateway=None, now=None):
    """Reconcile one Midtrans notification.

    Returns {"order_id", "status", "already_processed", "message"}.

    Raises ValidationError, AuthenticationError, NotFoundError before any
    write; ConflictError when the notification would move a terminal
    transaction (the payload and the conflict audit are still committed).
    """
    gateway = gateway or get_gateway()

    if not isinstance(notification, dict):
        raise ValidationError("Notification body must be a JSON object")

    order_id = notification.get("order_id")
    if not order_id:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "order_id", "message": "order_id is required"}],
        )

    # --- 1. Signature ---
    if not verify_notification(notification, gateway):
        logger.warning(f"Invalid webhook signature for order {order_id}")
        raise AuthenticationError("Invalid webhook signature")

    status, should_activate = map_notification(
        notification.get("transaction_status"),
        notification.get("fraud_status"),
    )
    logger.info(
        f"Webhook for {order_id}: transaction_status="
        f"{notification.get('transaction_status')} -> {status}"
    )

    # --- 2. Lookup ---
    transaction = transaction_service.find_by_order_id(order_id)
    if transaction is None:
        logger.error(f"Webhook for unknown order {order_id}")
        raise NotFoundError(f"Transaction with order ID {order_id} not found")

    # --- 3. Idempotency ---
    if transaction.status == Transaction.SUCCESS:
        logger.info(f"Duplicate webhook for {order_id}: already SUCCESS, skipping")
        return {
            "order_id": order_id,
            "status": Transaction.SUCCESS,
            "already_processed": True,
            "message": "Transaction already processed",
        }

    hooks = []
    try:
        # --- 4. Audit payload ---
        transaction_service.record_gateway_response(order_id, notification)

        # --- 5. Transition ---
        if status == Transaction.SUCCESS:
            payment_method = gateway.map_payment_type(notification.get("payment_type"))
            transaction, changed = transaction_service.mark_success(
                order_id, payment_method, notification, now=now
            )
            if changed and should_activate:
                outcome = account_service.activate(transaction.architect_id)
                if outcome == account_service.ACTIVATED:
                    hooks.append(partial(_notify_welcome, transaction.architect_id))

        elif (status == Transaction.FAILED
              and transaction.effective_status(now) == Transaction.EXPIRED):
            # Echo of the expire call the sweeper sends to Midtrans, or a
            # failure that lands after expiry but before the sweep. Either
            # way the row ends EXPIRED and the sweeper sends the email.
            logger.info(f"{order_id} already EXPIRED, ignoring gateway failure status")

        elif status == Transaction.FAILED:
            transaction, changed = transaction_service.mark_failed(order_id, notification)
            if changed:
                hooks.append(partial(_notify_failed, transaction.architect_id, order_id))

        db.session.commit()
    except ConflictError:
        # Keep the payload and the conflict audit for manual reconciliation.
        db.session.commit()
        raise
    except Exception:
        db.session.rollback()
        raise

    run_post_commit_hooks(hooks)

    transaction = transaction_service.find_by_order_id(order_id, fresh=True)
    logger.info(f"Webhook for {order_id} processed, status={transaction.status}")
    return {
        "order_id": order_id,
        "status": transaction.status,
        "already_processed": False,
        "message": "Webhook processed successfully",
    }


def _load_architect(architect_id):
    from halositek.models.architect import Architect

    return db.session.get(Architect, architect_id)


def _notify_welcome(architect_id):
    architect = _load_architect(architect_id)
    if architect:
        send_welcome_email(architect)


def _notify_failed(architect_id, order_id):
    architect = _load_architect(architect_id)
    if architect:
        send_payment_failed_email(architect, order_id)
