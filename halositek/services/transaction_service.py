"""Transaction service — persistence and state transitions for payments.

Responsible for:
- Creating PENDING transactions for a registration attempt
- Point lookups by order ID, payment token, and architect
- SUCCESS / FAILED / EXPIRED transitions
- The payment-page validation gate
- Transaction statistics for the admin dashboard

Every status transition is a single conditional UPDATE scoped to
status='PENDING'. Nothing here reads a row, decides in Python, and writes
it back, so concurrent webhooks, sweepers and admin overrides cannot
overwrite each other: the first UPDATE wins and the others affect zero
rows.

Functions flush but never commit; callers own the commit boundary.
"""

import logging
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import joinedload

from halositek.errors import ConflictError, NotFoundError
from halositek.extensions import db
from halositek.models.transaction import Transaction
from halositek.services.audit_service import log_audit

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────
# Creation & lookups
# ──────────────────────────────────────────────

def create_transaction(architect_id, order_id, payment_token, amount, expired_at,
                       gateway_token=None):
    """Insert a new PENDING transaction. Returns the Transaction (flushed)."""
    transaction = Transaction(
        architect_id=architect_id,
        order_id=order_id,
        payment_token=payment_token,
        gateway_token=gateway_token,
        amount=amount,
        status=Transaction.PENDING,
        expired_at=expired_at,
    )
    db.session.add(transaction)
    db.session.flush()
    logger.info(f"Transaction {order_id} created for architect {architect_id}")
    return transaction


def find_by_id(transaction_id):
    return db.session.get(Transaction, transaction_id)


def find_by_order_id(order_id, fresh=False):
    """Look up a transaction by order ID.

    fresh=True reloads attributes from the database, which is needed after
    a bulk UPDATE issued in the same session.
    """
    query = Transaction.query.filter_by(order_id=order_id)
    if fresh:
        query = query.populate_existing()
    return query.first()


def find_by_payment_token(payment_token):
    return Transaction.query.filter_by(payment_token=payment_token).first()


def find_by_architect(architect_id):
    """All transactions for an architect, newest first."""
    return (
        Transaction.query
        .filter_by(architect_id=architect_id)
        .order_by(Transaction.created_at.desc())
        .all()
    )


def get_latest_by_architect(architect_id):
    return (
        Transaction.query
        .filter_by(architect_id=architect_id)
        .order_by(Transaction.created_at.desc(), Transaction.expired_at.desc())
        .first()
    )


def has_successful_transaction(architect_id):
    return (
        Transaction.query
        .filter_by(architect_id=architect_id, status=Transaction.SUCCESS)
        .first()
    ) is not None


def effective_status(transaction, now=None):
    """Status for decision purposes (PENDING past expiry reads EXPIRED)."""
    return transaction.effective_status(now)


# ──────────────────────────────────────────────
# Non-status writes
# ──────────────────────────────────────────────

def record_gateway_response(order_id, payload):
    """Store the latest raw gateway payload, whatever the status."""
    result = db.session.execute(
        sa.update(Transaction)
        .where(Transaction.order_id == order_id)
        .values(gateway_response=payload)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Transaction with order ID {order_id} not found")


def set_gateway_token(transaction, gateway_token):
    """Backfill the Snap token on a PENDING transaction that has none.

    Returns True if the token was written.
    """
    result = db.session.execute(
        sa.update(Transaction)
        .where(
            Transaction.id == transaction.id,
            Transaction.status == Transaction.PENDING,
            Transaction.gateway_token.is_(None),
        )
        .values(gateway_token=gateway_token)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(transaction)
    return result.rowcount == 1


# ──────────────────────────────────────────────
# Status transitions
# ──────────────────────────────────────────────

def _transition_from_pending(order_id, values, *conditions):
    """UPDATE ... SET values WHERE order_id=? AND status='PENDING' [AND conditions].

    Returns (transaction, changed) with the transaction reloaded.
    """
    result = db.session.execute(
        sa.update(Transaction)
        .where(
            Transaction.order_id == order_id,
            Transaction.status == Transaction.PENDING,
            *conditions,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    transaction = find_by_order_id(order_id, fresh=True)
    if transaction is None:
        raise NotFoundError(f"Transaction with order ID {order_id} not found")
    return transaction, result.rowcount == 1


def _reject_transition(transaction, target_status, current_status=None):
    """Log + audit an impossible transition, then raise ConflictError.

    A terminal state is never overwritten. current_status defaults to the
    stored status; pass the effective status for a PENDING row past expiry.
    """
    current_status = current_status or transaction.status
    logger.error(
        f"Transition conflict on {transaction.order_id}: "
        f"{current_status} -> {target_status} rejected"
    )
    log_audit(
        "transaction.transition_conflict",
        architect_id=transaction.architect_id,
        metadata={
            "order_id": transaction.order_id,
            "current_status": current_status,
            "stored_status": transaction.status,
            "attempted_status": target_status,
        },
    )
    raise ConflictError(
        f"Transaction {transaction.order_id} is already "
        f"{current_status.lower()}; cannot mark it {target_status.lower()}"
    )


def mark_success(order_id, payment_method, raw_payload=None, now=None):
    """PENDING -> SUCCESS, setting paid_at and payment_method.

    Idempotent: an already-SUCCESS transaction is returned unchanged with
    its original paid_at. FAILED or EXPIRED raises ConflictError, and so
    does a PENDING row already past expired_at, whether or not the sweeper
    has flipped it yet.

    Returns (transaction, changed).
    """
    now = now or _utcnow()
    values = {
        "status": Transaction.SUCCESS,
        "paid_at": now,
        "payment_method": payment_method or "OTHER",
    }
    if raw_payload is not None:
        values["gateway_response"] = raw_payload

    transaction, changed = _transition_from_pending(
        order_id, values, Transaction.expired_at >= now
    )

    if changed:
        log_audit(
            "transaction.success",
            architect_id=transaction.architect_id,
            metadata={
                "order_id": order_id,
                "payment_method": transaction.payment_method,
                "amount": transaction.amount,
            },
        )
        logger.info(f"Transaction {order_id} marked SUCCESS")
        return transaction, True

    if transaction.status == Transaction.SUCCESS:
        logger.info(f"Transaction {order_id} already SUCCESS, paid_at kept")
        return transaction, False

    _reject_transition(
        transaction, Transaction.SUCCESS, transaction.effective_status(now)
    )


def mark_failed(order_id, raw_payload=None):
    """PENDING -> FAILED.

    Already FAILED is a no-op. SUCCESS or EXPIRED raises ConflictError.

    Returns (transaction, changed).
    """
    values = {"status": Transaction.FAILED}
    if raw_payload is not None:
        values["gateway_response"] = raw_payload

    transaction, changed = _transition_from_pending(order_id, values)

    if changed:
        log_audit(
            "transaction.failed",
            architect_id=transaction.architect_id,
            metadata={"order_id": order_id},
        )
        logger.info(f"Transaction {order_id} marked FAILED")
        return transaction, True

    if transaction.status == Transaction.FAILED:
        return transaction, False

    _reject_transition(transaction, Transaction.FAILED)


def mark_expired(order_id):
    """PENDING -> EXPIRED for a single transaction (admin override).

    Already EXPIRED is a no-op. SUCCESS or FAILED raises ConflictError.

    Returns (transaction, changed).
    """
    transaction, changed = _transition_from_pending(
        order_id, {"status": Transaction.EXPIRED}
    )
    if changed:
        log_audit(
            "transaction.expired",
            architect_id=transaction.architect_id,
            metadata={"order_id": order_id},
        )
        return transaction, True

    if transaction.status == Transaction.EXPIRED:
        return transaction, False

    _reject_transition(transaction, Transaction.EXPIRED)


def find_expired_pending(now=None):
    """PENDING transactions whose grace period is over, with their architect."""
    now = now or _utcnow()
    return (
        Transaction.query
        .options(joinedload(Transaction.architect))
        .filter(Transaction.status == Transaction.PENDING)
        .filter(Transaction.expired_at < now)
        .order_by(Transaction.expired_at.asc())
        .all()
    )


def sweep_expire(now=None):
    """Flip every stale PENDING transaction to EXPIRED in one statement.

    Returns the rows the UPDATE actually changed, as
    (id, order_id, architect_id, gateway_token) tuples. A concurrent
    sweeper or webhook that got there first simply isn't in the list.
    """
    now = now or _utcnow()
    result = db.session.execute(
        sa.update(Transaction)
        .where(
            Transaction.status == Transaction.PENDING,
            Transaction.expired_at < now,
        )
        .values(status=Transaction.EXPIRED)
        .returning(
            Transaction.id,
            Transaction.order_id,
            Transaction.architect_id,
            Transaction.gateway_token,
        )
        .execution_options(synchronize_session=False)
    )
    return result.all()


# ──────────────────────────────────────────────
# Payment page gate
# ──────────────────────────────────────────────

def validate_for_payment(payment_token, now=None):
    """Decide whether a client may open checkout for this payment token.

    Checked in priority order: not found, not PENDING, past expiry.

    Returns {"valid": bool, "reason": str, "transaction": Transaction|None}.
    """
    transaction = find_by_payment_token(payment_token) if payment_token else None

    if transaction is None:
        return {
            "valid": False,
            "reason": "Payment link not found",
            "transaction": None,
        }

    if transaction.status != Transaction.PENDING:
        return {
            "valid": False,
            "reason": f"Payment already {transaction.status.lower()}",
            "transaction": transaction,
        }

    if transaction.is_past_expiry(now):
        return {
            "valid": False,
            "reason": "Payment link has expired",
            "transaction": transaction,
        }

    return {
        "valid": True,
        "reason": "Valid payment link",
        "transaction": transaction,
    }


# ──────────────────────────────────────────────
# Statistics
# ──────────────────────────────────────────────

def get_statistics(start=None, end=None):
    """Counts per status, total, settled amount and success rate.

    Optional start/end bound created_at (inclusive).
    """
    filters = []
    if start is not None:
        filters.append(Transaction.created_at >= start)
    if end is not None:
        filters.append(Transaction.created_at <= end)

    rows = (
        db.session.query(Transaction.status, sa.func.count(Transaction.id))
        .filter(*filters)
        .group_by(Transaction.status)
        .all()
    )
    counts = {status: 0 for status in Transaction.STATUSES}
    counts.update({status: count for status, count in rows})

    total_amount = (
        db.session.query(sa.func.coalesce(sa.func.sum(Transaction.amount), 0))
        .filter(Transaction.status == Transaction.SUCCESS, *filters)
        .scalar()
    )

    success = counts[Transaction.SUCCESS]
    failed = counts[Transaction.FAILED]
    decided = success + failed
    success_rate = round(success / decided * 100, 2) if decided else 0

    return {
        "success": success,
        "failed": failed,
        "pending": counts[Transaction.PENDING],
        "expired": counts[Transaction.EXPIRED],
        "total": sum(counts.values()),
        "total_amount": int(total_amount or 0),
        "success_rate": success_rate,
    }
