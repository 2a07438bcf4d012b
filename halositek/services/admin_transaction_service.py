"""Admin transaction service — back-office listing and manual overrides.

Overrides go through the same conditional transitions as webhooks, so an
admin can only resolve a transaction that is still PENDING. Every override
attempt is audited with the acting admin.
"""

import logging

import sqlalchemy as sa

from halositek.errors import ConflictError, NotFoundError, ValidationError
from halositek.extensions import db
from halositek.models.transaction import Transaction
from halositek.services import account_service, transaction_service
from halositek.services.audit_service import log_audit

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def _to_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def list_transactions(page=1, limit=DEFAULT_LIMIT, status=None, search=None,
                      architect_id=None):
    """Paginated transactions, newest first, with their architect."""
    page = max(_to_int(page, 1), 1)
    limit = min(max(_to_int(limit, DEFAULT_LIMIT), 1), MAX_LIMIT)

    query = Transaction.query
    if status:
        status = str(status).upper()
        if status not in Transaction.STATUSES:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "status", "message": f"Unknown status {status}"}],
            )
        query = query.filter(Transaction.status == status)
    if architect_id:
        query = query.filter(Transaction.architect_id == architect_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            sa.or_(
                Transaction.order_id.ilike(pattern),
                Transaction.payment_token.ilike(pattern),
            )
        )

    pagination = query.order_by(Transaction.created_at.desc()).paginate(
        page=page, per_page=limit, error_out=False
    )

    return {
        "data": [tx.to_dict(include_architect=True) for tx in pagination.items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": pagination.total,
            "total_pages": max(1, pagination.pages),
        },
    }


def get_transaction(transaction_id):
    transaction = transaction_service.find_by_id(transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction not found")
    return transaction


def override_status(transaction_id, status, actor_user_id=None):
    """Manually resolve a PENDING transaction.

    SUCCESS also activates the architect. Setting the status a transaction
    already has is a no-op; any other move out of a terminal state raises
    ConflictError.

    Returns the reloaded Transaction.
    """
    if not status:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "status", "message": "status is required"}],
        )
    status = str(status).upper()
    if status not in Transaction.STATUSES:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "status", "message": f"Unknown status {status}"}],
        )

    transaction = get_transaction(transaction_id)
    order_id = transaction.order_id
    previous = transaction.status

    if status == Transaction.PENDING:
        if previous == Transaction.PENDING:
            return transaction
        raise ConflictError(f"Transaction {order_id} is {previous.lower()}; it cannot be reopened")

    log_audit(
        "transaction.override",
        architect_id=transaction.architect_id,
        actor_user_id=actor_user_id,
        metadata={"order_id": order_id, "from": previous, "to": status},
    )

    try:
        if status == Transaction.SUCCESS:
            transaction, changed = transaction_service.mark_success(order_id, "OTHER")
            if changed:
                account_service.activate(transaction.architect_id)
        elif status == Transaction.FAILED:
            transaction, changed = transaction_service.mark_failed(order_id)
        else:
            transaction, changed = transaction_service.mark_expired(order_id)
        db.session.commit()
    except ConflictError:
        # Keep the override attempt and the conflict in the audit trail.
        db.session.commit()
        raise
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        f"Admin {actor_user_id} set {order_id} to {status} "
        f"({'changed' if changed else 'unchanged'})"
    )
    return transaction
