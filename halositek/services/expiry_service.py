"""Expiry service — closes out abandoned registration payments.

Designed to be called hourly from cron via `flask expire-transactions`,
and on demand from the admin check-expired endpoint.

Steps:
1. List PENDING transactions past expired_at, with their architect.
2. Flip them to EXPIRED in one conditional UPDATE.
3. Email the architects whose rows that UPDATE actually changed, and
   best-effort expire the Snap session at Midtrans.
4. Return the count.

Running it twice is harmless: the second run's UPDATE matches nothing, so
nobody gets a second email. This holds for two concurrent sweepers as well,
because notifications follow the UPDATE's RETURNING rows, not the
pre-read in step 1.
"""

import logging
from datetime import datetime, timezone
from functools import partial

from halositek.extensions import db
from halositek.models.architect import Architect
from halositek.services import transaction_service
from halositek.services.audit_service import log_audit
from halositek.services.midtrans_service import get_gateway
from halositek.services.notification_service import send_payment_expired_email
from halositek.services.webhook_service import run_post_commit_hooks

logger = logging.getLogger(__name__)


def expire_stale_transactions(now=None, gateway=None, notify=True):
    """Expire every stale PENDING transaction. Returns the number expired."""
    now = now or datetime.now(timezone.utc)
    gateway = gateway or get_gateway()

    candidates = transaction_service.find_expired_pending(now)
    logger.info(f"Expiry sweep: {len(candidates)} stale pending transaction(s) found")
    if not candidates:
        return 0

    architects = {tx.id: tx.architect for tx in candidates}

    try:
        expired_rows = transaction_service.sweep_expire(now)
        for row in expired_rows:
            log_audit(
                "transaction.expired",
                architect_id=row.architect_id,
                metadata={"order_id": row.order_id, "source": "sweeper"},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    count = len(expired_rows)
    if count < len(candidates):
        logger.info(
            f"Expiry sweep: {len(candidates) - count} candidate(s) were settled "
            f"by another writer before the update"
        )

    hooks = []
    for row in expired_rows:
        architect = architects.get(row.id) or db.session.get(Architect, row.architect_id)
        if notify and architect is not None:
            hooks.append(partial(send_payment_expired_email, architect, row.order_id))
        if row.gateway_token and gateway.is_configured():
            hooks.append(partial(gateway.expire, row.order_id))

    failures = run_post_commit_hooks(hooks)
    logger.info(
        f"Expiry sweep: marked {count} transaction(s) EXPIRED, "
        f"{failures} follow-up action(s) failed"
    )
    return count
