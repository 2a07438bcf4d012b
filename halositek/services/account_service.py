"""Account service — architect activation after a successful payment.

Webhook delivery is at-least-once, so activation must be idempotent, and a
stray replay must never lift a ban.
"""

import logging

import sqlalchemy as sa

from halositek.errors import NotFoundError
from halositek.extensions import db
from halositek.models.architect import Architect
from halositek.services.audit_service import log_audit

logger = logging.getLogger(__name__)

ACTIVATED = "activated"
ALREADY_ACTIVE = "already_active"
REFUSED = "refused"


def activate(architect_id):
    """UNPAID -> ACTIVE.

    Returns:
        "activated"       the account was flipped now
        "already_active"  nothing to do
        "refused"         the account is BANNED; logged, not applied

    Raises NotFoundError if the architect does not exist.
    """
    result = db.session.execute(
        sa.update(Architect)
        .where(
            Architect.id == architect_id,
            Architect.status == Architect.UNPAID,
        )
        .values(status=Architect.ACTIVE)
        .execution_options(synchronize_session=False)
    )

    architect = (
        Architect.query.filter_by(id=architect_id).populate_existing().first()
    )
    if architect is None:
        raise NotFoundError(f"Architect {architect_id} not found")

    if result.rowcount == 1:
        log_audit("architect.activated", architect_id=architect_id)
        logger.info(f"Architect {architect_id} activated")
        return ACTIVATED

    if architect.status == Architect.ACTIVE:
        logger.info(f"Architect {architect_id} already active, nothing to do")
        return ALREADY_ACTIVE

    logger.warning(
        f"Refusing to activate architect {architect_id}: status is {architect.status}"
    )
    log_audit(
        "architect.activation_refused",
        architect_id=architect_id,
        metadata={"status": architect.status},
    )
    return REFUSED
