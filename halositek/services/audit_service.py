"""Audit helpers shared by the payment services."""

from halositek.extensions import db
from halositek.models.audit import AuditEvent


def log_audit(action, architect_id=None, metadata=None, actor_user_id=None):
    """Add an audit event to the current session.

    Actor is None for webhook and sweeper events (system-initiated).
    Uses flush() so the caller controls the commit boundary.
    """
    event = AuditEvent(
        architect_id=architect_id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event
