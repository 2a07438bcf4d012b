"""Token service — order IDs, payment tokens, and payment expiry.

Pure helpers with no database access:
- generate_order_id: human-readable ID sent to Midtrans
- generate_payment_token: opaque UUID for the public payment page URL
- get_expiry_date / is_expired: the fixed payment grace period

Order IDs are collision-resistant (millisecond timestamp + 6 random chars)
but uniqueness is only guaranteed by the unique constraint on
transactions.order_id.
"""

import re
import secrets
import string
import uuid
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context

ORDER_ID_ALPHABET = string.ascii_uppercase + string.digits
ORDER_ID_RANDOM_LENGTH = 6
DEFAULT_ORDER_ID_PREFIX = "ARCH"
DEFAULT_EXPIRY_HOURS = 24

_UUID4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _utcnow():
    return datetime.now(timezone.utc)


def generate_random_string(length, chars=ORDER_ID_ALPHABET):
    return "".join(secrets.choice(chars) for _ in range(length))


def generate_order_id(prefix=None, now=None):
    """Return "{PREFIX}-{millis}-{6 uppercase alnum}".

    Example: ARCH-1704067200000-A5B9C3
    """
    prefix = prefix or _config("ORDER_ID_PREFIX", DEFAULT_ORDER_ID_PREFIX)
    now = now or _utcnow()
    millis = int(now.timestamp() * 1000)
    return f"{prefix}-{millis}-{generate_random_string(ORDER_ID_RANDOM_LENGTH)}"


def generate_payment_token():
    """Return a version-4 UUID string."""
    return str(uuid.uuid4())


def get_expiry_date(now=None, hours=None):
    """Return now + PAYMENT_EXPIRY_HOURS (default 24h)."""
    if hours is None:
        hours = int(_config("PAYMENT_EXPIRY_HOURS", DEFAULT_EXPIRY_HOURS))
    now = now or _utcnow()
    return now + timedelta(hours=hours)


def is_expired(expired_at, now=None):
    """True if `now` is strictly after `expired_at`.

    Naive datetimes (SQLite) are treated as UTC.
    """
    now = now or _utcnow()
    if expired_at.tzinfo is None:
        expired_at = expired_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now > expired_at


def is_valid_order_id(order_id, prefix=None):
    """Check the {PREFIX}-{13 digit millis}-{6 chars} shape."""
    if not order_id:
        return False
    prefix = prefix or _config("ORDER_ID_PREFIX", DEFAULT_ORDER_ID_PREFIX)
    pattern = rf"^{re.escape(prefix)}-\d{{13}}-[A-Z0-9]{{{ORDER_ID_RANDOM_LENGTH}}}$"
    return re.match(pattern, order_id) is not None


def is_valid_uuid(value):
    return bool(value) and _UUID4_RE.match(value) is not None


def extract_timestamp_from_order_id(order_id, prefix=None):
    """Return the creation time encoded in an order ID, or None if malformed."""
    if not is_valid_order_id(order_id, prefix=prefix):
        return None
    millis = int(order_id.split("-")[-2])
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
