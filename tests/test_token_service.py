"""Tests for order IDs, payment tokens and the expiry window."""

import re
from datetime import datetime, timedelta, timezone

from halositek.services import token_service


NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestOrderId:
    """Tests for generate_order_id and its helpers."""

    def test_shape(self, app):
        order_id = token_service.generate_order_id(now=NOW)
        assert re.match(r"^ARCH-\d{13}-[A-Z0-9]{6}$", order_id)
        assert order_id.startswith("ARCH-1704067200000-")

    def test_custom_prefix(self):
        order_id = token_service.generate_order_id(prefix="TEST", now=NOW)
        assert order_id.startswith("TEST-1704067200000-")
        assert token_service.is_valid_order_id(order_id, prefix="TEST")

    def test_ids_differ_within_same_millisecond(self):
        ids = {token_service.generate_order_id(now=NOW) for _ in range(50)}
        assert len(ids) == 50

    def test_is_valid_order_id(self):
        assert token_service.is_valid_order_id("ARCH-1704067200000-A5B9C3")
        assert not token_service.is_valid_order_id("ARCH-170406720-A5B9C3")
        assert not token_service.is_valid_order_id("ARCH-1704067200000-a5b9c3")
        assert not token_service.is_valid_order_id("")

    def test_extract_timestamp(self):
        ts = token_service.extract_timestamp_from_order_id("ARCH-1704067200000-A5B9C3")
        assert ts == NOW
        assert token_service.extract_timestamp_from_order_id("garbage") is None


class TestPaymentToken:
    def test_is_uuid4(self):
        token = token_service.generate_payment_token()
        assert token_service.is_valid_uuid(token)
        assert token != token_service.generate_payment_token()

    def test_rejects_non_uuid(self):
        assert not token_service.is_valid_uuid("not-a-uuid")
        assert not token_service.is_valid_uuid(None)


class TestExpiry:
    """Tests for get_expiry_date / is_expired."""

    def test_default_window_is_24_hours(self, app):
        assert token_service.get_expiry_date(now=NOW) == NOW + timedelta(hours=24)

    def test_window_follows_config(self, app):
        app.config["PAYMENT_EXPIRY_HOURS"] = 2
        try:
            assert token_service.get_expiry_date(now=NOW) == NOW + timedelta(hours=2)
        finally:
            app.config["PAYMENT_EXPIRY_HOURS"] = 24

    def test_is_expired_is_strict(self):
        assert not token_service.is_expired(NOW, now=NOW)
        assert token_service.is_expired(NOW, now=NOW + timedelta(seconds=1))
        assert not token_service.is_expired(NOW, now=NOW - timedelta(hours=1))

    def test_naive_datetimes_are_utc(self):
        naive = datetime(2024, 1, 1)
        assert token_service.is_expired(naive, now=NOW + timedelta(minutes=1))
