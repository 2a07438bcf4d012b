"""Tests for the transaction store.

Covers:
- Idempotent mark_success (paid_at kept)
- Terminal absorption for mark_success / mark_failed / sweep
- Conflicts logged to the audit trail
- validate_for_payment reasons, including logical expiry
- mark_success refusing a PENDING row past expiry
- sweep_expire completeness
- Statistics
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from halositek.errors import ConflictError, NotFoundError
from halositek.extensions import db
from halositek.models.audit import AuditEvent
from halositek.models.transaction import Transaction
from halositek.services import transaction_service


def _utc(value):
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class TestCreateAndLookup:
    def test_create_transaction(self, seed_data):
        expires = datetime.now(timezone.utc) + timedelta(hours=24)
        tx = transaction_service.create_transaction(
            architect_id=seed_data["architect_id"],
            order_id="ARCH-1704067200001-ZZZZZZ",
            payment_token="0b6f2a8e-6a3c-4f4b-8d7e-1c2b3a4d5e6f",
            amount=500000,
            expired_at=expires,
        )
        db.session.commit()

        found = transaction_service.find_by_order_id("ARCH-1704067200001-ZZZZZZ")
        assert found.id == tx.id
        assert found.status == Transaction.PENDING
        assert found.gateway_token is None
        assert found.paid_at is None

    def test_find_by_payment_token(self, seed_data):
        tx = transaction_service.find_by_payment_token(seed_data["payment_token"])
        assert tx.order_id == seed_data["order_id"]

    def test_latest_by_architect(self, seed_data, add_transaction):
        add_transaction(seed_data["architect_id"], "ARCH-1704067299999-NEWEST")
        latest = transaction_service.get_latest_by_architect(seed_data["architect_id"])
        assert latest.order_id == "ARCH-1704067299999-NEWEST"
        assert len(transaction_service.find_by_architect(seed_data["architect_id"])) == 2

    def test_record_gateway_response_unknown_order(self, seed_data):
        with pytest.raises(NotFoundError):
            transaction_service.record_gateway_response("ARCH-missing", {"a": 1})


class TestMarkSuccess:
    """Tests for PENDING -> SUCCESS."""

    def test_sets_paid_at_and_method(self, seed_data):
        tx, changed = transaction_service.mark_success(seed_data["order_id"], "E_WALLET")
        db.session.commit()

        assert changed is True
        assert tx.status == Transaction.SUCCESS
        assert tx.payment_method == "E_WALLET"
        assert tx.paid_at is not None

    def test_idempotent_keeps_first_paid_at(self, seed_data):
        first_time = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        transaction_service.mark_success(seed_data["order_id"], "QRIS", now=first_time)
        db.session.commit()

        tx, changed = transaction_service.mark_success(
            seed_data["order_id"], "QRIS", now=first_time + timedelta(hours=3)
        )
        db.session.commit()

        assert changed is False
        assert _utc(tx.paid_at) == first_time

    @pytest.mark.parametrize("terminal", [Transaction.FAILED, Transaction.EXPIRED])
    def test_terminal_rejects_success(self, seed_data, add_transaction, terminal):
        add_transaction(seed_data["architect_id"], "ARCH-1704067200002-TERMNL", status=terminal)

        with pytest.raises(ConflictError):
            transaction_service.mark_success("ARCH-1704067200002-TERMNL", "QRIS")
        db.session.commit()

        tx = transaction_service.find_by_order_id("ARCH-1704067200002-TERMNL", fresh=True)
        assert tx.status == terminal
        assert tx.paid_at is None
        event = AuditEvent.query.filter_by(action="transaction.transition_conflict").one()
        assert event.metadata_["attempted_status"] == Transaction.SUCCESS

    def test_pending_past_expiry_rejects_success(self, seed_data):
        tx = transaction_service.find_by_order_id(seed_data["order_id"])
        after_expiry = _utc(tx.expired_at) + timedelta(minutes=1)

        with pytest.raises(ConflictError):
            transaction_service.mark_success(seed_data["order_id"], "QRIS", now=after_expiry)
        db.session.commit()

        tx = transaction_service.find_by_order_id(seed_data["order_id"], fresh=True)
        assert tx.status == Transaction.PENDING
        assert tx.paid_at is None
        event = AuditEvent.query.filter_by(action="transaction.transition_conflict").one()
        assert event.metadata_["current_status"] == Transaction.EXPIRED
        assert event.metadata_["stored_status"] == Transaction.PENDING


class TestMarkFailed:
    def test_pending_to_failed(self, seed_data):
        tx, changed = transaction_service.mark_failed(seed_data["order_id"], {"x": 1})
        assert changed is True
        assert tx.status == Transaction.FAILED
        assert tx.gateway_response == {"x": 1}

    def test_failed_again_is_noop(self, seed_data):
        transaction_service.mark_failed(seed_data["order_id"])
        tx, changed = transaction_service.mark_failed(seed_data["order_id"])
        assert changed is False
        assert tx.status == Transaction.FAILED

    def test_success_is_never_overwritten(self, seed_data):
        transaction_service.mark_success(seed_data["order_id"], "QRIS")
        with pytest.raises(ConflictError):
            transaction_service.mark_failed(seed_data["order_id"])
        tx = transaction_service.find_by_order_id(seed_data["order_id"], fresh=True)
        assert tx.status == Transaction.SUCCESS


class TestSetGatewayToken:
    def test_backfills_only_when_missing(self, seed_data, add_transaction):
        tx = add_transaction(seed_data["architect_id"], "ARCH-1704067200003-NOTOKN")
        assert transaction_service.set_gateway_token(tx, "snap-new") is True
        assert tx.gateway_token == "snap-new"
        assert transaction_service.set_gateway_token(tx, "snap-other") is False
        assert tx.gateway_token == "snap-new"


class TestValidateForPayment:
    """Tests for the payment-page gate."""

    def test_valid(self, seed_data):
        result = transaction_service.validate_for_payment(seed_data["payment_token"])
        assert result["valid"] is True

    def test_not_found(self, seed_data):
        result = transaction_service.validate_for_payment("nope")
        assert result["valid"] is False
        assert result["reason"] == "Payment link not found"
        assert result["transaction"] is None

    def test_already_paid(self, seed_data):
        transaction_service.mark_success(seed_data["order_id"], "QRIS")
        db.session.commit()
        result = transaction_service.validate_for_payment(seed_data["payment_token"])
        assert result["valid"] is False
        assert result["reason"] == "Payment already success"

    def test_expired_before_sweep(self, seed_data):
        tx = transaction_service.find_by_order_id(seed_data["order_id"])
        after_expiry = _utc(tx.expired_at) + timedelta(seconds=1)

        result = transaction_service.validate_for_payment(
            seed_data["payment_token"], now=after_expiry
        )

        assert result["valid"] is False
        assert result["reason"] == "Payment link has expired"
        assert tx.status == Transaction.PENDING

    @patch("halositek.models.transaction.is_expired", return_value=True)
    def test_expiry_rule_comes_from_token_service(self, mock_is_expired, seed_data):
        tx = transaction_service.find_by_order_id(seed_data["order_id"])

        assert tx.effective_status() == Transaction.EXPIRED
        mock_is_expired.assert_called_once_with(tx.expired_at, None)
        assert transaction_service.effective_status(tx, now=after_expiry) == Transaction.EXPIRED


class TestSweepExpire:
    """Tests for the bulk PENDING -> EXPIRED flip."""

    def test_flips_exactly_the_stale_rows(self, seed_data, add_transaction):
        now = datetime.now(timezone.utc)
        stale = [f"ARCH-170406720010{i}-STALE{i}" for i in range(3)]
        fresh = [f"ARCH-170406720020{i}-FRESH{i}" for i in range(2)]
        for order_id in stale:
            add_transaction(seed_data["architect_id"], order_id,
                            expired_at=now - timedelta(hours=1))
        for order_id in fresh:
            add_transaction(seed_data["architect_id"], order_id,
                            expired_at=now + timedelta(hours=1))
        add_transaction(seed_data["architect_id"], "ARCH-1704067200300-PAIDUP",
                        status=Transaction.SUCCESS, expired_at=now - timedelta(hours=1))

        rows = transaction_service.sweep_expire(now)
        db.session.commit()

        assert sorted(r.order_id for r in rows) == sorted(stale)
        for order_id in stale:
            assert transaction_service.find_by_order_id(order_id, fresh=True).status == Transaction.EXPIRED
        for order_id in fresh + [seed_data["order_id"]]:
            assert transaction_service.find_by_order_id(order_id, fresh=True).status == Transaction.PENDING
        paid = transaction_service.find_by_order_id("ARCH-1704067200300-PAIDUP", fresh=True)
        assert paid.status == Transaction.SUCCESS

    def test_second_sweep_finds_nothing(self, seed_data, add_transaction):
        now = datetime.now(timezone.utc)
        add_transaction(seed_data["architect_id"], "ARCH-1704067200400-ONCEEE",
                        expired_at=now - timedelta(minutes=5))
        assert len(transaction_service.sweep_expire(now)) == 1
        assert transaction_service.sweep_expire(now) == []


class TestStatistics:
    def test_counts_and_rate(self, seed_data, add_transaction):
        aid = seed_data["architect_id"]
        add_transaction(aid, "ARCH-1704067200500-SUCC01", status=Transaction.SUCCESS)
        add_transaction(aid, "ARCH-1704067200500-SUCC02", status=Transaction.SUCCESS)
        add_transaction(aid, "ARCH-1704067200500-FAIL01", status=Transaction.FAILED)
        add_transaction(aid, "ARCH-1704067200500-EXPD01", status=Transaction.EXPIRED)

        stats = transaction_service.get_statistics()

        assert stats["success"] == 2
        assert stats["failed"] == 1
        assert stats["pending"] == 1
        assert stats["expired"] == 1
        assert stats["total"] == 5
        assert stats["total_amount"] == 1000000
        assert stats["success_rate"] == 66.67

    def test_empty(self, app):
        stats = transaction_service.get_statistics()
        assert stats["total"] == 0
        assert stats["success_rate"] == 0
