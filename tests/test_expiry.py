"""Tests for the expiry sweeper and its CLI command.

Covers:
- Sweep at T+25h expires the transaction and notifies once
- Running twice sends no duplicate notifications
- Notifications follow the rows the UPDATE changed, not the pre-read
- A failing notification does not abort the batch
- Best-effort gateway expire for rows with a Snap token
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from halositek.extensions import db
from halositek.models.audit import AuditEvent
from halositek.models.transaction import Transaction
from halositek.services import expiry_service, transaction_service


def _status(order_id):
    return transaction_service.find_by_order_id(order_id, fresh=True).status


def _gateway():
    gateway = MagicMock()
    gateway.is_configured.return_value = True
    return gateway


class TestExpireStaleTransactions:
    @patch("halositek.services.expiry_service.send_payment_expired_email")
    def test_sweep_after_grace_period(self, mock_expired, seed_data):
        gateway = _gateway()
        later = datetime.now(timezone.utc) + timedelta(hours=25)

        count = expiry_service.expire_stale_transactions(now=later, gateway=gateway)

        assert count == 1
        assert _status(seed_data["order_id"]) == Transaction.EXPIRED
        mock_expired.assert_called_once()
        architect, order_id = mock_expired.call_args[0]
        assert architect.id == seed_data["architect_id"]
        assert order_id == seed_data["order_id"]
        # seed transaction carries a Snap token
        gateway.expire.assert_called_once_with(seed_data["order_id"])
        assert AuditEvent.query.filter_by(action="transaction.expired").count() == 1

    @patch("halositek.services.expiry_service.send_payment_expired_email")
    def test_nothing_stale(self, mock_expired, seed_data):
        assert expiry_service.expire_stale_transactions(gateway=_gateway()) == 0
        assert _status(seed_data["order_id"]) == Transaction.PENDING
        mock_expired.assert_not_called()

    @patch("halositek.services.expiry_service.send_payment_expired_email")
    def test_second_run_sends_nothing(self, mock_expired, seed_data):
        later = datetime.now(timezone.utc) + timedelta(hours=25)
        expiry_service.expire_stale_transactions(now=later, gateway=_gateway())
        assert expiry_service.expire_stale_transactions(now=later, gateway=_gateway()) == 0
        assert mock_expired.call_count == 1

    @patch("halositek.services.expiry_service.send_payment_expired_email")
    def test_only_changed_rows_are_notified(self, mock_expired, seed_data, add_transaction):
        now = datetime.now(timezone.utc)
        stale = add_transaction(seed_data["architect_id"], "ARCH-1704067200800-STALE0",
                                expired_at=now - timedelta(hours=1))
        # Simulates a concurrent sweeper / webhook: the pre-read still lists a
        # row that another writer already settled.
        settled = add_transaction(seed_data["architect_id"], "ARCH-1704067200800-RACED0",
                                  status=Transaction.SUCCESS,
                                  expired_at=now - timedelta(hours=1))

        with patch.object(transaction_service, "find_expired_pending",
                          return_value=[stale, settled]):
            count = expiry_service.expire_stale_transactions(now=now, gateway=_gateway())

        assert count == 1
        assert mock_expired.call_count == 1
        assert mock_expired.call_args[0][1] == "ARCH-1704067200800-STALE0"
        assert _status("ARCH-1704067200800-RACED0") == Transaction.SUCCESS

    @patch("halositek.services.expiry_service.send_payment_expired_email")
    def test_failed_notification_does_not_abort(self, mock_expired, seed_data, add_transaction):
        now = datetime.now(timezone.utc)
        for i in range(3):
            add_transaction(seed_data["architect_id"], f"ARCH-170406720090{i}-BATCH{i}",
                            expired_at=now - timedelta(hours=1))
        mock_expired.side_effect = [RuntimeError("SMTP down"), None, None]

        count = expiry_service.expire_stale_transactions(now=now, gateway=_gateway())

        assert count == 3
        assert mock_expired.call_count == 3
        for i in range(3):
            assert _status(f"ARCH-170406720090{i}-BATCH{i}") == Transaction.EXPIRED

    @patch("halositek.services.expiry_service.send_payment_expired_email")
    def test_no_notify(self, mock_expired, seed_data):
        later = datetime.now(timezone.utc) + timedelta(hours=25)
        count = expiry_service.expire_stale_transactions(
            now=later, gateway=_gateway(), notify=False
        )
        assert count == 1
        mock_expired.assert_not_called()

    @patch("halositek.services.expiry_service.send_payment_expired_email")
    def test_terminal_rows_untouched(self, mock_expired, seed_data, add_transaction):
        now = datetime.now(timezone.utc)
        for status in (Transaction.SUCCESS, Transaction.FAILED):
            add_transaction(seed_data["architect_id"], f"ARCH-1704067201000-{status[:6]}",
                            status=status, expired_at=now - timedelta(days=2))

        assert expiry_service.expire_stale_transactions(now=now, gateway=_gateway()) == 0
        assert _status("ARCH-1704067201000-SUCCES") == Transaction.SUCCESS
        assert _status("ARCH-1704067201000-FAILED") == Transaction.FAILED


class TestExpireCommand:
    """Tests for `flask expire-transactions`."""

    @patch("halositek.services.expiry_service.send_payment_expired_email")
    def test_cli(self, mock_expired, app, seed_data, add_transaction):
        add_transaction(
            seed_data["architect_id"], "ARCH-1704067201100-CLIONE",
            expired_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )

        result = app.test_cli_runner().invoke(args=["expire-transactions"])

        assert result.exit_code == 0
        assert "Expired 1 transaction(s)." in result.output
        db.session.expire_all()
        assert _status("ARCH-1704067201100-CLIONE") == Transaction.EXPIRED
        mock_expired.assert_called_once()
