"""Webhooks blueprint — /api/webhooks/*

Receives Midtrans payment notifications (CSRF-exempt: authenticated by the
body signature). The admin routes keep CSRF on.

Midtrans retries any notification that is not answered with 200, so the
notification endpoint always acknowledges; the body says what happened.
"""

import logging

from flask import Blueprint, jsonify, request

from halositek.decorators import admin_required
from halositek.errors import AppError
from halositek.extensions import csrf
from halositek.services import expiry_service, transaction_service, webhook_service

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.route("/midtrans", methods=["POST"])
@csrf.exempt
def midtrans_notification():
    """Receive and reconcile a Midtrans notification.

    1. Parse the JSON body
    2. Verify signature, look up, apply the status mapping (webhook_service)
    3. Return 200 whatever the outcome
    """
    notification = request.get_json(silent=True)

    try:
        result = webhook_service.process_notification(notification)
    except AppError as e:
        logger.warning(f"Webhook rejected ({e.status_code}): {e.message}")
        return jsonify({"success": False, "message": e.message}), 200
    except Exception as e:
        logger.error(f"Webhook processing failed: {e}", exc_info=True)
        return jsonify({"success": False, "message": "Webhook processing failed"}), 200

    return jsonify({"success": True, "message": result["message"], "data": result}), 200


@webhooks_bp.route("/statistics", methods=["GET"])
@admin_required
def statistics():
    """Transaction counts per status, settled amount and success rate."""
    return jsonify({"success": True, "data": transaction_service.get_statistics()})


@webhooks_bp.route("/check-expired", methods=["POST"])
@admin_required
def check_expired():
    """Run the expiry sweep now instead of waiting for cron."""
    count = expiry_service.expire_stale_transactions()
    return jsonify({
        "success": True,
        "message": f"{count} transaction(s) marked as expired",
        "data": {"expired_count": count},
    })
