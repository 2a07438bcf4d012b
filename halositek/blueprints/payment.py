"""Payment blueprint — /api/payment/*

Read-only gateway endpoints for the checkout page.
"""

from flask import Blueprint, jsonify

from halositek.services.midtrans_service import get_gateway

payment_bp = Blueprint("payment", __name__, url_prefix="/api/payment")


@payment_bp.route("/methods", methods=["GET"])
def methods():
    return jsonify({"success": True, "data": get_gateway().available_payment_methods()})


@payment_bp.route("/config", methods=["GET"])
def config():
    """Client-side Snap settings. Never exposes the server key."""
    gateway = get_gateway()
    return jsonify({
        "success": True,
        "data": {
            "client_key": gateway.client_key,
            "snap_js_url": gateway.snap_js_url,
            "is_production": gateway.is_production,
        },
    })


@payment_bp.route("/status/<order_id>", methods=["GET"])
def status(order_id):
    """The gateway's view of an order (NotFoundError -> 404)."""
    return jsonify({"success": True, "data": get_gateway().get_status(order_id)})
