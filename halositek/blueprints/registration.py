"""Registration blueprint — /api/architects/*

Public, CSRF-exempt JSON endpoints used by the architect sign-up and
payment pages.
"""

from flask import Blueprint, jsonify, request

from halositek.extensions import limiter
from halositek.services import registration_service

registration_bp = Blueprint("registration", __name__, url_prefix="/api/architects")


@registration_bp.route("/register", methods=["POST"])
@limiter.limit("10 per minute")
def register():
    """Create the architect account and its registration-fee transaction."""
    data = request.get_json(silent=True)
    result = registration_service.register_architect(data)
    return jsonify({
        "success": True,
        "message": "Registration successful. Check your email for the payment link.",
        "data": result,
    }), 201


@registration_bp.route("/payment/<payment_token>", methods=["GET"])
def payment_info(payment_token):
    return jsonify({
        "success": True,
        "data": registration_service.get_payment_info(payment_token),
    })


@registration_bp.route("/resend-payment-link", methods=["POST"])
@limiter.limit("5 per minute")
def resend_payment_link():
    data = request.get_json(silent=True) or {}
    result = registration_service.resend_payment_link(data.get("email"))
    return jsonify({"success": True, "message": result["message"], "data": result})
