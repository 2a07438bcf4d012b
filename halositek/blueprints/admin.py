"""Admin blueprint — /api/admin/*

Back-office transaction listing and manual status overrides.
All routes protected by @admin_required.

Route Map:
  GET   /api/admin/transactions              — Paginated list
  GET   /api/admin/transactions/<id>         — Detail with architect
  PATCH /api/admin/transactions/<id>/status  — Override a PENDING transaction
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user

from halositek.decorators import admin_required
from halositek.services import admin_transaction_service

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.route("/transactions", methods=["GET"])
@admin_required
def list_transactions():
    result = admin_transaction_service.list_transactions(
        page=request.args.get("page", 1),
        limit=request.args.get("limit", admin_transaction_service.DEFAULT_LIMIT),
        status=request.args.get("status"),
        search=request.args.get("search"),
        architect_id=request.args.get("architect_id"),
    )
    return jsonify({"success": True, **result})


@admin_bp.route("/transactions/<transaction_id>", methods=["GET"])
@admin_required
def transaction_detail(transaction_id):
    transaction = admin_transaction_service.get_transaction(transaction_id)
    data = transaction.to_dict(include_architect=True)
    data["gateway_response"] = transaction.gateway_response
    return jsonify({"success": True, "data": data})


@admin_bp.route("/transactions/<transaction_id>/status", methods=["PATCH"])
@admin_required
def override_status(transaction_id):
    """Manually resolve a PENDING transaction (SUCCESS also activates the architect)."""
    data = request.get_json(silent=True) or {}
    transaction = admin_transaction_service.override_status(
        transaction_id, data.get("status"), actor_user_id=current_user.id
    )
    return jsonify({"success": True, "data": transaction.to_dict(include_architect=True)})
