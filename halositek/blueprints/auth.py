"""Auth blueprint — /api/auth/*

Session login for admin users. Login, logout and every admin write are
CSRF-protected; clients read a token from /csrf-token and send it back in
the X-CSRFToken header.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from halositek.errors import AuthenticationError, ValidationError
from halositek.extensions import limiter
from halositek.models.user import User

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password are required.")

    user = User.query.filter_by(email=email).first()
    if user is None or not check_password_hash(user.password_hash, password):
        raise AuthenticationError("Invalid email or password.")
    if not user.is_active:
        raise AuthenticationError("This account has been deactivated.")

    login_user(user, remember=bool(data.get("remember")))
    return jsonify({
        "success": True,
        "data": {"id": user.id, "email": user.email, "is_admin": user.is_admin},
    })


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    email = current_user.email
    logout_user()
    return jsonify({"success": True, "message": f"Logged out {email}"})


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return jsonify({"success": True, "data": {"csrf_token": generate_csrf()}})
