import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from halositek.config import config_by_name
from halositek.errors import AppError
from halositek.extensions import db, migrate, login_manager, csrf, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from halositek import models  # noqa: F401

    # --- Payment gateway client ---
    from halositek.services.midtrans_service import init_gateway
    init_gateway(app)

    # --- Register blueprints ---
    from halositek.blueprints.auth import auth_bp
    from halositek.blueprints.registration import registration_bp
    from halositek.blueprints.payment import payment_bp
    from halositek.blueprints.admin import admin_bp
    from halositek.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(registration_bp)
    app.register_blueprint(payment_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)

    # Public, session-less endpoints of the registration frontend. auth and
    # admin ride on the login cookie and send X-CSRFToken instead.
    csrf.exempt(registration_bp)
    csrf.exempt(payment_bp)

    # --- Health check ---
    @app.route("/")
    def index():
        return jsonify({"service": "halositek-payments", "status": "ok"})

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only, nothing to load
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Render domain errors and HTTP errors as JSON."""

    @app.errorhandler(AppError)
    def handle_app_error(e):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        # 401/403/404/405/429 and friends
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f"Unhandled error: {getattr(e, 'original_exception', e)}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@halositek.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    def seed_admin(email, password):
        """Create the back-office admin user.

        Usage:
            flask seed-admin
            flask seed-admin --email admin@example.com --password s3cret
        """
        from halositek.models.user import User

        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"Admin user already exists: {email}")
            return

        admin = User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name="Admin",
            is_admin=True,
        )
        db.session.add(admin)
        db.session.commit()
        click.echo(f"Created admin user: {email}")

    @app.cli.command("expire-transactions")
    @click.option("--no-notify", is_flag=True, help="Expire without emailing architects.")
    def expire_transactions(no_notify):
        """Mark stale PENDING transactions as EXPIRED.

        Meant to run hourly from cron:

            0 * * * *  cd /srv/halositek && flask expire-transactions
        """
        from halositek.services.expiry_service import expire_stale_transactions

        count = expire_stale_transactions(notify=not no_notify)
        click.echo(f"Expired {count} transaction(s).")

    @app.cli.command("check-transaction")
    @click.argument("order_id")
    def check_transaction(order_id):
        """Compare a transaction's local status with what Midtrans reports.

        Usage:
            flask check-transaction ARCH-1704067200000-A5B9C3
        """
        from halositek.services import transaction_service
        from halositek.services.midtrans_service import get_gateway

        transaction = transaction_service.find_by_order_id(order_id)
        if transaction is None:
            click.echo(f"No local transaction with order ID {order_id}")
            return

        click.echo(f"Local:    {transaction.status} (effective {transaction.effective_status()})")
        try:
            remote = get_gateway().get_status(order_id)
        except AppError as e:
            click.echo(f"Midtrans: {e.message}")
            return
        click.echo(
            f"Midtrans: {remote.get('transaction_status')} "
            f"(fraud: {remote.get('fraud_status') or '-'}, "
            f"payment_type: {remote.get('payment_type') or '-'})"
        )
