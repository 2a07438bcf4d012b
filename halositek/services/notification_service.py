"""Notification service — payment emails sent to architects.

- send_payment_link_email: after registration / on resend
- send_welcome_email: after the registration fee is settled
- send_payment_failed_email: after a deny / cancel / expire notification
- send_payment_expired_email: from the expiry sweeper

Callers treat every one of these as fire-and-forget: a mail failure must
never roll back or fail a payment state change.
"""

import logging

from flask import current_app

from halositek.services.email_service import send_email, send_email_sync

logger = logging.getLogger(__name__)


def _format_idr(amount):
    return f"Rp {amount:,.0f}".replace(",", ".")


def payment_url(payment_token):
    return f"{current_app.config['FRONTEND_URL']}/payment/{payment_token}"


def send_payment_link_email(architect, transaction):
    send_email(
        to=architect.email,
        subject="Selesaikan pembayaran registrasi HaloSitek",
        template="emails/payment_link.html",
        context={
            "name": architect.name,
            "order_id": transaction.order_id,
            "amount": _format_idr(transaction.amount),
            "payment_url": payment_url(transaction.payment_token),
            "expired_at": transaction.expired_at,
        },
    )
    logger.info(f"Payment link email queued for {architect.email} ({transaction.order_id})")


def send_welcome_email(architect):
    send_email(
        to=architect.email,
        subject="Selamat datang di HaloSitek",
        template="emails/welcome.html",
        context={
            "name": architect.name,
            "dashboard_url": f"{current_app.config['FRONTEND_URL']}/architect/dashboard",
        },
    )
    logger.info(f"Welcome email queued for {architect.email}")


def send_payment_failed_email(architect, order_id):
    send_email(
        to=architect.email,
        subject="Pembayaran registrasi HaloSitek gagal",
        template="emails/payment_failed.html",
        context={"name": architect.name, "order_id": order_id},
    )
    logger.info(f"Payment failed email queued for {architect.email} ({order_id})")


def send_payment_expired_email(architect, order_id):
    # Runs from the hourly sweeper, outside any request.
    send_email_sync(
        to=architect.email,
        subject="Link pembayaran HaloSitek telah kedaluwarsa",
        template="emails/payment_expired.html",
        context={
            "name": architect.name,
            "order_id": order_id,
            "register_url": f"{current_app.config['FRONTEND_URL']}/register",
        },
    )
