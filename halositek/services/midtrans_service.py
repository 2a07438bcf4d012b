"""Midtrans service — every HTTP call to the payment gateway lives here.

Responsible for:
- Creating Snap checkout sessions
- Querying, cancelling and expiring orders on the Core API
- Verifying webhook signatures
- Exposing client-side settings (client key, snap.js URL)

One MidtransClient is built per app in create_app() and stored on
app.extensions["midtrans"]. Services take it as an explicit argument and
fall back to get_gateway() inside a request or CLI context.

Sandbox vs production is chosen once, at construction.
"""

import hashlib
import hmac
import logging

import requests
from flask import current_app

from halositek.errors import NotFoundError, PaymentGatewayError

logger = logging.getLogger(__name__)

SANDBOX_URLS = {
    "snap": "https://app.sandbox.midtrans.com/snap/v1",
    "core": "https://api.sandbox.midtrans.com/v2",
    "snap_js": "https://app.sandbox.midtrans.com/snap/snap.js",
}
PRODUCTION_URLS = {
    "snap": "https://app.midtrans.com/snap/v1",
    "core": "https://api.midtrans.com/v2",
    "snap_js": "https://app.midtrans.com/snap/snap.js",
}

ENABLED_PAYMENTS = [
    "credit_card",
    "bca_va",
    "bni_va",
    "bri_va",
    "mandiri_va",
    "permata_va",
    "other_va",
    "gopay",
    "shopeepay",
    "qris",
    "indomaret",
    "alfamart",
]

# Midtrans payment_type -> Transaction.payment_method
PAYMENT_TYPE_MAP = {
    "bank_transfer": "BANK_TRANSFER",
    "echannel": "BANK_TRANSFER",
    "permata": "BANK_TRANSFER",
    "credit_card": "CREDIT_CARD",
    "gopay": "E_WALLET",
    "shopeepay": "E_WALLET",
    "qris": "QRIS",
    "cstore": "RETAIL_OUTLET",
}

REGISTRATION_ITEM_ID = "ARCH_REGISTRATION"
REGISTRATION_ITEM_NAME = "Registrasi Akun Arsitek HaloSitek"


class MidtransClient:
    """Thin wrapper around the Midtrans Snap and Core APIs."""

    def __init__(self, server_key, client_key=None, is_production=False, timeout=10):
        self.server_key = server_key
        self.client_key = client_key
        self.is_production = bool(is_production)
        self.timeout = timeout
        self._urls = PRODUCTION_URLS if self.is_production else SANDBOX_URLS

    @classmethod
    def from_config(cls, config):
        if not config.get("MIDTRANS_SERVER_KEY"):
            logger.warning("MIDTRANS_SERVER_KEY not configured")
        return cls(
            server_key=config.get("MIDTRANS_SERVER_KEY"),
            client_key=config.get("MIDTRANS_CLIENT_KEY"),
            is_production=config.get("MIDTRANS_IS_PRODUCTION", False),
            timeout=config.get("MIDTRANS_TIMEOUT_SECONDS", 10),
        )

    # ──────────────────────────────────────────────
    # Client-facing settings
    # ──────────────────────────────────────────────

    @property
    def snap_url(self):
        return self._urls["snap"]

    @property
    def core_url(self):
        return self._urls["core"]

    @property
    def snap_js_url(self):
        return self._urls["snap_js"]

    def is_configured(self):
        return bool(self.server_key and self.client_key)

    @staticmethod
    def available_payment_methods():
        return [
            {
                "type": "BANK_TRANSFER",
                "name": "Transfer Bank",
                "options": ["BCA", "Mandiri", "BNI", "BRI", "Permata"],
            },
            {
                "type": "E_WALLET",
                "name": "E-Wallet",
                "options": ["GoPay", "ShopeePay"],
            },
            {
                "type": "CREDIT_CARD",
                "name": "Kartu Kredit",
                "options": ["Visa", "Mastercard", "JCB"],
            },
            {"type": "QRIS", "name": "QRIS", "options": ["Scan QRIS"]},
            {
                "type": "RETAIL_OUTLET",
                "name": "Retail",
                "options": ["Indomaret", "Alfamart"],
            },
        ]

    @staticmethod
    def map_payment_type(payment_type):
        return PAYMENT_TYPE_MAP.get((payment_type or "").lower(), "OTHER")

    # ──────────────────────────────────────────────
    # HTTP plumbing
    # ──────────────────────────────────────────────

    def _request(self, method, url, payload=None):
        """Send one authenticated request and return the decoded JSON body.

        Raises PaymentGatewayError on network errors, timeouts, non-2xx
        responses and undecodable bodies.
        """
        try:
            resp = requests.request(
                method,
                url,
                json=payload,
                auth=(self.server_key or "", ""),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise PaymentGatewayError(f"Midtrans request timed out: {e}") from e
        except requests.RequestException as e:
            raise PaymentGatewayError(f"Midtrans request failed: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if not 200 <= resp.status_code < 300:
            raise PaymentGatewayError(
                f"Midtrans error: {_error_message(body)}",
                gateway_status=resp.status_code,
            )
        if not isinstance(body, dict):
            raise PaymentGatewayError(
                "Midtrans returned a malformed response",
                gateway_status=resp.status_code,
            )
        return body

    # ──────────────────────────────────────────────
    # Snap
    # ──────────────────────────────────────────────

    def create_transaction(self, order_id, amount, customer, items=None):
        """Create a Snap checkout session.

        Returns {"checkout_token", "redirect_url"}.
        Raises PaymentGatewayError on any failure.
        """
        items = items or [
            {
                "id": REGISTRATION_ITEM_ID,
                "price": amount,
                "quantity": 1,
                "name": REGISTRATION_ITEM_NAME,
            }
        ]
        payload = {
            "transaction_details": {"order_id": order_id, "gross_amount": amount},
            "item_details": items,
            "customer_details": customer,
            "credit_card": {"secure": True},
            "enabled_payments": ENABLED_PAYMENTS,
        }

        body = self._request("POST", f"{self.snap_url}/transactions", payload)

        token = body.get("token")
        if not token:
            raise PaymentGatewayError("Midtrans response is missing the Snap token")

        logger.info(f"Snap transaction created for order {order_id}")
        return {
            "checkout_token": token,
            "redirect_url": body.get("redirect_url"),
        }

    # ──────────────────────────────────────────────
    # Core API
    # ──────────────────────────────────────────────

    def get_status(self, order_id):
        """Fetch the gateway's view of an order.

        Raises NotFoundError when Midtrans has no record of the order,
        PaymentGatewayError on any other failure.
        """
        try:
            body = self._request("GET", f"{self.core_url}/{order_id}/status")
        except PaymentGatewayError as e:
            if e.gateway_status == 404:
                raise NotFoundError(f"Transaction {order_id} not found at gateway") from e
            raise

        # The Core API can answer 200 with status_code "404" in the body.
        if str(body.get("status_code")) == "404":
            raise NotFoundError(f"Transaction {order_id} not found at gateway")
        return body

    def cancel(self, order_id):
        """Best-effort cancel. Returns the payload, or None on failure."""
        return self._best_effort("cancel", order_id)

    def expire(self, order_id):
        """Best-effort expire. Returns the payload, or None on failure."""
        return self._best_effort("expire", order_id)

    def _best_effort(self, action, order_id):
        try:
            body = self._request("POST", f"{self.core_url}/{order_id}/{action}", {})
        except PaymentGatewayError as e:
            logger.warning(f"Midtrans {action} failed for order {order_id}: {e}")
            return None
        logger.info(f"Midtrans {action} accepted for order {order_id}")
        return body

    # ──────────────────────────────────────────────
    # Webhook signatures
    # ──────────────────────────────────────────────

    def compute_signature(self, order_id, status_code, gross_amount):
        raw = f"{order_id}{status_code}{gross_amount}{self.server_key}"
        return hashlib.sha512(raw.encode("utf-8")).hexdigest()

    def verify_signature(self, order_id, status_code, gross_amount, signature_key):
        """Check SHA512(order_id + status_code + gross_amount + server_key).

        Never raises: any problem computing the hash counts as invalid.
        """
        try:
            if not (self.server_key and order_id and status_code
                    and gross_amount and signature_key):
                return False
            expected = self.compute_signature(order_id, status_code, gross_amount)
            return hmac.compare_digest(expected, str(signature_key).lower())
        except Exception as e:
            logger.error(f"Signature verification error for order {order_id}: {e}")
            return False


def _error_message(body):
    if isinstance(body, dict):
        messages = body.get("error_messages")
        if messages:
            return messages[0]
        if body.get("status_message"):
            return body["status_message"]
    return "Unknown error"


def get_gateway():
    """Return the MidtransClient bound to the current app."""
    return current_app.extensions["midtrans"]


def init_gateway(app):
    app.extensions["midtrans"] = MidtransClient.from_config(app.config)
