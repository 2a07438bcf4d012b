"""Domain errors.

Every error carries the HTTP status it maps to. The JSON error handler
registered in create_app() renders them; the webhook endpoint catches them
and still acknowledges the gateway with 200.
"""


class AppError(Exception):
    """Base class for errors that are safe to show to API callers."""

    status_code = 500

    def __init__(self, message="Something went wrong", status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class ValidationError(AppError):
    """Malformed or missing caller input."""

    status_code = 400

    def __init__(self, message="Validation failed", errors=None):
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self):
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class AuthenticationError(AppError):
    status_code = 401

    def __init__(self, message="Authentication failed"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message="Resource not found"):
        super().__init__(message)


class ConflictError(AppError):
    """A status transition that the current state does not allow."""

    status_code = 409

    def __init__(self, message="Resource conflict"):
        super().__init__(message)


class PaymentGatewayError(AppError):
    """Any failure talking to Midtrans: network, timeout, non-2xx, bad JSON.

    `gateway_status` is the HTTP status Midtrans answered with, or None
    when no response was received.
    """

    status_code = 502

    def __init__(self, message="Payment gateway error", gateway_status=None):
        super().__init__(message)
        self.gateway_status = gateway_status

    def to_dict(self):
        data = super().to_dict()
        if self.gateway_status is not None:
            data["gateway_status"] = self.gateway_status
        return data
