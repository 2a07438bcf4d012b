import os


def _env_flag(name):
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Midtrans ---
    MIDTRANS_SERVER_KEY = os.environ.get("MIDTRANS_SERVER_KEY")
    MIDTRANS_CLIENT_KEY = os.environ.get("MIDTRANS_CLIENT_KEY")
    # Single switch between sandbox and production endpoints.
    MIDTRANS_IS_PRODUCTION = _env_flag("MIDTRANS_IS_PRODUCTION")
    MIDTRANS_TIMEOUT_SECONDS = float(os.environ.get("MIDTRANS_TIMEOUT_SECONDS", 10))

    # --- Registration product ---
    ARCHITECT_REGISTRATION_FEE = int(os.environ.get("ARCHITECT_REGISTRATION_FEE", 500000))  # IDR
    PAYMENT_EXPIRY_HOURS = int(os.environ.get("PAYMENT_EXPIRY_HOURS", 24))
    ORDER_ID_PREFIX = os.environ.get("ORDER_ID_PREFIX", "ARCH")

    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")

    # --- Email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "HaloSitek")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "MIDTRANS_SERVER_KEY",
            "MIDTRANS_CLIENT_KEY",
            "FRONTEND_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///halositek.db"
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, CSRF disabled."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    MIDTRANS_SERVER_KEY = "SB-Mid-server-test"
    MIDTRANS_CLIENT_KEY = "SB-Mid-client-test"
    MIDTRANS_IS_PRODUCTION = False
    MIDTRANS_TIMEOUT_SECONDS = 5
    ARCHITECT_REGISTRATION_FEE = 500000
    PAYMENT_EXPIRY_HOURS = 24
    ORDER_ID_PREFIX = "ARCH"
    FRONTEND_URL = "http://localhost:3000"
    MAIL_USERNAME = None  # never touch SMTP in tests
    MAIL_PASSWORD = None
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
