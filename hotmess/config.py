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

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # --- Stripe Connect onboarding links ---
    STRIPE_CONNECT_REFRESH_URL = os.environ.get("STRIPE_CONNECT_REFRESH_URL")
    STRIPE_CONNECT_RETURN_URL = os.environ.get("STRIPE_CONNECT_RETURN_URL")

    # --- Settlement ---
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "gbp")
    PLATFORM_FEE_RATE = os.environ.get("PLATFORM_FEE_RATE", "0.10")  # parsed as Decimal
    PLATFORM_ACCOUNT_EMAIL = os.environ.get(
        "PLATFORM_ACCOUNT_EMAIL", "platform@hotmess.london"
    )
    ESCROW_AUTO_RELEASE_HOURS = int(os.environ.get("ESCROW_AUTO_RELEASE_HOURS", 48))
    CHECKOUT_SESSION_TTL_MINUTES = int(os.environ.get("CHECKOUT_SESSION_TTL_MINUTES", 60))

    # --- Business credits ---
    CREDIT_UNIT_PRICE_MINOR = int(os.environ.get("CREDIT_UNIT_PRICE_MINOR", 10))  # 10p per credit
    CREDITS_MIN_PURCHASE = int(os.environ.get("CREDITS_MIN_PURCHASE", 100))
    CREDITS_MAX_PURCHASE = int(os.environ.get("CREDITS_MAX_PURCHASE", 100000))

    # --- Pickup beacons ---
    PICKUP_RADIUS_METERS = float(os.environ.get("PICKUP_RADIUS_METERS", 100))

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Rate limiting ---
    RATELIMIT_ENABLED = not _env_flag("RATELIMIT_DISABLED")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "APP_BASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, rate limiting off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_CONNECT_REFRESH_URL = "http://localhost:5000/seller/onboarding/refresh"
    STRIPE_CONNECT_RETURN_URL = "http://localhost:5000/seller/onboarding/done"
    APP_BASE_URL = "http://localhost:5000"
    PLATFORM_FEE_RATE = "0.10"
    PLATFORM_ACCOUNT_EMAIL = "platform@hotmess.test"
    PICKUP_RADIUS_METERS = 100.0
    CREDIT_UNIT_PRICE_MINOR = 10
    CREDITS_MIN_PURCHASE = 100
    CREDITS_MAX_PURCHASE = 100000
    ESCROW_AUTO_RELEASE_HOURS = 48
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
