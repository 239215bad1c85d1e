import os


def _env_flag(name):
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: Supabase and most PaaS providers hand out
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Supabase ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")                          # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")  # used for auth lookups
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY")
    SUPABASE_AUTH_TIMEOUT = int(os.environ.get("SUPABASE_AUTH_TIMEOUT", 10))

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")

    # --- Checkout rate limit (per user) ---
    CHECKOUT_RATE_LIMIT_MAX = int(os.environ.get("CHECKOUT_RATE_LIMIT_MAX", 100))
    CHECKOUT_RATE_LIMIT_WINDOW = int(os.environ.get("CHECKOUT_RATE_LIMIT_WINDOW", 60))

    # --- Product API rate limit (per user) ---
    PRODUCTS_RATE_LIMIT_MAX = int(os.environ.get("PRODUCTS_RATE_LIMIT_MAX", 60))
    PRODUCTS_RATE_LIMIT_WINDOW = int(os.environ.get("PRODUCTS_RATE_LIMIT_WINDOW", 60))

    # --- CSRF tokens ---
    CSRF_TOKEN_TTL = int(os.environ.get("CSRF_TOKEN_TTL", 3600))

    # --- Integration testing ---
    # Lets the x-supabase-test-mode header stand in for a synthetic admin.
    # Never honoured unless this flag is set at deploy time.
    AUTH_TEST_MODE_ENABLED = _env_flag("AUTH_TEST_MODE_ENABLED")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Flask-Limiter ---
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "SUPABASE_URL",
            "SUPABASE_SERVICE_ROLE_KEY",
            "STRIPE_SECRET_KEY",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development against `supabase start`."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, Stripe and Supabase faked."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SUPABASE_URL = "http://localhost:54321"
    SUPABASE_SERVICE_ROLE_KEY = "service-role-test-key"
    SUPABASE_ANON_KEY = "anon-test-key"
    STRIPE_SECRET_KEY = "sk_test_fake"
    AUTH_TEST_MODE_ENABLED = False  # override per-test as needed
    RATELIMIT_ENABLED = False  # disable Flask-Limiter in tests
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
