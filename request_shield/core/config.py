# Centralised configuration for the request guard layer
# (environment variables, thresholds, windows, feature toggles).

import os

TRUTHY = ("1", "true", "yes", "on")

# Limits that must be at least 1
POSITIVE_SETTINGS = (
    "MAX_LOGIN_ATTEMPTS",
    "RATE_LIMIT_WINDOW_MS",
    "GENERAL_RATE_LIMIT",
    "SWEEP_INTERVAL_SECONDS",
    "PATTERN_SCAN_LIMIT",
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in TRUTHY


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


class Settings:
    APP_NAME = "Request Shield"

    # Cookie the session store hands out; read here, never issued here
    SESSION_COOKIE_NAME = "sessionId"

    LOGIN_PATHS = ("/login", "/api/login", "/api/auth/login")
    LOGIN_EXCLUDED_PATHS = (
        "/register",
        "/forgot-password",
        "/reset-password",
        "/verify-email",
        "/resend-verification",
        "/check-availability",
        "/test-email",
    )
    GENERAL_RATE_LIMIT_EXEMPT_PATHS = ("/api/health", "/api/user")
    GENERAL_RATE_LIMIT_WINDOW_SECONDS = 60
    MAX_BLOCK_SECONDS = 24 * 60 * 60  # 24 hours

    DEV_ORIGINS = (
        "http://localhost:5000",
        "http://127.0.0.1:5000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    )

    # Endpoints receiving scraped HTML or PDF text, exempt from body scanning
    HTML_CONTENT_ENDPOINTS = (
        "/api/extract-url-product-data",
        "/api/scrape-url",
        "/api/extract-pdf-data",
        "/api/scrape",
        "/api/search/pdf-extract",
        "/api/search/web-content",
    )

    SESSION_BINDING_MAX_AGE_SECONDS = 24 * 60 * 60

    def __init__(self, **overrides):
        self.ENVIRONMENT = (os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "development").strip().lower()

        # Rate limiting
        self.MAX_LOGIN_ATTEMPTS = _env_int("MAX_LOGIN_ATTEMPTS", 5)
        self.RATE_LIMIT_WINDOW_MS = _env_int("RATE_LIMIT_WINDOW_MS", 900_000)  # 15 minutes
        self.GENERAL_RATE_LIMIT = _env_int("GENERAL_RATE_LIMIT", 100)
        self.GENERAL_RATE_LIMIT_SKIP_GET = _env_bool("GENERAL_RATE_LIMIT_SKIP_GET", False)

        # Session binding
        self.SESSION_BINDING_ENABLED = _env_bool("SESSION_BINDING_ENABLED", True)
        self.STRICT_SESSION_BINDING = _env_bool("STRICT_SESSION_BINDING", False)

        # CSRF
        self.CSRF_ENABLED = _env_bool("CSRF_ENABLED", True)
        self.CSRF_TOKEN_TTL_SECONDS = _env_int("CSRF_TOKEN_TTL_SECONDS", 3600)
        self.APP_URL = os.getenv("APP_URL", "")

        # Proxies
        self.TRUST_PROXY = _env_bool("TRUST_PROXY", False)

        # Debug endpoints stay hidden unless explicitly enabled in development
        self.ENABLE_DEBUG_ENDPOINTS = _env_bool("ENABLE_DEBUG_ENDPOINTS", False)

        # Housekeeping
        self.SWEEP_INTERVAL_SECONDS = _env_int("SWEEP_INTERVAL_SECONDS", 300)  # 5 minutes
        self.PATTERN_SCAN_LIMIT = _env_int("PATTERN_SCAN_LIMIT", 64 * 1024)

        # Logging
        self.SECURITY_AUDIT_LOG = os.getenv("SECURITY_AUDIT_LOG", "")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(self, key, value)

        for key in POSITIVE_SETTINGS:
            value = getattr(self, key)
            if value < 1:
                raise ValueError(f"{key} must be at least 1, got {value!r}")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def debug_endpoints_enabled(self) -> bool:
        return self.ENVIRONMENT == "development" and self.ENABLE_DEBUG_ENDPOINTS

    @property
    def rate_limit_window_seconds(self) -> float:
        return self.RATE_LIMIT_WINDOW_MS / 1000.0


settings = Settings()
