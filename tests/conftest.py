import pytest

from request_shield.core.config import Settings
from request_shield.core.context import ClientContext
from request_shield.store import SecurityState

ENV_KEYS = [
    "APP_ENV",
    "NODE_ENV",
    "MAX_LOGIN_ATTEMPTS",
    "RATE_LIMIT_WINDOW_MS",
    "GENERAL_RATE_LIMIT",
    "GENERAL_RATE_LIMIT_SKIP_GET",
    "SESSION_BINDING_ENABLED",
    "STRICT_SESSION_BINDING",
    "CSRF_ENABLED",
    "CSRF_TOKEN_TTL_SECONDS",
    "TRUST_PROXY",
    "APP_URL",
    "ENABLE_DEBUG_ENDPOINTS",
    "SWEEP_INTERVAL_SECONDS",
    "PATTERN_SCAN_LIMIT",
    "SECURITY_AUDIT_LOG",
]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_state(clock):
    def _make(**overrides) -> SecurityState:
        overrides.setdefault("ENVIRONMENT", "development")
        return SecurityState(Settings(**overrides), clock)

    return _make


def make_ctx(method="GET", path="/", query="", headers=None, cookies=None, body=b"", ip="203.0.113.7"):
    return ClientContext(
        ip=ip,
        method=method,
        path=path,
        query=query,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        cookies=cookies or {},
        raw_body=body,
    )
