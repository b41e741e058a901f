import math

from request_shield.core.context import CONTINUE, ClientContext, GuardResult, Reject
from request_shield.core.security import get_client_ip, truncate_ip
from request_shield.services.logger import log_security_event
from request_shield.store import RateLimitEntry, SecurityState

SAFE_METHODS = ("GET", "HEAD", "OPTIONS")

MSG_LOGIN_BLOCKED = "Zu viele Anmeldeversuche. Bitte versuchen Sie es später erneut."
MSG_LOGIN_LOCKED = "Zu viele Anmeldeversuche. Der Zugriff ist vorübergehend gesperrt."
MSG_TOO_MANY_REQUESTS = "Zu viele Anfragen. Bitte kurz warten und erneut versuchen."

# Keeps 2**k finite; the 24h cap is reached long before this
MAX_BACKOFF_EXPONENT = 32


def _rate_limited(message: str, retry_after: int) -> Reject:
    retry_after = max(1, retry_after)
    return Reject(
        status=429,
        code="RATE_LIMITED",
        message=message,
        retry_after=retry_after,
        headers={"Retry-After": str(retry_after)},
    )


def general_key(ip: str) -> str:
    return f"general:{ip}"


class AuthRateLimiter:
    """
    Brute-force protection for login endpoints.

    Counts attempts per client IP inside a fixed window. Reaching the
    threshold blocks the IP for ``window * 2**k`` seconds (capped at 24h),
    where ``k`` is the number of lockouts already served. Attempts during
    a block are rejected without extending it.
    """

    name = "auth_rate_limit"

    def __init__(self, state: SecurityState):
        self.state = state
        self.settings = state.settings

    def applies(self, ctx: ClientContext) -> bool:
        if ctx.method.upper() in SAFE_METHODS:
            return False
        if ctx.path not in self.settings.LOGIN_PATHS:
            return False
        return not any(excluded in ctx.path for excluded in self.settings.LOGIN_EXCLUDED_PATHS)

    def check(self, ctx: ClientContext) -> GuardResult:
        if not self.applies(ctx):
            return CONTINUE
        ip = get_client_ip(ctx, self.settings.TRUST_PROXY)
        return self.register_attempt(ip)

    def block_duration(self, count: int) -> float:
        threshold = self.settings.MAX_LOGIN_ATTEMPTS
        exponent = min(count // threshold - 1, MAX_BACKOFF_EXPONENT)
        duration = self.settings.rate_limit_window_seconds * (2 ** exponent)
        return min(duration, self.settings.MAX_BLOCK_SECONDS)

    def register_attempt(self, ip: str) -> GuardResult:
        window = self.settings.rate_limit_window_seconds
        threshold = self.settings.MAX_LOGIN_ATTEMPTS

        with self.state.lock:
            now = self.state.now()
            entry = self.state.rate_limits.get(ip)
            if entry is None:
                entry = RateLimitEntry(count=0, first_request_at=now)
                self.state.rate_limits[ip] = entry

            if entry.is_blocked(now):
                retry_after = math.ceil(entry.blocked_until - now)
                attempts = entry.count
                locked = False
            else:
                if entry.blocked:
                    # Block served: the next window starts when it ended and
                    # the count carries over, so continued attempts escalate.
                    entry.first_request_at = entry.blocked_until
                    entry.unblock()

                if now - entry.first_request_at > window:
                    entry.count = 0
                    entry.first_request_at = now

                entry.count += 1
                if entry.count % threshold != 0:
                    return CONTINUE

                duration = self.block_duration(entry.count)
                entry.block(now + duration)
                retry_after = math.ceil(duration)
                attempts = entry.count
                locked = True

        if locked:
            log_security_event(
                "Rate limit: login locked",
                ip=truncate_ip(ip),
                attempts=attempts,
                block_minutes=round(retry_after / 60),
            )
            return _rate_limited(MSG_LOGIN_LOCKED, retry_after)

        log_security_event(
            "Rate limit: blocked login attempt",
            ip=truncate_ip(ip),
            attempts=attempts,
            retry_after=retry_after,
        )
        return _rate_limited(MSG_LOGIN_BLOCKED, retry_after)


def reset_login_attempts(state: SecurityState, ip: str) -> None:
    """Clears the auth and general counters for ``ip`` after a successful login."""
    with state.lock:
        state.rate_limits.pop(ip, None)
        state.rate_limits.pop(general_key(ip), None)


class GeneralRateLimiter:
    """Hard per-minute cap on /api requests, keyed by ``general:{ip}``."""

    name = "general_rate_limit"

    def __init__(self, state: SecurityState):
        self.state = state
        self.settings = state.settings

    def applies(self, ctx: ClientContext) -> bool:
        if not ctx.path.startswith("/api"):
            return False
        if ctx.path in self.settings.GENERAL_RATE_LIMIT_EXEMPT_PATHS:
            return False
        # Opt-in convenience for local development only
        if (
            ctx.method.upper() == "GET"
            and self.settings.GENERAL_RATE_LIMIT_SKIP_GET
            and not self.settings.is_production
        ):
            return False
        return True

    def check(self, ctx: ClientContext) -> GuardResult:
        if not self.applies(ctx):
            return CONTINUE

        ip = get_client_ip(ctx, self.settings.TRUST_PROXY)
        key = general_key(ip)
        window = self.settings.GENERAL_RATE_LIMIT_WINDOW_SECONDS

        with self.state.lock:
            now = self.state.now()
            entry = self.state.rate_limits.get(key)
            if entry is None or now - entry.first_request_at > window:
                self.state.rate_limits[key] = RateLimitEntry(count=1, first_request_at=now)
                return CONTINUE

            if entry.count >= self.settings.GENERAL_RATE_LIMIT:
                retry_after = math.ceil(entry.first_request_at + window - now)
                result = _rate_limited(MSG_TOO_MANY_REQUESTS, retry_after)
            else:
                entry.count += 1
                return CONTINUE

        log_security_event(
            "Rate limit: general limit exceeded",
            ip=truncate_ip(ip),
            path=ctx.path,
            method=ctx.method,
            retry_after=result.retry_after,
        )
        return result
