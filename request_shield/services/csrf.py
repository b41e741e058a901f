# CSRF protection: Origin/Referer validation for state-changing requests,
# plus a session-scoped token store for clients that opt into tokens.

import hmac
import logging
from urllib.parse import urlsplit

from request_shield.core.context import CONTINUE, ClientContext, GuardResult, Reject
from request_shield.core.security import generate_csrf_token
from request_shield.services.logger import log_security_event
from request_shield.store import CsrfTokenEntry, SecurityState

logger = logging.getLogger(__name__)

SAFE_METHODS = ("GET", "HEAD", "OPTIONS")
LOCAL_HOSTNAMES = ("localhost", "127.0.0.1")
DEFAULT_PORTS = {"http": 80, "https": 443}


def _host_of(url: str) -> str | None:
    """Host of ``url`` as host[:port], without the scheme's default port."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None

    hostname = parts.hostname
    if not hostname:
        return None
    if ":" in hostname:
        hostname = f"[{hostname}]"
    if port is None or port == DEFAULT_PORTS.get(parts.scheme.lower()):
        return hostname
    return f"{hostname}:{port}"


def _origin_allowed(origin: str, allowed: str) -> bool:
    # Prefix match that only accepts a full origin or a path below it,
    # so https://app.example does not admit https://app.example.evil.com
    return origin == allowed or origin.startswith(allowed + "/")


class CsrfGuard:
    name = "csrf"

    def __init__(self, state: SecurityState):
        self.settings = state.settings

    def allowed_origins(self, ctx: ClientContext) -> list[str]:
        allowed = []
        if self.settings.APP_URL:
            allowed.append(self.settings.APP_URL.rstrip("/"))

        host = ctx.header("host")
        if host:
            allowed.append(f"https://{host}")
            if not self.settings.is_production:
                allowed.append(f"http://{host}")
                allowed.extend(self.settings.DEV_ORIGINS)

                # Dev proxies run on arbitrary ports: reflect any local origin
                origin = ctx.header("origin")
                if origin:
                    try:
                        hostname = urlsplit(origin).hostname
                    except ValueError:
                        hostname = None
                    if hostname in LOCAL_HOSTNAMES:
                        allowed.append(origin.rstrip("/"))
        return allowed

    def check(self, ctx: ClientContext) -> GuardResult:
        if not self.settings.CSRF_ENABLED:
            return CONTINUE
        if ctx.method.upper() in SAFE_METHODS:
            return CONTINUE

        origin = ctx.header("origin")
        referer = ctx.header("referer")
        allowed = self.allowed_origins(ctx)

        if origin and allowed:
            normalized = origin.rstrip("/")
            if not any(_origin_allowed(normalized, entry) for entry in allowed):
                log_security_event(
                    "CSRF blocked: invalid origin",
                    origin=origin,
                    host=ctx.header("host"),
                    allowed_origins=len(allowed),
                    path=ctx.path,
                    method=ctx.method,
                )
                return Reject(
                    status=403,
                    code="CSRF_ORIGIN_MISMATCH",
                    message="Der Ursprung der Anfrage ist nicht erlaubt.",
                )

        if referer and self.settings.is_production:
            referer_host = _host_of(referer)
            if referer_host is None:
                # Unparseable referer: inconclusive, fall through
                logger.debug(f"Ignoring unparseable referer on {ctx.path}")
                return CONTINUE

            allowed_hosts = {_host_of(entry) for entry in allowed}
            if referer_host not in allowed_hosts:
                log_security_event(
                    "CSRF blocked: invalid referer",
                    referer=referer_host,
                    path=ctx.path,
                    method=ctx.method,
                )
                return Reject(
                    status=403,
                    code="CSRF_REFERER_MISMATCH",
                    message="Der Referer der Anfrage ist nicht erlaubt.",
                )

        # No Origin and no Referer: SameSite cookies cover this case
        return CONTINUE


class CsrfTokenStore:
    """Issues and validates expiring CSRF tokens, optionally tied to a session."""

    def __init__(self, state: SecurityState):
        self.state = state

    def issue(self, session_id: str | None = None) -> str:
        token = generate_csrf_token()
        with self.state.lock:
            expires = self.state.now() + self.state.settings.CSRF_TOKEN_TTL_SECONDS
            self.state.csrf_tokens[token] = CsrfTokenEntry(token=token, expires=expires, session_id=session_id)
        return token

    def validate(self, token: str, session_id: str | None = None) -> bool:
        if not token:
            return False
        with self.state.lock:
            entry = self.state.csrf_tokens.get(token)
            now = self.state.now()
        if entry is None or now > entry.expires:
            return False
        if entry.session_id is None:
            return True
        # Compare bytes: compare_digest rejects non-ASCII str
        return hmac.compare_digest(entry.session_id.encode("utf-8"), (session_id or "").encode("utf-8"))

    def revoke(self, token: str) -> None:
        with self.state.lock:
            self.state.csrf_tokens.pop(token, None)
