# Request guard pipeline and its Starlette adapter. Every inbound request
# is turned into a ClientContext and passed through the guards in order;
# the first rejection ends the pipeline.

import logging
import time
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from request_shield.core.config import Settings
from request_shield.core.context import CONTINUE, ClientContext, GuardResult, Reject
from request_shield.core.security import generate_secure_token, get_client_ip
from request_shield.services.csrf import CsrfGuard, CsrfTokenStore
from request_shield.services.debug import DebugEndpointGuard
from request_shield.services.limiter import AuthRateLimiter, GeneralRateLimiter, reset_login_attempts
from request_shield.services.logger import start_audit_trail, stop_audit_trail
from request_shield.services.patterns import PatternDetector
from request_shield.services.sanitize import sanitize_body, sanitize_query
from request_shield.services.sessions import SessionBinder
from request_shield.services.sweeper import SecuritySweeper
from request_shield.store import SecurityState

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")

CSP_PRODUCTION = (
    "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https:; font-src 'self'; connect-src 'self'; "
    "frame-ancestors 'none'; base-uri 'self'; form-action 'self'; upgrade-insecure-requests"
)
CSP_DEVELOPMENT = (
    "default-src 'self'; script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
    "style-src 'self' 'unsafe-inline'; img-src 'self' data: https:; font-src 'self'; "
    "connect-src 'self' ws: wss:; frame-ancestors 'none'"
)


class SecurityShield:
    """
    Owns the protective state, the guards built on it and the sweeper.

    Created once per process (or per test), started and stopped by the
    application lifespan.
    """

    def __init__(self, settings: Settings | None = None, clock: Callable[[], float] = time.monotonic):
        self.settings = settings if settings is not None else Settings()
        self.state = SecurityState(self.settings, clock)

        self.debug_guard = DebugEndpointGuard(self.state)
        self.pattern_detector = PatternDetector(self.state)
        self.csrf_guard = CsrfGuard(self.state)
        self.csrf_tokens = CsrfTokenStore(self.state)
        self.auth_limiter = AuthRateLimiter(self.state)
        self.general_limiter = GeneralRateLimiter(self.state)
        self.session_binder = SessionBinder(self.state)

        self.guards = [
            self.debug_guard,
            self.pattern_detector,
            self.csrf_guard,
            self.auth_limiter,
            self.general_limiter,
            self.session_binder,
        ]

        self.sweeper = SecuritySweeper(self.state)
        self._audit_listener = None

    def evaluate(self, ctx: ClientContext) -> GuardResult:
        for guard in self.guards:
            try:
                result = guard.check(ctx)
            except Exception:
                # A broken guard must not take the application down with it
                logger.exception(f"Guard {guard.name} failed on {ctx.method} {ctx.path}, continuing")
                continue
            if isinstance(result, Reject):
                return result
        return CONTINUE

    def client_ip(self, ctx: ClientContext) -> str:
        return get_client_ip(ctx, self.settings.TRUST_PROXY)

    def reset_login_attempts(self, ip: str) -> None:
        reset_login_attempts(self.state, ip)

    def create_session_binding(self, session_id: str, ip: str, user_agent: str | None) -> None:
        self.session_binder.create_session_binding(session_id, ip, user_agent)

    def remove_session_binding(self, session_id: str) -> None:
        self.session_binder.remove_session_binding(session_id)

    async def start(self) -> None:
        self._audit_listener = start_audit_trail(self.settings.SECURITY_AUDIT_LOG)
        self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        stop_audit_trail(self._audit_listener)
        self._audit_listener = None


def security_headers(path: str, settings: Settings) -> dict[str, str]:
    headers = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=(), usb=()",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "Content-Security-Policy": CSP_PRODUCTION if settings.is_production else CSP_DEVELOPMENT,
        "X-Request-ID": generate_secure_token(16),
    }

    if path.startswith("/api/"):
        headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate"
        headers["Pragma"] = "no-cache"
        headers["Expires"] = "0"

    if settings.is_production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"

    return headers


async def build_client_context(request: Request) -> ClientContext:
    """
    Reads and sanitises the body and query string, writing the cleaned
    versions back so the route sees the same input the guards checked.
    """
    body = b""
    if request.method.upper() in BODY_METHODS:
        raw_body = await request.body()
        body = sanitize_body(raw_body, request.headers.get("content-type"))
        if body is not raw_body:
            # BaseHTTPMiddleware replays the cached body to the downstream app
            request._body = body

    query = sanitize_query(request.url.query)
    if query != request.url.query:
        request.scope["query_string"] = query.encode("latin-1")

    return context_from_request(request, body, query)


def context_from_request(request: Request, body: bytes = b"", query: str | None = None) -> ClientContext:
    # Repeated headers are joined the way proxies fold them, so the
    # first X-Forwarded-For hop survives
    headers = {name: ", ".join(request.headers.getlist(name)) for name in request.headers.keys()}
    return ClientContext(
        ip=request.client.host if request.client else "unknown",
        method=request.method,
        path=request.url.path,
        query=request.url.query if query is None else query,
        headers=headers,
        cookies=dict(request.cookies),
        raw_body=body,
    )


def reject_response(result: Reject) -> JSONResponse:
    response = JSONResponse(status_code=result.status, content=result.envelope(), headers=result.headers)
    for cookie in result.clear_cookies:
        response.delete_cookie(cookie)
    return response


class SecurityMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, shield: SecurityShield):
        super().__init__(app)
        self.shield = shield

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = await build_client_context(request)
        result = self.shield.evaluate(ctx)

        if isinstance(result, Reject):
            response = reject_response(result)
        else:
            response = await call_next(request)

        for name, value in security_headers(ctx.path, self.shield.settings).items():
            response.headers[name] = value
        return response
