# Hides debug and test endpoints unless they are explicitly enabled
# in a development environment.

from request_shield.core.context import CONTINUE, ClientContext, GuardResult, Reject
from request_shield.core.security import get_client_ip, truncate_ip
from request_shield.services.logger import log_security_event
from request_shield.store import SecurityState

DEBUG_PATH_MARKERS = ("/debug/", "/test-")


class DebugEndpointGuard:
    name = "debug_endpoints"

    def __init__(self, state: SecurityState):
        self.settings = state.settings

    def check(self, ctx: ClientContext) -> GuardResult:
        if not any(marker in ctx.path for marker in DEBUG_PATH_MARKERS):
            return CONTINUE
        if self.settings.debug_endpoints_enabled:
            return CONTINUE

        log_security_event(
            "Blocked debug endpoint access",
            path=ctx.path,
            method=ctx.method,
            ip=truncate_ip(get_client_ip(ctx, self.settings.TRUST_PROXY)),
        )
        return Reject(status=404, code="NOT_FOUND", message="Endpunkt nicht gefunden.")
