# Session binding: ties a session id to the (IP, User-Agent) pair it was
# first seen with and flags or rejects requests that no longer match.

import logging

from request_shield.core.context import CONTINUE, ClientContext, GuardResult, Reject
from request_shield.core.security import get_client_ip, hash_user_agent, truncate_ip
from request_shield.services.logger import log_security_event
from request_shield.store import SecurityState, SessionBinding

logger = logging.getLogger(__name__)


class SessionBinder:
    name = "session_binding"

    def __init__(self, state: SecurityState):
        self.state = state
        self.settings = state.settings

    def check(self, ctx: ClientContext) -> GuardResult:
        if not self.settings.SESSION_BINDING_ENABLED:
            return CONTINUE

        cookie_name = self.settings.SESSION_COOKIE_NAME
        session_id = ctx.cookies.get(cookie_name)
        if not session_id:
            return CONTINUE

        ip = get_client_ip(ctx, self.settings.TRUST_PROXY)
        user_agent_hash = hash_user_agent(ctx.header("user-agent"))
        strict = self.settings.STRICT_SESSION_BINDING

        with self.state.lock:
            binding = self.state.session_bindings.get(session_id)
            if binding is None:
                self.state.session_bindings[session_id] = SessionBinding(
                    ip=ip, user_agent_hash=user_agent_hash, created_at=self.state.now()
                )
                return CONTINUE

            ip_changed = binding.ip != ip
            user_agent_changed = binding.user_agent_hash != user_agent_hash
            if not (ip_changed or user_agent_changed):
                return CONTINUE

            if strict:
                del self.state.session_bindings[session_id]
            else:
                # Soft rebind keeps the original creation time
                self.state.session_bindings[session_id] = SessionBinding(
                    ip=ip, user_agent_hash=user_agent_hash, created_at=binding.created_at
                )

        log_security_event(
            "Session binding mismatch detected",
            session_id=session_id,
            ip=truncate_ip(ip),
            ip_changed=ip_changed,
            user_agent_changed=user_agent_changed,
            strict=strict,
            path=ctx.path,
            method=ctx.method,
        )

        if not strict:
            return CONTINUE

        return Reject(
            status=401,
            code="SESSION_INVALID",
            message="Sitzungsprüfung fehlgeschlagen. Bitte melden Sie sich erneut an.",
            clear_cookies=(cookie_name,),
        )

    def create_session_binding(self, session_id: str, ip: str, user_agent: str | None) -> None:
        """Called by the login flow once a session has been issued."""
        with self.state.lock:
            self.state.session_bindings[session_id] = SessionBinding(
                ip=ip, user_agent_hash=hash_user_agent(user_agent), created_at=self.state.now()
            )
        logger.info(f"Session bound: session={session_id[:8]}..., ip={truncate_ip(ip)}")

    def remove_session_binding(self, session_id: str) -> None:
        with self.state.lock:
            self.state.session_bindings.pop(session_id, None)

    def get_binding(self, session_id: str) -> SessionBinding | None:
        with self.state.lock:
            return self.state.session_bindings.get(session_id)
