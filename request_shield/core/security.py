# Security-related helpers: token generation, User-Agent hashing
# and client IP derivation.
import hashlib
import secrets

from request_shield.core.context import ClientContext


def generate_secure_token(length: int = 32) -> str:
    """Returns ``length`` random bytes as a hex string."""
    return secrets.token_hex(length)


def generate_csrf_token() -> str:
    return generate_secure_token(32)


def hash_user_agent(user_agent: str | None) -> str:
    """
    Short, stable digest of a User-Agent used for session binding.
    Missing headers all collapse to ``"unknown"``.
    """
    if not user_agent:
        return "unknown"
    return hashlib.sha256(user_agent.encode("utf-8")).hexdigest()[:16]


def get_client_ip(ctx: ClientContext, trust_proxy: bool = False) -> str:
    # X-Forwarded-For is only honoured when running behind a trusted proxy
    forwarded_for = ctx.header("x-forwarded-for")
    if forwarded_for and trust_proxy:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return ctx.ip or "unknown"


def truncate_ip(ip: str, length: int = 10) -> str:
    if len(ip) <= length:
        return ip
    return ip[:length] + "..."
