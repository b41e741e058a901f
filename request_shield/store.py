import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from request_shield.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    first_request_at: float
    blocked: bool = False
    blocked_until: Optional[float] = None

    def block(self, until: float) -> None:
        self.blocked = True
        self.blocked_until = until

    def unblock(self) -> None:
        self.blocked = False
        self.blocked_until = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked and self.blocked_until is not None and now < self.blocked_until


@dataclass
class CsrfTokenEntry:
    token: str
    expires: float
    session_id: Optional[str] = None


@dataclass
class SessionBinding:
    ip: str
    user_agent_hash: str
    created_at: float


class SecurityState:
    """
    Process-wide protective state: rate-limit counters, CSRF tokens and
    session bindings, plus the lock and clock every guard shares.

    One lock covers all three maps. Each critical section is O(1) apart
    from ``sweep``, which never does I/O.
    """

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self.clock = clock
        self.lock = threading.Lock()

        # ip or "general:{ip}" -> RateLimitEntry
        self.rate_limits: Dict[str, RateLimitEntry] = {}

        # token -> CsrfTokenEntry
        self.csrf_tokens: Dict[str, CsrfTokenEntry] = {}

        # session id -> SessionBinding
        self.session_bindings: Dict[str, SessionBinding] = {}

    def now(self) -> float:
        return self.clock()

    def sweep(self, now: Optional[float] = None) -> Dict[str, int]:
        """
        Evicts stale records and returns how many were removed per map.

        Rate-limit entries go once ``2 x window`` has passed since their
        first request, but never while a block is still running.
        """
        if now is None:
            now = self.now()

        stale_after = self.settings.rate_limit_window_seconds * 2
        max_binding_age = self.settings.SESSION_BINDING_MAX_AGE_SECONDS

        with self.lock:
            stale_limits = [
                key for key, entry in self.rate_limits.items()
                if now - entry.first_request_at > stale_after and not entry.is_blocked(now)
            ]
            for key in stale_limits:
                del self.rate_limits[key]

            expired_tokens = [key for key, entry in self.csrf_tokens.items() if now > entry.expires]
            for key in expired_tokens:
                del self.csrf_tokens[key]

            old_bindings = [
                key for key, binding in self.session_bindings.items()
                if now - binding.created_at > max_binding_age
            ]
            for key in old_bindings:
                del self.session_bindings[key]

        removed = {
            "rate_limits": len(stale_limits),
            "csrf_tokens": len(expired_tokens),
            "session_bindings": len(old_bindings),
        }
        if any(removed.values()):
            logger.info(f"Sweep removed {removed}")
        return removed

    def clear(self) -> None:
        with self.lock:
            self.rate_limits.clear()
            self.csrf_tokens.clear()
            self.session_bindings.clear()
