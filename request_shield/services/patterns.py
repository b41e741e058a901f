"""Heuristic attack detection for request URLs and bodies.

Signatures are kept as static, ordered ``(name, pattern)`` lists. Every
pattern starts with a literal and only uses bounded quantifiers, so the
work per start position is constant and a scan stays linear in the input
even on the backtracking ``re`` engine.
"""

import re
from urllib.parse import unquote_plus

from request_shield.core.context import CONTINUE, ClientContext, GuardResult, Reject
from request_shield.core.security import get_client_ip, truncate_ip
from request_shield.services.logger import log_security_event
from request_shield.store import SecurityState

SQL_PATTERNS = [
    ("union_select", re.compile(r"union\s{1,64}(?:all\s{1,64})?select", re.IGNORECASE)),
    ("or_tautology", re.compile(r"'\s{0,16}or\s{0,16}'1'\s{0,16}=\s{0,16}'1", re.IGNORECASE)),
    ("drop_table", re.compile(r";\s{0,16}drop\s{1,16}table", re.IGNORECASE)),
    ("trailing_comment", re.compile(r"--\s{0,64}\Z")),
    ("block_comment", re.compile(r"/\*[^\n]{0,256}?\*/")),
]

XSS_PATTERNS = [
    ("script_tag", re.compile(r"<script", re.IGNORECASE)),
    ("javascript_uri", re.compile(r"javascript:", re.IGNORECASE)),
    ("event_handler", re.compile(r"\bon[a-z]{2,32}\s{0,16}=", re.IGNORECASE)),
    ("vbscript_uri", re.compile(r"vbscript:", re.IGNORECASE)),
]

TRAVERSAL_MARKERS = ("..", "%2e%2e")


def first_match(patterns, text: str) -> str | None:
    for name, pattern in patterns:
        if pattern.search(text):
            return name
    return None


class PatternDetector:
    """
    Flags path traversal, SQL injection and XSS signatures.

    Detection-only outside production so signatures can be tuned against
    real traffic; in production a match rejects the request.
    """

    name = "malicious_patterns"

    def __init__(self, state: SecurityState):
        self.settings = state.settings

    def _url_text(self, ctx: ClientContext) -> str:
        raw = ctx.url[: self.settings.PATTERN_SCAN_LIMIT]
        return raw + "\n" + unquote_plus(raw)

    def _body_text(self, ctx: ClientContext) -> str:
        body = ctx.raw_body[: self.settings.PATTERN_SCAN_LIMIT]
        return body.decode("utf-8", errors="replace")

    def is_html_endpoint(self, path: str) -> bool:
        return any(endpoint in path for endpoint in self.settings.HTML_CONTENT_ENDPOINTS)

    def scan(self, ctx: ClientContext) -> tuple[list[str], list[str]]:
        """Returns (categories, signature names) found in the request."""
        categories = []
        signatures = []

        url_text = self._url_text(ctx)
        if any(marker in url_text.lower() for marker in TRAVERSAL_MARKERS):
            categories.append("path_traversal")
            signatures.append("dot_dot")

        for category, patterns in (("sql_injection_url", SQL_PATTERNS), ("xss_url", XSS_PATTERNS)):
            match = first_match(patterns, url_text)
            if match:
                categories.append(category)
                signatures.append(match)

        if ctx.raw_body and not self.is_html_endpoint(ctx.path):
            body_text = self._body_text(ctx)
            for category, patterns in (("sql_injection_body", SQL_PATTERNS), ("xss_body", XSS_PATTERNS)):
                match = first_match(patterns, body_text)
                if match:
                    categories.append(category)
                    signatures.append(match)

        return categories, signatures

    def check(self, ctx: ClientContext) -> GuardResult:
        categories, signatures = self.scan(ctx)
        if not categories:
            return CONTINUE

        blocking = self.settings.is_production
        log_security_event(
            "Malicious pattern detected",
            patterns=categories,
            signatures=signatures,
            path=ctx.path,
            method=ctx.method,
            ip=truncate_ip(get_client_ip(ctx, self.settings.TRUST_PROXY)),
            blocked=blocking,
        )

        if not blocking:
            return CONTINUE

        return Reject(
            status=400,
            code="INVALID_REQUEST",
            message="Die Anfrage enthält ungültige Zeichen.",
        )
