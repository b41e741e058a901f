"""Tests for malicious pattern detection in URLs and bodies."""

import logging
import time

import pytest

from conftest import make_ctx
from request_shield.core.context import CONTINUE, Reject
from request_shield.services.patterns import SQL_PATTERNS, XSS_PATTERNS, PatternDetector


@pytest.fixture
def detector(make_state):
    return PatternDetector(make_state())


@pytest.mark.parametrize("environment", ["development", "production"])
def test_union_select_flagged_in_every_environment(make_state, environment):
    detector = PatternDetector(make_state(ENVIRONMENT=environment))
    categories, signatures = detector.scan(make_ctx(path="/api/items", query="id=1%20UNION%20SELECT%20password"))
    assert categories == ["sql_injection_url"]
    assert signatures == ["union_select"]


def test_detection_only_outside_production(make_state, caplog):
    detector = PatternDetector(make_state())
    ctx = make_ctx(path="/api/items", query="q=1+union+select+2")

    with caplog.at_level(logging.WARNING, logger="request_shield.security"):
        assert detector.check(ctx) is CONTINUE

    events = [r for r in caplog.records if r.name == "request_shield.security"]
    assert len(events) == 1
    assert events[0].details["patterns"] == ["sql_injection_url"]
    assert events[0].details["path"] == "/api/items"
    assert events[0].details["blocked"] is False


def test_blocks_in_production(make_state):
    detector = PatternDetector(make_state(ENVIRONMENT="production"))
    result = detector.check(make_ctx(path="/api/items", query="q=1+union+select+2"))
    assert isinstance(result, Reject)
    assert result.status == 400
    assert result.code == "INVALID_REQUEST"


@pytest.mark.parametrize(
    "query",
    [
        "file=../../etc/passwd",
        "file=%2e%2e%2fetc%2fpasswd",
        "file=%252e%252e%252fetc",
        "file=%2E%2E/boot.ini",
    ],
)
def test_path_traversal_variants(detector, query):
    categories, _ = detector.scan(make_ctx(path="/api/files", query=query))
    assert "path_traversal" in categories


@pytest.mark.parametrize(
    "query, signature",
    [
        ("name=' or '1'='1", "or_tautology"),
        ("id=1;%20DROP%20TABLE%20users", "drop_table"),
        ("id=1--", "trailing_comment"),
        ("id=1/*comment*/", "block_comment"),
    ],
)
def test_sql_signatures_in_url(detector, query, signature):
    categories, signatures = detector.scan(make_ctx(path="/api/items", query=query))
    assert categories == ["sql_injection_url"]
    assert signatures == [signature]


@pytest.mark.parametrize(
    "query, signature",
    [
        ("q=<script>alert(1)</script>", "script_tag"),
        ("next=JavaScript:alert(1)", "javascript_uri"),
        ("q=<img src=x onerror=alert(1)>", "event_handler"),
        ("next=vbscript:msgbox", "vbscript_uri"),
    ],
)
def test_xss_signatures_in_url(detector, query, signature):
    categories, signatures = detector.scan(make_ctx(path="/api/items", query=query))
    assert categories == ["xss_url"]
    assert signatures == [signature]


def test_body_is_scanned(detector):
    body = b'{"comment": "<script>document.cookie</script>", "filter": "x UNION SELECT y"}'
    categories, _ = detector.scan(make_ctx(method="POST", path="/api/items", body=body))
    assert categories == ["sql_injection_body", "xss_body"]


def test_html_content_endpoints_skip_body_scan(detector):
    body = b'{"html": "<div onclick=\\"go()\\"><script src=app.js></script></div>"}'
    ctx = make_ctx(method="POST", path="/api/scrape-url", body=body)
    assert detector.scan(ctx) == ([], [])


def test_html_content_endpoints_still_scan_url(detector):
    ctx = make_ctx(method="POST", path="/api/scrape-url", query="u=<script>")
    categories, _ = detector.scan(ctx)
    assert categories == ["xss_url"]


@pytest.mark.parametrize(
    "query, body",
    [
        ("sessionId=abc&location=berlin", b""),
        ("q=union%20station", b""),
        ("page=2&sort=name", b'{"username": "alice", "onboarding": true, "note": "a-b c"}'),
    ],
)
def test_clean_requests_are_not_flagged(detector, query, body):
    ctx = make_ctx(method="POST", path="/api/items", query=query, body=body)
    assert detector.scan(ctx) == ([], [])


def test_body_scan_is_limited(make_state):
    detector = PatternDetector(make_state(PATTERN_SCAN_LIMIT=16))
    body = b"x" * 32 + b"<script>"
    assert detector.scan(make_ctx(method="POST", path="/api/items", body=body)) == ([], [])


def test_patterns_are_ordered_name_pattern_pairs():
    for patterns in (SQL_PATTERNS, XSS_PATTERNS):
        names = [name for name, _ in patterns]
        assert len(names) == len(set(names))
        for _, pattern in patterns:
            assert hasattr(pattern, "search")


@pytest.mark.parametrize(
    "payload",
    [
        "on" * 32_000,
        "/*" * 32_000,
        "-" * 32_000 + " " * 32_000 + "x",
        "union" + " " * 60_000,
    ],
)
def test_adversarial_input_scans_quickly(detector, payload):
    start = time.perf_counter()
    detector.scan(make_ctx(method="POST", path="/api/items", body=payload.encode()))
    assert time.perf_counter() - start < 2.0
