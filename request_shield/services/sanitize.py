# Input sanitisation: strips NUL characters from query strings and from
# JSON, form and text bodies before the guards and the routes see them.
# HTML is left untouched; output encoding is the renderer's job.

import json
from urllib.parse import parse_qsl, urlencode

NUL = "\x00"
ENCODED_NUL = "%00"
JSON_NUL = b"\\u0000"


def strip_null_bytes(value):
    """Removes NUL from every string in ``value``, recursing into lists and dicts."""
    if isinstance(value, str):
        return value.replace(NUL, "")
    if isinstance(value, list):
        return [strip_null_bytes(item) for item in value]
    if isinstance(value, dict):
        return {strip_null_bytes(key): strip_null_bytes(item) for key, item in value.items()}
    return value


def sanitize_query(query: str) -> str:
    if ENCODED_NUL not in query and NUL not in query:
        return query
    pairs = parse_qsl(query, keep_blank_values=True)
    return urlencode([(strip_null_bytes(key), strip_null_bytes(value)) for key, value in pairs])


def _media_type(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def sanitize_body(body: bytes, content_type: str | None) -> bytes:
    """
    Returns ``body`` with NUL characters removed from its string values.

    Bodies without a NUL come back unchanged (same object). Multipart and
    binary payloads are never rewritten.
    """
    if not body:
        return body

    media_type = _media_type(content_type)

    if media_type == "application/json" or media_type.endswith("+json"):
        if JSON_NUL not in body and b"\x00" not in body:
            return body
        try:
            payload = json.loads(body)
        except ValueError:
            # Raw NUL inside a JSON string is itself invalid JSON
            return body.replace(b"\x00", b"")
        return json.dumps(strip_null_bytes(payload), ensure_ascii=False).encode("utf-8")

    if media_type == "application/x-www-form-urlencoded":
        text = body.decode("latin-1")
        sanitized = sanitize_query(text)
        if sanitized is text:
            return body
        return sanitized.encode("latin-1")

    if media_type.startswith("text/"):
        return body.replace(b"\x00", b"")

    return body
