# Security event reporting: redacts sensitive fields, logs through the
# "request_shield.security" logger and optionally appends to a CSV audit
# trail written from a background listener thread.

import csv
import json
import logging
import os
import queue
import time
from logging.handlers import QueueHandler, QueueListener

security_logger = logging.getLogger("request_shield.security")
logger = logging.getLogger(__name__)

CSV_HEADER = ["timestamp", "event_type", "path", "method", "ip", "details"]

SENSITIVE_FIELDS = {
    "password",
    "passwordhash",
    "secret",
    "apikey",
    "accesstoken",
    "refreshtoken",
    "token",
    "csrftoken",
    "cookie",
}

# Session ids are reduced to a prefix so events can still be correlated
SESSION_FIELDS = {"sessionid", "session_id"}


def redact(fields: dict) -> dict:
    redacted = {}
    for key, value in fields.items():
        normalized = key.lower().replace("-", "_")
        if normalized in SESSION_FIELDS and isinstance(value, str):
            redacted[key] = value[:8] + "..."
        elif normalized.replace("_", "") in SENSITIVE_FIELDS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = redact(value)
        else:
            redacted[key] = value
    return redacted


def log_security_event(event_type: str, **fields) -> None:
    """
    Fire-and-forget: reporting must never fail the guarded request, so
    anything that goes wrong here is dropped after a debug log line.
    """
    try:
        details = redact(fields)
        security_logger.warning(
            "[SECURITY] %s %s",
            event_type,
            json.dumps(details, default=str, ensure_ascii=False),
            extra={"event_type": event_type, "details": details},
        )
    except Exception as e:
        logger.debug(f"Dropped security event {event_type}: {e}")


class CsvAuditHandler(logging.Handler):
    """Appends security events to a CSV file, writing the header on first use."""

    def __init__(self, path: str):
        super().__init__(level=logging.WARNING)
        self.path = path

    def emit(self, record: logging.LogRecord) -> None:
        try:
            details = dict(getattr(record, "details", {}) or {})
            row = [
                time.time(),
                getattr(record, "event_type", record.getMessage()),
                details.pop("path", ""),
                details.pop("method", ""),
                details.pop("ip", ""),
                json.dumps(details, default=str, ensure_ascii=False),
            ]
            new_file = not os.path.exists(self.path)
            with open(self.path, "a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                if new_file:
                    writer.writerow(CSV_HEADER)
                writer.writerow(row)
        except Exception:
            self.handleError(record)


def start_audit_trail(path: str) -> QueueListener | None:
    """
    Routes security events to ``path`` through a queue so file I/O happens
    on the listener thread. Returns the started listener, or None when the
    audit trail is disabled.
    """
    if not path:
        return None

    events: queue.SimpleQueue = queue.SimpleQueue()
    queue_handler = QueueHandler(events)
    security_logger.addHandler(queue_handler)

    listener = QueueListener(events, CsvAuditHandler(path), respect_handler_level=True)
    listener.queue_handler = queue_handler
    listener.start()
    logger.info(f"Security audit trail enabled: {path}")
    return listener


def stop_audit_trail(listener: QueueListener | None) -> None:
    if listener is None:
        return
    listener.stop()
    security_logger.removeHandler(listener.queue_handler)
