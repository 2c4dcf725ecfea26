"""
Audit trail for authentication and authorization events.

Every login, logout, ForwardAuth decision and bridging outcome is recorded
here. Details are redacted before they are stored or logged, so session IDs,
cookie headers and passwords never reach the audit buffer or the log stream.

Usage:
    from core.audit import log_event, get_audit_log

    log_event("login", user="alice", details="host=app.example.com")
    events = get_audit_log(limit=20, action="authorize")
"""

import logging
import os
import re
import threading
from collections import deque
from typing import Optional

from core.timestamps import isonow

logger = logging.getLogger(__name__)

MAX_EVENTS = 1000

# =============================================================================
# Redaction
# =============================================================================

ENABLE_LOG_REDACTION = os.getenv("ENABLE_LOG_REDACTION", "true").lower() == "true"
MAX_REDACTION_LENGTH = 10240  # Skip redaction on strings > 10KB (performance)

# Order matters - more specific first
REDACTION_PATTERNS = [
    # Cookie headers carry every cookie the browser holds
    (re.compile(r'\b((?:set-)?cookie)\s*[=:]\s*[^\n]+', re.IGNORECASE), r'\1=***REDACTED***'),

    # Session identifiers in key=value or JSON form
    (re.compile(r'\b(sso_session|session_id|session)\s*=\s*[^\s;,&]+', re.IGNORECASE), r'\1=***REDACTED***'),
    (re.compile(r'(["\'](?:sso_session|session_id)["\'])\s*:\s*["\'][^"\']+["\']', re.IGNORECASE), r'\1: "***REDACTED***"'),

    # Credentials
    (re.compile(r'\b(password|passwd|pwd)\s*[=:]\s*\S+', re.IGNORECASE), r'\1=***REDACTED***'),
    (re.compile(r'(["\'](?:password|secret|token)["\'])\s*:\s*["\'][^"\']+["\']', re.IGNORECASE), r'\1: "***REDACTED***"'),
    (re.compile(r'(Bearer\s+)[A-Za-z0-9\-_\.]{20,}', re.IGNORECASE), r'\1***REDACTED***'),
]


def redact(text: Optional[str]) -> Optional[str]:
    """
    Remove sensitive data from audit text.

    Returns original text if redaction is disabled, the text is empty,
    or it exceeds MAX_REDACTION_LENGTH.
    """
    if not ENABLE_LOG_REDACTION or not text:
        return text
    if len(text) > MAX_REDACTION_LENGTH:
        return text

    result = text
    for pattern, replacement in REDACTION_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class AuditLog:
    """Thread-safe bounded in-memory audit trail."""

    def __init__(self, max_events: int = MAX_EVENTS):
        self._max_events = max_events
        self._events: deque = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def log(
        self,
        action: str,
        details: Optional[str] = None,
        status: str = "success",
        user: Optional[str] = None,
        host: Optional[str] = None,
    ) -> dict:
        """
        Record an event.

        Args:
            action: What happened ("login", "logout", "authorize", "sso_bridge")
            details: Free text; redacted before storage
            status: "success", "denied", "error" or "warning"
            user: Username when known
            host: Request host the event concerns

        Returns:
            The event dict that was stored
        """
        event = {
            "timestamp": isonow(),
            "action": action,
            "status": status,
            "details": redact(details),
        }
        if user is not None:
            event["user"] = user
        if host is not None:
            event["host"] = host

        with self._lock:
            self._events.append(event)

        level = logging.WARNING if status in ("error", "warning") else logging.INFO
        logger.log(level, f"audit {action} [{status}] {event['details'] or ''}".rstrip(),
                   extra={"user": user})
        return event

    def get_events(
        self,
        limit: int = 50,
        action: Optional[str] = None,
        user: Optional[str] = None,
    ) -> list[dict]:
        """Most recent first, optionally filtered by action and user."""
        with self._lock:
            events = list(self._events)

        if action:
            events = [e for e in events if e.get("action") == action]
        if user:
            events = [e for e in events if e.get("user") == user]

        return list(reversed(events[-limit:]))

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


# =============================================================================
# Module-level singleton and convenience functions
# =============================================================================

audit_log = AuditLog()


def log_event(
    action: str,
    details: Optional[str] = None,
    status: str = "success",
    user: Optional[str] = None,
    host: Optional[str] = None,
) -> dict:
    """Record an event in the process-wide audit trail."""
    return audit_log.log(action, details, status, user=user, host=host)


def get_audit_log(
    limit: int = 50,
    action: Optional[str] = None,
    user: Optional[str] = None,
) -> list[dict]:
    """Get events from the process-wide audit trail."""
    return audit_log.get_events(limit, action, user)


def clear_audit_log() -> None:
    """Clear the process-wide audit trail."""
    audit_log.clear()
