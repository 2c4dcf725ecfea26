"""
Core shared utilities for the Citizen control plane.

Audit trail, error hierarchy, timestamps, database pool and the
session-cleanup scheduler used by the Flask app in citizen/.
"""

from .audit import (
    AuditLog,
    audit_log,
    log_event,
    get_audit_log,
    clear_audit_log,
)
