"""
Error hierarchy for the Citizen control plane.

APIError subclasses carry a status code and a message that is safe to show a
client; the Flask handler registered here turns them into
{"success": false, "error": ..., "error_id": ...}. InternalError subclasses
are caught inside the component that raised them and never reach a client.

    raise MalformedRequest("username is required")      # -> 400
    raise SessionExpired()                              # -> 401, generic text
"""

import logging
import uuid

from flask import jsonify

logger = logging.getLogger(__name__)

SESSION_INVALID_MESSAGE = "Invalid or expired session"


def new_error_id() -> str:
    """Short reference quoted in responses and logs."""
    return uuid.uuid4().hex[:8]


# =============================================================================
# Client-safe errors (4xx)
# =============================================================================

class APIError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ValidationError(APIError):
    status_code = 400


class MalformedRequest(ValidationError):
    """Body or parameters missing, mistyped or oversized."""


class InvalidDomainForCookie(ValidationError):
    """Not a host this platform may issue a session cookie for. Aborts bridging."""


class AuthenticationError(APIError):
    status_code = 401


class SessionInvalidError(AuthenticationError):
    """
    Session cannot be used.

    The subclasses only change what is logged. Clients always get the same
    message so a caller cannot tell a never-issued ID from an expired one.
    """

    def __init__(self, message: str = SESSION_INVALID_MESSAGE, status_code: int = None):
        super().__init__(message, status_code)


class SessionNotFound(SessionInvalidError):
    """Absent or revoked."""


class SessionExpired(SessionInvalidError):
    pass


class NotFoundError(APIError):
    status_code = 404


class UnknownApplicationError(NotFoundError):
    """Host resolves to no deployed app; the gate fails closed."""


class ConflictError(APIError):
    status_code = 409


# =============================================================================
# Internal errors (never exposed)
# =============================================================================

class InternalError(Exception):
    pass


class BackendUnavailable(InternalError):
    """Redis could not serve the call; the session store falls back to memory."""


def register_error_handlers(app):
    """Translate APIError into the JSON error envelope."""

    @app.errorhandler(APIError)
    def handle_api_error(e):
        error_id = new_error_id()
        logger.warning(f"{type(e).__name__} ({e.status_code}): {e}", extra={'error_id': error_id})
        return jsonify({
            "success": False,
            "error": str(e),
            "error_id": error_id,
        }), e.status_code
