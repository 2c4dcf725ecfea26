"""
Flask route decorators for session authentication.

Provides:
- session_required: Require a valid SSO session cookie
"""
from functools import wraps

from flask import current_app, g, request

from core.errors import AuthenticationError, SessionExpired, SessionNotFound


def session_required(f):
    """Decorator to require a valid session cookie for an endpoint.

    Sets g.current_user, g.current_user_id and g.session_id on success.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        services = current_app.extensions["sso"]
        session_id = request.cookies.get(services.gate.cookie_name)

        if not session_id:
            raise AuthenticationError("Authentication required")

        lookup = services.gate.resolve_session(session_id)
        if not lookup.ok:
            if lookup.reason == "expired":
                raise SessionExpired()
            raise SessionNotFound()

        # Store user info in Flask's g object for access in route
        g.current_user = lookup.username
        g.current_user_id = lookup.user_id
        g.session_id = session_id

        return f(*args, **kwargs)
    return decorated
