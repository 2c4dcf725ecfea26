"""
Login, logout and session validation endpoints.

Rate limited at registration (RATE_LIMIT_AUTH). The ForwardAuth check lives
in forward_auth.py under its own, higher limit.
"""

import logging

from flask import Blueprint, g, request

from core.audit import log_event
from core.errors import AuthenticationError, InvalidDomainForCookie, MalformedRequest
from citizen.extensions import get_services
from citizen.sso import DomainType

from .shared import (
    citizen_response,
    clear_session_cookie,
    request_host,
    request_is_https,
    set_session_cookie,
)

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')

MAX_USERNAME_LENGTH = 100
MAX_PASSWORD_LENGTH = 200


def _current_session_id(services):
    return request.cookies.get(services.gate.cookie_name)


def _login_redirect_url(services, redirect):
    """Validated post-login URL; custom domains go through /sso/init first."""
    if not redirect:
        return None
    try:
        _, domain_type = services.bridge.classify_target(redirect)
    except InvalidDomainForCookie as e:
        logger.warning(f"Dropping login redirect: {e}")
        return None
    if domain_type is DomainType.CUSTOM_DOMAIN:
        return services.bridge.build_sso_init_url(redirect)
    return redirect


# =============================================================================
# Login / Logout
# =============================================================================

@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Verify credentials, create a session and set the cookie for this host
    and the login domain.
    """
    services = get_services()
    data = request.get_json(silent=True)

    if not data or not isinstance(data, dict):
        raise MalformedRequest("No credentials provided")

    username = data.get("username")
    password = data.get("password")

    # Type validation - prevent type confusion attacks
    if not isinstance(username, str) or not isinstance(password, str):
        raise MalformedRequest("Username and password must be strings")

    if not username or not password:
        raise MalformedRequest("Username and password required")

    if len(username) > MAX_USERNAME_LENGTH or len(password) > MAX_PASSWORD_LENGTH:
        raise MalformedRequest("Credentials exceed maximum length")

    host = request_host()
    user = services.users.verify_credentials(username, password)
    if user is None:
        log_event("login", details=f"Login failed: {username}", status="denied", host=host)
        raise AuthenticationError("Invalid username or password")

    session_id = services.store.create_session(user.id, user.username)
    g.current_user = user.username
    log_event("login", details=f"Login successful: {username}", user=user.username, host=host)

    payload = {
        "sso_session": session_id,
        "user": {"user_id": user.id, "username": user.username},
    }
    redirect_url = _login_redirect_url(services, request.args.get("redirect") or data.get("redirect"))
    if redirect_url:
        payload["redirect_url"] = redirect_url

    response, status = citizen_response(True, "Login successful", payload)

    is_https = request_is_https()
    issued = set()
    for cookie_host in (host, services.cookie_policy.login_host):
        attributes = services.cookie_policy.for_host(cookie_host, is_https)
        if attributes.domain in issued:
            continue
        issued.add(attributes.domain)
        set_session_cookie(response, attributes, session_id)

    return response, status


@auth_bp.route('/logout', methods=['POST'])
def logout():
    """
    Revoke the current session, or every session of its owner when
    all_devices is true (the default), and clear the cookie in every scope.
    """
    services = get_services()
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise MalformedRequest("Request body must be a JSON object")

    all_devices = data.get("all_devices", True)
    if not isinstance(all_devices, bool):
        raise MalformedRequest("all_devices must be a boolean")

    host = request_host()
    session_id = _current_session_id(services)
    session = services.store.get_session(session_id) if session_id else None

    revoked = 0
    if session is not None and all_devices:
        revoked = services.store.revoke_all_sessions_for_user(session.user_id)
    elif session_id:
        services.store.revoke_session(session_id)
        revoked = 1 if session is not None else 0

    log_event(
        "logout",
        details=f"Revoked {revoked} session(s), all_devices={all_devices}",
        user=session.username if session else None,
        host=host,
    )

    response, status = citizen_response(True, "Logout successful", {
        "sso_sessions_cleared": revoked > 0,
        "sessions_revoked": revoked,
        "domain_cleared": host,
    })
    for attributes in services.cookie_policy.logout_scopes(host, request_is_https()):
        clear_session_cookie(response, attributes)
    return response, status


# =============================================================================
# Session validation
# =============================================================================

def _validate(session_id):
    services = get_services()
    lookup = services.gate.resolve_session(session_id)
    if not lookup.ok:
        return citizen_response(False, "No valid SSO session", status=401)
    return citizen_response(True, "SSO session valid", {
        "user_id": lookup.user_id,
        "username": lookup.username,
    })


@auth_bp.route('/token-validate', methods=['GET'])
def token_validate():
    """Validate the session carried by the request cookie."""
    return _validate(_current_session_id(get_services()))


@auth_bp.route('/validate-token', methods=['POST'])
def validate_token():
    """Validate the session from the cookie, or from {"sso_session": ...} in the body."""
    services = get_services()
    session_id = _current_session_id(services)
    if not session_id:
        data = request.get_json(silent=True) or {}
        candidate = data.get("sso_session") if isinstance(data, dict) else None
        if candidate is not None and not isinstance(candidate, str):
            raise MalformedRequest("sso_session must be a string")
        session_id = candidate
    return _validate(session_id)
