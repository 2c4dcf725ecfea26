"""
ForwardAuth endpoint for the reverse proxy.

The proxy calls GET /auth/validate before every request to an app host,
passing the original request in X-Forwarded-Host / -Uri / -Proto and the
browser's Cookie header. 200 lets the request through with X-User-Id and
X-Username; anything else is returned to the browser as-is.
"""

import logging

from flask import Blueprint, jsonify, make_response, redirect, request

from core.errors import UnknownApplicationError

from citizen.extensions import get_services
from citizen.sso import DecisionReason, DomainType

logger = logging.getLogger(__name__)

forward_auth_bp = Blueprint('forward_auth', __name__, url_prefix='/auth')

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


@forward_auth_bp.after_request
def _no_store(response):
    """Decisions depend on the cookie; the proxy and browser must never cache them."""
    for name, value in NO_STORE_HEADERS.items():
        response.headers[name] = value
    return response


def _wants_html() -> bool:
    return "text/html" in request.headers.get("Accept", "")


@forward_auth_bp.route('/validate', methods=['GET'])
def validate():
    """Authorize the forwarded request."""
    services = get_services()

    host = request.headers.get("X-Forwarded-Host") or request.host
    uri = request.headers.get("X-Forwarded-Uri", "")
    proto = request.headers.get("X-Forwarded-Proto") or request.scheme

    decision = services.gate.authorize(host, request.headers.get("Cookie"), uri)

    if decision.allow:
        response = make_response(jsonify({"success": True, "reason": decision.reason.value}), 200)
        if decision.user_id is not None:
            response.headers["X-User-Id"] = str(decision.user_id)
            response.headers["X-Username"] = decision.username or ""
        return response

    if decision.reason is DecisionReason.UNKNOWN_APPLICATION:
        raise UnknownApplicationError("Unknown application")

    if _wants_html():
        original_url = f"{proto}://{host}{uri}"
        if decision.domain_type in (DomainType.LOGIN_SUBDOMAIN, DomainType.CUSTOM_DOMAIN):
            location = services.bridge.build_sso_init_url(original_url)
        else:
            location = services.bridge.build_login_url(original_url)
        logger.debug(f"Redirecting unauthenticated browser to {location}")
        return redirect(location, code=302)

    return jsonify({"success": False, "error": "Authentication required"}), 401
