"""
Cross-domain SSO bridge pages: /sso/init, /sso/set-cookie, /sso/check.

The decisions are made by SSOBridge; these handlers only render the pages
and attach cookies and headers. The session ID never appears in a URL or a
rendered page.
"""

import logging
import secrets

from flask import Blueprint, make_response, redirect, render_template, request

from citizen.extensions import get_services

from .shared import request_is_https, set_session_cookie

logger = logging.getLogger(__name__)

sso_bp = Blueprint('sso', __name__, url_prefix='/sso')

# Parent page gives the iframe this long to report back
BRIDGE_TIMEOUT_MS = 5000


def _page(template, frame_ancestors="'self'", frame_src="'self'", **context):
    """Render a bridge page with a per-response script nonce."""
    nonce = secrets.token_urlsafe(16)
    response = make_response(render_template(template, nonce=nonce, **context))
    response.headers["Content-Security-Policy"] = (
        f"default-src 'none'; script-src 'nonce-{nonce}'; "
        f"frame-src {frame_src}; frame-ancestors {frame_ancestors}"
    )
    if frame_ancestors == "'self'":
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Cache-Control"] = "no-store"
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


@sso_bp.route('/init', methods=['GET'])
def sso_init():
    """Start propagation towards ?target=."""
    services = get_services()
    outcome = services.bridge.init(request.args.get("target"), request.headers.get("Cookie"))

    if outcome.set_cookie_url is None:
        return redirect(outcome.redirect_url, code=302)

    return _page(
        "sso/bridge.html",
        frame_src=outcome.bridge_origin,
        set_cookie_url=outcome.set_cookie_url,
        bridge_origin=outcome.bridge_origin,
        target_url=outcome.target_url,
        fallback_url=outcome.fallback_url,
        timeout_ms=BRIDGE_TIMEOUT_MS,
    )


@sso_bp.route('/set-cookie', methods=['GET'])
def sso_set_cookie():
    """Hidden iframe, served on the ?domain= host, that issues its cookie and reports to the login page."""
    services = get_services()
    grant = services.bridge.set_cookie(
        request.args.get("domain"),
        request.headers.get("Cookie"),
        request_is_https(),
        request.host,
        code=request.args.get("code"),
    )

    login_origin = services.bridge.login_origin
    response = _page(
        "sso/set_cookie.html",
        frame_ancestors=login_origin,
        status="ok" if grant.ok else "error",
        error=grant.error,
        parent_origin=login_origin,
    )
    if grant.ok:
        set_session_cookie(response, grant.attributes, grant.session_id)
    return response


@sso_bp.route('/check', methods=['GET'])
def sso_check():
    """Hidden iframe that tells an allowed origin whether the browser is signed in."""
    services = get_services()
    origin = request.args.get("origin") or request.headers.get("Origin")
    outcome = services.bridge.check(origin, request.headers.get("Cookie"))

    if outcome is None:
        response = make_response("Origin not allowed", 403)
        response.headers["Cache-Control"] = "no-store"
        return response

    ancestors = "'self'"
    if origin:
        ancestors = f"'self' {outcome.target_origin}"
    return _page(
        "sso/check.html",
        frame_ancestors=ancestors,
        authenticated=outcome.authenticated,
        target_origin=outcome.target_origin,
    )
