"""
Request helpers shared by the route blueprints.
"""

from typing import Optional

from flask import jsonify, request

from citizen.sso import CookieAttributes, normalize_host


def citizen_response(success: bool, message: str, data: Optional[dict] = None, status: int = 200):
    """Standard {success, message, data} envelope."""
    body = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def request_host() -> str:
    """Hostname of the current request, without port."""
    return normalize_host(request.host)


def request_is_https() -> bool:
    """True for TLS requests, or when the proxy reports the original was TLS."""
    if request.is_secure:
        return True
    return request.headers.get("X-Forwarded-Proto", "").lower().startswith("https")


def set_session_cookie(response, attributes: CookieAttributes, session_id: str):
    response.set_cookie(attributes.name, session_id, **attributes.set_cookie_kwargs())


def clear_session_cookie(response, attributes: CookieAttributes):
    kwargs = attributes.set_cookie_kwargs()
    response.delete_cookie(
        attributes.name,
        path=kwargs["path"],
        domain=kwargs["domain"],
        secure=kwargs["secure"],
        httponly=kwargs["httponly"],
        samesite=kwargs["samesite"],
    )
