"""
Per-app settings: public access flag and custom domains.

All endpoints require a valid session cookie.
"""

import logging

from flask import Blueprint, g, request

from core.audit import log_event
from core.errors import MalformedRequest
from citizen.extensions import get_services
from citizen.registry import validate_app_name
from citizen.sso import session_required

from .shared import citizen_response

logger = logging.getLogger(__name__)

app_settings_bp = Blueprint('app_settings', __name__, url_prefix='/api/v1/citizen')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise MalformedRequest("Invalid request content")
    return data


@app_settings_bp.route('/profile', methods=['GET'])
@session_required
def profile():
    """Current user's profile."""
    user = get_services().users.get_user(g.current_user_id)
    if user is None:
        return citizen_response(False, "User not found", status=404)
    return citizen_response(True, "Profile retrieved", user.to_dict())


# =============================================================================
# Public access
# =============================================================================

@app_settings_bp.route('/apps/<app_name>/public-setting', methods=['GET'])
@session_required
def get_public_setting(app_name):
    validate_app_name(app_name)
    setting = get_services().public_apps.get_setting(app_name)
    data = setting.to_dict() if setting else {"app_name": app_name, "is_public": False, "updated_at": None}
    return citizen_response(True, "Public app setting retrieved", data)


@app_settings_bp.route('/apps/<app_name>/public-setting', methods=['POST'])
@session_required
def set_public_setting(app_name):
    data = _json_body()
    is_public = data.get("is_public")
    if not isinstance(is_public, bool):
        raise MalformedRequest("is_public must be a boolean")

    setting = get_services().public_apps.set_public(app_name, is_public)
    log_event(
        "app_public_setting",
        details=f"{app_name} is_public={is_public}",
        user=g.current_user,
    )
    return citizen_response(True, "Public app setting updated", setting.to_dict())


# =============================================================================
# Custom domains
# =============================================================================

@app_settings_bp.route('/apps/<app_name>/custom-domains', methods=['GET'])
@session_required
def list_custom_domains(app_name):
    validate_app_name(app_name)
    domains = get_services().deployments.list_custom_domains(app_name)
    return citizen_response(True, "Custom domains listed", [d.to_dict() for d in domains])


@app_settings_bp.route('/apps/<app_name>/custom-domain', methods=['POST'])
@session_required
def set_custom_domain(app_name):
    domain = _json_body().get("domain")
    custom = get_services().deployments.set_custom_domain(app_name, domain)
    log_event("custom_domain", details=f"Added {custom.domain} to {app_name}", user=g.current_user)
    return citizen_response(True, "Custom domain configured", custom.to_dict())


@app_settings_bp.route('/apps/<app_name>/custom-domain', methods=['DELETE'])
@session_required
def remove_custom_domain(app_name):
    domain = request.args.get("domain")
    if not domain:
        domain = (request.get_json(silent=True) or {}).get("domain")
    get_services().deployments.remove_custom_domain(app_name, domain)
    log_event("custom_domain", details=f"Removed {domain} from {app_name}", user=g.current_user)
    return citizen_response(True, "Custom domain removed", {"app_name": app_name, "domain": domain})


@app_settings_bp.route('/custom-domains', methods=['GET'])
@session_required
def list_active_custom_domains():
    domains = get_services().deployments.list_active_custom_domains()
    return citizen_response(True, "Active custom domains listed", [d.to_dict() for d in domains])
