"""
Route blueprints for the Citizen control plane.

- auth_bp: login, logout, session validation (/auth)
- forward_auth_bp: reverse-proxy ForwardAuth check (/auth/validate)
- sso_bp: cross-domain bridge pages (/sso)
- app_settings_bp: public-app and custom-domain management (/api/v1/citizen)
- health_bp: liveness, readiness, backend status
"""

from .health import health_bp
from .auth_routes import auth_bp
from .forward_auth import forward_auth_bp
from .sso_routes import sso_bp
from .app_settings import app_settings_bp

__all__ = ['health_bp', 'auth_bp', 'forward_auth_bp', 'sso_bp', 'app_settings_bp']
