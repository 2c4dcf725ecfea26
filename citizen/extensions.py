"""
Flask extension instances and the SSO service container.

init_extensions(app, settings) wires CORS and the rate limiter;
build_services(...) assembles the session store, registries, gate and bridge
that the app factory stores on app.extensions["sso"].
"""

import logging
from dataclasses import dataclass
from typing import Optional

import redis
from flask import current_app, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from core.audit import log_event
from core.db import DatabaseManager
from core.scheduler import SessionCleanupScheduler

from citizen.registry import DeploymentRegistry, PublicAppRegistry, UserStore
from citizen.sso import AuthorizationGate, CookiePolicy, SessionStore, SSOBridge

logger = logging.getLogger(__name__)


@dataclass
class SSOServices:
    """Everything a request handler needs, built once per app."""
    settings: object
    db: DatabaseManager
    store: SessionStore
    cookie_policy: CookiePolicy
    users: UserStore
    public_apps: PublicAppRegistry
    deployments: DeploymentRegistry
    gate: AuthorizationGate
    bridge: SSOBridge
    redis_client: Optional[redis.Redis] = None
    cleanup: Optional[SessionCleanupScheduler] = None


def get_services() -> SSOServices:
    return current_app.extensions["sso"]


def build_services(settings, db: DatabaseManager, redis_client: Optional[redis.Redis],
                   store: Optional[SessionStore] = None) -> SSOServices:
    """Assemble the SSO components from settings. Pass store to substitute a fake."""
    sso = settings.sso
    store = store or SessionStore.from_settings(sso, redis_client)
    cookie_policy = CookiePolicy.from_settings(sso)
    users = UserStore(db)
    public_apps = PublicAppRegistry(db)
    deployments = DeploymentRegistry(db, sso.login_host)
    gate = AuthorizationGate(
        store=store,
        public_apps=public_apps,
        deployments=deployments,
        users=users,
        login_host=sso.login_host,
        cookie_name=sso.session_cookie_name,
        public_paths=sso.sso_public_paths,
    )
    bridge = SSOBridge(gate, cookie_policy, deployments, store, login_path=sso.login_path)

    return SSOServices(
        settings=settings,
        db=db,
        store=store,
        cookie_policy=cookie_policy,
        users=users,
        public_apps=public_apps,
        deployments=deployments,
        gate=gate,
        bridge=bridge,
        redis_client=redis_client,
    )


# =============================================================================
# HTTP extensions
# =============================================================================

def _get_rate_limit_storage(settings, redis_client):
    """Get rate limit storage URI, falling back to memory if Redis unavailable."""
    storage = settings.rate_limit.storage or settings.redis.redis_url
    if storage.startswith("redis://") or storage.startswith("rediss://"):
        if redis_client is None:
            logger.warning("Redis unavailable for rate limiting, using in-memory storage")
            return "memory://"
        return storage
    return storage or "memory://"


def _cors_origins(settings):
    """Explicit origins plus every subdomain of the login host."""
    origins = list(settings.allowed_origins)
    if not settings.sso.login_host_is_local:
        escaped = settings.sso.login_host.replace(".", r"\.")
        origins.append(rf"^https?://[a-z0-9-]+\.{escaped}$")
    return origins


def init_extensions(app, settings, redis_client: Optional[redis.Redis] = None) -> Limiter:
    """Initialize CORS and the rate limiter with the app instance.

    Returns:
        The app's Limiter, used by the factory to tune per-blueprint limits.
    """
    CORS(app, origins=_cors_origins(settings), supports_credentials=True)

    storage_uri = "memory://" if app.config.get("TESTING") else _get_rate_limit_storage(settings, redis_client)
    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=[settings.rate_limit.default],
        storage_uri=storage_uri,
        strategy="moving-window",
        enabled=app.config.get("RATELIMIT_ENABLED", True),
    )

    @app.errorhandler(429)
    def ratelimit_handler(e):
        log_event("rate_limit", details=f"Rate limit exceeded: {e.description}", status="warning")
        response = jsonify({
            "success": False,
            "error": "Rate limit exceeded",
            "message": str(e.description),
        })
        response.status_code = 429
        return response

    return limiter
