"""
Flask Application Factory.

Builds the SSO services (database, session store, registries, gate, bridge),
wires extensions and blueprints, and stores the services on
app.extensions["sso"].
"""

import logging
import time
import uuid

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from config.redis_client import connect_redis
from config.settings import get_settings
from core.db import DatabaseManager
from core.errors import new_error_id, register_error_handlers
from core.scheduler import SessionCleanupScheduler

from citizen import registry
from citizen.extensions import build_services, init_extensions
from citizen.lifecycle import decrement_active_requests, increment_active_requests
from citizen.logging_config import configure_logging

load_dotenv()

logger = logging.getLogger(__name__)

QUIET_PATHS = ('/healthz', '/health', '/auth/validate')


def create_app(config=None, settings=None, redis_client=None, store=None):
    """Create and configure the Flask application.

    Args:
        config: Optional dict of config overrides (e.g. {'TESTING': True}).
        settings: AppSettings; defaults to get_settings().
        redis_client: Pre-built Redis client. When omitted, one is connected
            from settings unless TESTING is set.
        store: Pre-built SessionStore (tests).

    Returns:
        Configured Flask app instance.
    """
    app = Flask(__name__)

    if config:
        app.config.update(config)

    settings = settings or get_settings()

    configure_logging(settings, app)

    if settings.trust_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    db = DatabaseManager.from_settings(settings.database)
    registry.initialize(db, settings.admin)

    if redis_client is None and store is None and not app.config.get("TESTING"):
        redis_client = connect_redis(settings.redis)

    services = build_services(settings, db, redis_client, store=store)
    app.extensions["sso"] = services

    limiter = init_extensions(app, settings, redis_client)

    # Register custom error handlers for APIError hierarchy
    register_error_handlers(app)

    _register_blueprints(app, limiter, settings)
    _register_middleware(app, settings)
    _register_error_handlers(app)
    _start_cleanup(app, services, settings)

    logger.info(
        f"Citizen control plane ready (login host {settings.sso.login_host}, "
        f"session backend {services.store.status()['backend']})"
    )
    return app


def _register_blueprints(app, limiter, settings):
    """Register all route blueprints."""
    from citizen.routes import app_settings_bp, auth_bp, forward_auth_bp, health_bp, sso_bp

    app.register_blueprint(health_bp)
    limiter.exempt(health_bp)

    app.register_blueprint(auth_bp)
    limiter.limit(settings.rate_limit.auth)(auth_bp)

    # Called on every proxied request; needs far more headroom than login
    app.register_blueprint(forward_auth_bp)
    limiter.limit(settings.rate_limit.forward_auth)(forward_auth_bp)

    app.register_blueprint(sso_bp)
    app.register_blueprint(app_settings_bp)


def _register_middleware(app, settings):
    """Register request tracking and security middleware."""

    @app.before_request
    def before_request_tracking():
        """Track request start and assign request ID."""
        increment_active_requests()
        g.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4())[:8])
        g.start_time = time.time()

    @app.after_request
    def after_request_tracking(response):
        """Log request completion with timing and add security headers."""
        decrement_active_requests()

        duration_ms = 0
        if hasattr(g, 'start_time'):
            duration_ms = (time.time() - g.start_time) * 1000

        if hasattr(g, 'request_id'):
            response.headers['X-Request-ID'] = g.request_id

        log_level = logging.WARNING if response.status_code >= 500 else logging.INFO
        if request.path in QUIET_PATHS:
            log_level = logging.DEBUG

        logger.log(
            log_level,
            f"{request.method} {request.path} -> {response.status_code} ({duration_ms:.1f}ms)",
            extra={
                'request_id': getattr(g, 'request_id', 'unknown'),
                'method': request.method,
                'endpoint': request.path,
                'status_code': response.status_code,
                'duration_ms': round(duration_ms, 2),
                'remote_addr': request.remote_addr,
                'host': request.host,
                'user': getattr(g, 'current_user', None),
            }
        )

        # Security headers; bridge pages bring their own CSP and framing rules
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('Referrer-Policy', 'strict-origin-when-cross-origin')
        if 'Content-Security-Policy' not in response.headers:
            response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
            response.headers.setdefault('X-Frame-Options', 'DENY')

        if settings.sso.force_https and not settings.sso.login_host_is_local:
            response.headers.setdefault('Strict-Transport-Security', 'max-age=31536000; includeSubDomains')

        return response


def _register_error_handlers(app):
    """Register global exception handler."""

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({'success': False, 'error': e.name}), e.code

        error_id = new_error_id()
        logger.exception(
            f"Unhandled exception: {str(e)}",
            extra={
                'request_id': getattr(g, 'request_id', 'unknown'),
                'error_id': error_id,
                'method': request.method,
                'endpoint': request.path,
                'remote_addr': request.remote_addr,
            }
        )
        return jsonify({
            'success': False,
            'error': 'Internal server error',
            'error_id': error_id,
            'request_id': getattr(g, 'request_id', 'unknown'),
        }), 500


def _start_cleanup(app, services, settings):
    """Start the periodic expired-session purge outside tests."""
    if app.config.get("TESTING") or not settings.sso.session_cleanup_enabled:
        return
    services.cleanup = SessionCleanupScheduler(
        services.store,
        interval_seconds=settings.sso.session_cleanup_interval_seconds,
    )
    services.cleanup.start()
