"""
Health check endpoints.

Liveness, readiness and session-backend status. Exempt from rate limiting.
Redis is never critical: the session store falls back to memory, so a Redis
outage reports "degraded" rather than failing readiness.
"""

import logging
import os
import time
from datetime import datetime, timezone

from flask import Blueprint, jsonify

from citizen.extensions import get_services

logger = logging.getLogger(__name__)

health_bp = Blueprint('health', __name__)

SERVICE_NAME = "citizen-control-plane"


@health_bp.route('/healthz')
def liveness():
    """Liveness check - is the process running?"""
    return jsonify({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
        "version": os.getenv("APP_VERSION", "1.0.0"),
    })


@health_bp.route('/health')
def readiness():
    """
    Readiness check - can this instance authorize requests?

    The database is critical (registries live there); Redis only degrades.
    """
    services = get_services()
    checks = {}

    start = time.time()
    db_ok = services.db.ping()
    checks["database"] = {
        "healthy": db_ok,
        "message": "connected" if db_ok else "connection failed",
        "response_time_ms": round((time.time() - start) * 1000, 2),
    }

    store_status = services.store.status()
    redis_ok = store_status["redis_available"] or not store_status["redis_configured"]
    checks["redis"] = {
        "healthy": redis_ok,
        "message": store_status["backend"],
    }

    if db_ok and redis_ok:
        status, http_status = "ok", 200
    elif db_ok:
        status, http_status = "degraded", 200
    else:
        status, http_status = "unavailable", 503

    return jsonify({
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }), http_status


@health_bp.route('/redis-status')
def redis_status():
    """Session backend status plus the last cleanup run."""
    services = get_services()
    data = services.store.status()
    if services.cleanup is not None:
        data["cleanup"] = services.cleanup.stats.to_dict()
    return jsonify({"success": True, "data": data})
