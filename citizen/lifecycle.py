"""
Graceful shutdown and lifecycle management.

SIGTERM/SIGINT waits for in-flight requests, then stops the cleanup
scheduler, drains session activity refreshes and closes the Redis and
database pools.
"""

import logging
import signal
import threading
import time

logger = logging.getLogger(__name__)

_shutdown_in_progress = False
_active_requests = 0
_counter_lock = threading.Lock()


def increment_active_requests():
    """Increment active request counter."""
    global _active_requests
    with _counter_lock:
        _active_requests += 1


def decrement_active_requests():
    """Decrement active request counter."""
    global _active_requests
    with _counter_lock:
        _active_requests = max(0, _active_requests - 1)


def get_active_requests():
    """Return current active request count."""
    return _active_requests


def wait_for_active_requests(timeout: float) -> bool:
    """Block until no request is in flight or timeout passes. True if drained."""
    start_time = time.time()
    while _active_requests > 0 and (time.time() - start_time) < timeout:
        logger.info(f"Waiting for {_active_requests} active requests to complete...")
        time.sleep(1)
    return _active_requests == 0


def shutdown_services(services):
    """Stop background work and release pools for one app."""
    logger.info("Stopping session cleanup scheduler...")
    if services.cleanup is not None:
        services.cleanup.stop()

    logger.info("Closing session store and Redis connections...")
    services.store.close()

    logger.info("Closing database connections...")
    services.db.close()


def make_shutdown_handler(app):
    """Build the SIGTERM/SIGINT handler for app."""

    def graceful_shutdown(signum, frame):
        global _shutdown_in_progress

        if _shutdown_in_progress:
            logger.warning("Forced shutdown requested")
            raise SystemExit(1)

        _shutdown_in_progress = True
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, starting graceful shutdown...")

        services = app.extensions["sso"]
        if wait_for_active_requests(services.settings.shutdown_timeout):
            logger.info("All requests completed")
        else:
            logger.warning(f"Shutdown timeout reached with {_active_requests} requests still active")

        shutdown_services(services)

        logger.info("Graceful shutdown complete")
        raise SystemExit(0)

    return graceful_shutdown


def register_shutdown_handlers(app):
    """Register signal handlers for graceful shutdown."""
    handler = make_shutdown_handler(app)
    signal.signal(signal.SIGTERM, handler)
    signal.signal(signal.SIGINT, handler)
    logger.info("Registered shutdown handlers for SIGTERM and SIGINT")
