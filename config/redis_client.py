"""
Redis client configuration for session storage and rate limiting.

One process-wide connection pool is shared by every worker thread. Each call
carries a short socket timeout; retrying with backoff happens only here, at
startup, never on the request path.

Usage:
    from config.redis_client import connect_redis, SessionKeys

    client = connect_redis(settings.redis)   # None when Redis stays down
    if client is not None:
        client.set(SessionKeys.session(sid), payload, ex=ttl)
"""

import logging
from typing import Optional

import redis
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


def build_pool(redis_settings) -> redis.ConnectionPool:
    """Create the shared connection pool with per-call timeouts."""
    return redis.ConnectionPool.from_url(
        redis_settings.redis_url,
        decode_responses=True,
        socket_timeout=redis_settings.redis_socket_timeout,
        socket_connect_timeout=redis_settings.redis_connect_timeout,
        max_connections=redis_settings.redis_max_connections,
    )


def connect_redis(redis_settings) -> Optional[redis.Redis]:
    """
    Connect to Redis, retrying with exponential backoff.

    Returns:
        redis.Redis: Connected client, or None if every attempt failed
        (callers then run on their in-process fallback).
    """
    if not redis_settings.redis_enabled:
        logger.info("Redis disabled by configuration, using in-memory sessions")
        return None

    pool = build_pool(redis_settings)
    client = redis.Redis(connection_pool=pool)

    retrying = Retrying(
        stop=stop_after_attempt(redis_settings.redis_connect_retries),
        wait=wait_exponential(multiplier=redis_settings.redis_retry_base_delay, max=30),
        retry=retry_if_exception_type(redis.RedisError),
        before_sleep=lambda state: logger.warning(
            f"Redis connection attempt {state.attempt_number} failed: "
            f"{state.outcome.exception()}"
        ),
        reraise=False,
    )

    try:
        retrying(client.ping)
    except RetryError as e:
        logger.warning(
            f"Redis not available after {redis_settings.redis_connect_retries} attempts "
            f"({redis_settings.redis_url}): {e.last_attempt.exception()}. "
            "Using in-memory session fallback"
        )
        pool.disconnect()
        return None

    logger.info(f"Redis connected: {redis_settings.redis_url}")
    return client


def close_redis(client: Optional[redis.Redis]) -> None:
    """Release every pooled connection."""
    if client is None:
        return
    client.connection_pool.disconnect()


class SessionKeys:
    """Standard key layout for session records."""

    SESSION = "sso_session:{session_id}"
    USER_SESSIONS = "sso_user_sessions:{user_id}"
    USER_SESSIONS_PATTERN = "sso_user_sessions:*"
    HANDOFF = "sso_handoff:{code}"

    @classmethod
    def session(cls, session_id: str) -> str:
        return cls.SESSION.format(session_id=session_id)

    @classmethod
    def user_sessions(cls, user_id: int) -> str:
        return cls.USER_SESSIONS.format(user_id=user_id)

    @classmethod
    def handoff(cls, code: str) -> str:
        return cls.HANDOFF.format(code=code)
