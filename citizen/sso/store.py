"""
Session store: Redis-backed with an in-process fallback.

Records live in Redis under sso_session:<id> with a TTL equal to the time left
before expiry, plus a per-user index set sso_user_sessions:<user_id> used for
global logout. When a Redis call fails the store logs a warning and carries on
with the in-process map, which lasts for the process lifetime only.

A revoke that cannot reach Redis leaves a tombstone in the process so later
validations here still observe it. Expiry is fixed at creation; the activity
timestamp refreshed on validation is informational.

Hand-off codes let /sso/set-cookie on a custom domain pick up a session the
browser only holds for the login domain. A code is single use, bound to one
host, and lives HANDOFF_TTL_SECONDS; it is never the session ID itself.

Usage:
    store = SessionStore(redis_client, ttl_seconds=86400)
    sid = store.create_session(42, "alice")
    lookup = store.validate_session(sid)   # SessionLookup(42, "alice", True)
    code = store.issue_handoff(sid, "shop.example.com")
    store.redeem_handoff(code, "shop.example.com")   # sid, once
    store.revoke_session(sid)
"""
import json
import logging
import secrets
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

import redis

from config.redis_client import SessionKeys
from core.errors import BackendUnavailable
from core.timestamps import now, seconds_until

from .types import INVALID_LOOKUP, Session, SessionLookup

logger = logging.getLogger(__name__)

SESSION_ID_BYTES = 32
HANDOFF_TTL_SECONDS = 60


def generate_session_id() -> str:
    """Unguessable, URL-safe session identifier."""
    return secrets.token_urlsafe(SESSION_ID_BYTES)


# =============================================================================
# Redis backend
# =============================================================================

class RedisSessionBackend:
    """Thin wrapper that turns every RedisError into BackendUnavailable."""

    def __init__(self, client: redis.Redis):
        self._client = client

    def save(self, session: Session, ttl_seconds: int) -> None:
        index_key = SessionKeys.user_sessions(session.user_id)
        try:
            pipe = self._client.pipeline()
            pipe.set(SessionKeys.session(session.session_id), json.dumps(session.to_dict()), ex=ttl_seconds)
            pipe.sadd(index_key, session.session_id)
            pipe.expire(index_key, ttl_seconds)
            pipe.execute()
        except redis.RedisError as e:
            raise BackendUnavailable(f"save failed: {e}") from e

    def load(self, session_id: str) -> Optional[Session]:
        try:
            raw = self._client.get(SessionKeys.session(session_id))
        except redis.RedisError as e:
            raise BackendUnavailable(f"load failed: {e}") from e
        if raw is None:
            return None
        try:
            return Session.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable session record: {e}")
            return None

    def touch(self, session: Session) -> None:
        """Overwrite the record only if it still exists, keeping its TTL."""
        try:
            self._client.set(
                SessionKeys.session(session.session_id),
                json.dumps(session.to_dict()),
                xx=True,
                keepttl=True,
            )
        except redis.RedisError as e:
            raise BackendUnavailable(f"touch failed: {e}") from e

    def delete(self, session_id: str, user_id: Optional[int] = None) -> None:
        try:
            pipe = self._client.pipeline()
            pipe.delete(SessionKeys.session(session_id))
            if user_id is not None:
                pipe.srem(SessionKeys.user_sessions(user_id), session_id)
            pipe.execute()
        except redis.RedisError as e:
            raise BackendUnavailable(f"delete failed: {e}") from e

    def user_session_ids(self, user_id: int) -> set[str]:
        try:
            return set(self._client.smembers(SessionKeys.user_sessions(user_id)))
        except redis.RedisError as e:
            raise BackendUnavailable(f"index read failed: {e}") from e

    def purge_expired(self, at: datetime) -> int:
        """Drop index entries whose record is gone or past expiry."""
        purged = 0
        try:
            for index_key in self._client.scan_iter(match=SessionKeys.USER_SESSIONS_PATTERN, count=100):
                for session_id in self._client.smembers(index_key):
                    session = self.load(session_id)
                    if session is None:
                        self._client.srem(index_key, session_id)
                        continue
                    if session.is_expired(at):
                        self._client.delete(SessionKeys.session(session_id))
                        self._client.srem(index_key, session_id)
                        purged += 1
        except redis.RedisError as e:
            raise BackendUnavailable(f"purge failed: {e}") from e
        return purged

    def save_handoff(self, code: str, record: dict, ttl_seconds: int) -> None:
        try:
            self._client.set(SessionKeys.handoff(code), json.dumps(record), ex=ttl_seconds)
        except redis.RedisError as e:
            raise BackendUnavailable(f"hand-off save failed: {e}") from e

    def pop_handoff(self, code: str) -> Optional[dict]:
        """Read and delete in one call so a code redeems at most once."""
        try:
            raw = self._client.getdel(SessionKeys.handoff(code))
        except redis.RedisError as e:
            raise BackendUnavailable(f"hand-off redeem failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self._client.connection_pool.disconnect()


# =============================================================================
# In-process fallback
# =============================================================================

class MemorySessionBackend:
    """Process-local records, user index and revocation tombstones."""

    def __init__(self):
        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._user_index: dict[int, set[str]] = {}
        self._tombstones: dict[str, datetime] = {}
        self._handoffs: dict[str, dict] = {}

    def save(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.session_id] = session
            self._user_index.setdefault(session.user_id, set()).add(session.session_id)

    def load(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def touch(self, session: Session) -> None:
        with self._lock:
            if session.session_id in self._sessions:
                self._sessions[session.session_id] = session

    def delete(self, session_id: str, user_id: Optional[int] = None) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            owner = session.user_id if session else user_id
            if owner is not None and owner in self._user_index:
                self._user_index[owner].discard(session_id)
                if not self._user_index[owner]:
                    del self._user_index[owner]

    def user_session_ids(self, user_id: int) -> set[str]:
        with self._lock:
            return set(self._user_index.get(user_id, ()))

    def save_handoff(self, code: str, record: dict) -> None:
        with self._lock:
            self._handoffs[code] = record

    def pop_handoff(self, code: str) -> Optional[dict]:
        with self._lock:
            return self._handoffs.pop(code, None)

    def add_tombstone(self, session_id: str, until: datetime) -> None:
        with self._lock:
            self._tombstones[session_id] = until

    def is_revoked(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._tombstones

    def purge_expired(self, at: datetime) -> int:
        """Drop expired records and tombstones; returns records removed."""
        with self._lock:
            expired = [s for s in self._sessions.values() if s.is_expired(at)]
            for session in expired:
                self.delete(session.session_id)
            for session_id, until in list(self._tombstones.items()):
                if at >= until:
                    del self._tombstones[session_id]
            for code, record in list(self._handoffs.items()):
                if at.timestamp() >= record["expires_at"]:
                    del self._handoffs[code]
            return len(expired)

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def tombstone_count(self) -> int:
        with self._lock:
            return len(self._tombstones)


# =============================================================================
# Store
# =============================================================================

class SessionStore:
    """Create, validate, expire and revoke login sessions."""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        ttl_seconds: int = 24 * 3600,
        clock: Callable[[], datetime] = now,
        touch_on_validate: bool = True,
        touch_workers: int = 2,
    ):
        self._redis = RedisSessionBackend(redis_client) if redis_client is not None else None
        self._memory = MemorySessionBackend()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._touch_on_validate = touch_on_validate
        self._executor = ThreadPoolExecutor(max_workers=touch_workers, thread_name_prefix="sso-touch")
        self._closed = False

    @classmethod
    def from_settings(cls, sso_settings, redis_client: Optional[redis.Redis]) -> "SessionStore":
        return cls(
            redis_client=redis_client,
            ttl_seconds=sso_settings.session_ttl_seconds,
            touch_on_validate=sso_settings.sso_touch_on_validate,
            touch_workers=sso_settings.sso_touch_workers,
        )

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    # ----- create ---------------------------------------------------------------

    def create_session(self, user_id: int, username: Optional[str] = None) -> str:
        """Issue a new session and return its ID."""
        created = self._clock()
        session = Session(
            session_id=generate_session_id(),
            user_id=user_id,
            username=username,
            created_at=created,
            last_activity_at=created,
            expires_at=created + self._ttl,
        )

        if self._redis is not None:
            try:
                self._redis.save(session, seconds_until(session.expires_at, created))
                return session.session_id
            except BackendUnavailable as e:
                logger.warning(f"Redis unavailable, storing session in memory: {e}")

        self._memory.save(session)
        return session.session_id

    # ----- read -----------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[Session]:
        """Raw record lookup; None if absent or revoked. Does not check expiry."""
        if not session_id or self._memory.is_revoked(session_id):
            return None
        return self._load(session_id)

    def validate_session(self, session_id: Optional[str]) -> SessionLookup:
        """Check a session ID. Expired records are deleted on the way out."""
        session = self.get_session(session_id)
        if session is None:
            return INVALID_LOOKUP

        at = self._clock()
        if session.is_expired(at):
            self._discard(session)
            return SessionLookup(None, None, False, "expired")

        if self._touch_on_validate and not self._closed:
            self._executor.submit(self._touch, session, at)

        return SessionLookup(session.user_id, session.username, True)

    def _load(self, session_id: str) -> Optional[Session]:
        if self._redis is not None:
            try:
                session = self._redis.load(session_id)
                if session is not None:
                    return session
            except BackendUnavailable as e:
                logger.warning(f"Redis unavailable, checking in-memory sessions: {e}")
        return self._memory.load(session_id)

    def _touch(self, session: Session, at: datetime) -> None:
        touched = replace(session, last_activity_at=at)
        if self._redis is not None:
            try:
                self._redis.touch(touched)
            except BackendUnavailable as e:
                logger.debug(f"Activity refresh skipped: {e}")
        self._memory.touch(touched)

    # ----- hand-off -------------------------------------------------------------

    def issue_handoff(self, session_id: str, host: str) -> str:
        """Mint a one-time code that redeems to session_id on host only."""
        code = secrets.token_urlsafe(SESSION_ID_BYTES)
        record = {
            "session_id": session_id,
            "host": host,
            "expires_at": (self._clock() + timedelta(seconds=HANDOFF_TTL_SECONDS)).timestamp(),
        }
        if self._redis is not None:
            try:
                self._redis.save_handoff(code, record, HANDOFF_TTL_SECONDS)
                return code
            except BackendUnavailable as e:
                logger.warning(f"Redis unavailable, keeping hand-off code in memory: {e}")
        self._memory.save_handoff(code, record)
        return code

    def redeem_handoff(self, code: Optional[str], host: str) -> Optional[str]:
        """Consume a code. Returns the session ID, or None if unknown, used, stale or for another host."""
        if not code:
            return None
        record = self._memory.pop_handoff(code)
        if record is None and self._redis is not None:
            try:
                record = self._redis.pop_handoff(code)
            except BackendUnavailable as e:
                logger.warning(f"Redis unavailable, hand-off code not redeemable: {e}")
        if record is None:
            return None
        if record.get("host") != host or self._clock().timestamp() >= record.get("expires_at", 0):
            return None
        return record.get("session_id")

    # ----- revoke ---------------------------------------------------------------

    def revoke_session(self, session_id: str) -> None:
        """Delete a session everywhere. Idempotent."""
        if not session_id:
            return
        session = self._load(session_id)
        self._revoke(
            session_id,
            user_id=session.user_id if session else None,
            until=session.expires_at if session else self._clock() + self._ttl,
        )

    def revoke_all_sessions_for_user(self, user_id: int) -> int:
        """Global logout. Returns the number of sessions revoked."""
        session_ids = self._memory.user_session_ids(user_id)
        if self._redis is not None:
            try:
                session_ids |= self._redis.user_session_ids(user_id)
            except BackendUnavailable as e:
                logger.warning(f"Redis unavailable, revoking in-memory sessions only for user {user_id}: {e}")

        for session_id in session_ids:
            self._revoke(session_id, user_id=user_id, until=self._clock() + self._ttl)

        if session_ids:
            logger.info(f"Revoked {len(session_ids)} session(s) for user {user_id}")
        return len(session_ids)

    def _revoke(self, session_id: str, user_id: Optional[int], until: datetime) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(session_id, user_id)
            except BackendUnavailable as e:
                logger.warning(f"Redis unavailable during revoke, keeping tombstone: {e}")
                self._memory.add_tombstone(session_id, until)
        self._memory.delete(session_id, user_id)

    def _discard(self, session: Session) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(session.session_id, session.user_id)
            except BackendUnavailable as e:
                logger.debug(f"Lazy expiry delete skipped: {e}")
        self._memory.delete(session.session_id)

    # ----- maintenance ----------------------------------------------------------

    def purge_expired(self) -> int:
        """Remove expired records from both backends. Returns records removed."""
        at = self._clock()
        purged = self._memory.purge_expired(at)
        if self._redis is not None:
            try:
                purged += self._redis.purge_expired(at)
            except BackendUnavailable as e:
                logger.warning(f"Redis purge skipped: {e}")
        return purged

    def status(self) -> dict:
        """Backend health for /redis-status."""
        redis_available = self._redis.ping() if self._redis is not None else False
        return {
            "backend": "redis" if redis_available else "memory",
            "redis_configured": self._redis is not None,
            "redis_available": redis_available,
            "fallback_sessions": self._memory.session_count,
            "tombstones": self._memory.tombstone_count,
            "session_ttl_seconds": self.ttl_seconds,
        }

    def close(self) -> None:
        """Finish pending activity refreshes and release Redis connections."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        if self._redis is not None:
            self._redis.close()
