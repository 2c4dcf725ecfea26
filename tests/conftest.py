"""Shared pytest fixtures for Citizen control plane tests."""
import os
import sys
from datetime import datetime, timedelta, timezone
from fnmatch import fnmatchcase
from unittest.mock import patch

import pytest
import redis
from werkzeug.security import generate_password_hash

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)

# ---------------------------------------------------------------------------
# Deterministic test environment - set BEFORE any citizen module imports.
# TESTING bypasses the production checks and keeps the app off real Redis.
# ---------------------------------------------------------------------------
os.environ.setdefault('TESTING', 'true')

LOGIN_HOST = "citizen.io"

TEST_ENV = {
    "TESTING": "true",
    "ENVIRONMENT": "development",
    "LOGIN_HOST": LOGIN_HOST,
    "FORCE_HTTPS": "true",
    "SESSION_TTL_HOURS": "24",
    "SESSION_COOKIE_NAME": "sso_session",
    "ADMIN_PASSWORD": "",
    "LOG_FORMAT": "text",
    "LOG_FILE": "",
    "CORS_ORIGINS": "",
}


# =============================================================================
# Fakes
# =============================================================================

class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start=None):
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


class FakePipeline:
    """Queues commands and runs them on execute(), like redis-py's pipeline."""

    def __init__(self, client):
        self._client = client
        self._commands = []

    def __getattr__(self, name):
        method = getattr(self._client, name)

        def queue(*args, **kwargs):
            self._commands.append((method, args, kwargs))
            return self
        return queue

    def execute(self):
        self._client._check()
        results = [method(*args, **kwargs) for method, args, kwargs in self._commands]
        self._commands = []
        return results


class FakeConnectionPool:
    def __init__(self):
        self.disconnected = False

    def disconnect(self):
        self.disconnected = True


class FakeRedis:
    """Dict-backed stand-in for the subset of redis.Redis the session store uses.

    Set ``down = True`` to make every call raise redis.ConnectionError.
    TTLs are recorded in ``ttls`` but not enforced.
    """

    def __init__(self):
        self.strings = {}
        self.sets = {}
        self.ttls = {}
        self.down = False
        self.connection_pool = FakeConnectionPool()

    def _check(self):
        if self.down:
            raise redis.ConnectionError("Connection refused")

    def ping(self):
        self._check()
        return True

    def pipeline(self):
        return FakePipeline(self)

    def get(self, key):
        self._check()
        return self.strings.get(key)

    def set(self, key, value, ex=None, xx=False, keepttl=False):
        self._check()
        if xx and key not in self.strings:
            return None
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        elif not keepttl:
            self.ttls.pop(key, None)
        return True

    def getdel(self, key):
        self._check()
        self.ttls.pop(key, None)
        return self.strings.pop(key, None)

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None or self.sets.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def sadd(self, key, *members):
        self._check()
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    def srem(self, key, *members):
        self._check()
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        if key in self.sets and not bucket:
            del self.sets[key]
        return removed

    def smembers(self, key):
        self._check()
        return set(self.sets.get(key, set()))

    def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds
        return True

    def scan_iter(self, match=None, count=None):
        self._check()
        keys = list(self.strings) + list(self.sets)
        for key in keys:
            if match is None or fnmatchcase(key, match):
                yield key


# =============================================================================
# Settings / database
# =============================================================================

@pytest.fixture
def test_env(tmp_path):
    """Environment for AppSettings with a per-test SQLite file."""
    env = dict(TEST_ENV, DATABASE_PATH=str(tmp_path / "citizen_test.db"))
    with patch.dict(os.environ, env, clear=False):
        os.environ.pop("DATABASE_URL", None)
        yield env


@pytest.fixture
def settings(test_env):
    from config.settings import AppSettings
    return AppSettings()


@pytest.fixture
def db(settings):
    """Initialized registry database."""
    from citizen import registry
    from core.db import DatabaseManager

    manager = DatabaseManager.from_settings(settings.database)
    registry.initialize(manager)
    yield manager
    manager.close()


def add_user(db, user_id, username, password="password123", email=None):
    """Insert a user with a fixed id."""
    with db.connect() as conn:
        conn.execute(
            "INSERT INTO users (id, username, password_hash, email) VALUES (?, ?, ?, ?)",
            (user_id, username, generate_password_hash(password), email or f"{username}@example.com"),
        )


def add_deployment(db, app_name, user_id=None):
    from citizen.registry import DeploymentRegistry
    DeploymentRegistry(db, LOGIN_HOST).upsert_deployment(app_name, user_id=user_id)


@pytest.fixture
def make_user(db):
    def _make(user_id, username, password="password123"):
        add_user(db, user_id, username, password)
    return _make


@pytest.fixture
def make_deployment(db):
    def _make(app_name, user_id=None):
        add_deployment(db, app_name, user_id)
    return _make


@pytest.fixture
def users(db):
    """alice (42) and bob (7)."""
    add_user(db, 42, "alice", "wonderland")
    add_user(db, 7, "bob", "builder")
    return {"alice": 42, "bob": 7}


# =============================================================================
# Session store
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis, clock):
    """Redis-backed store on the fake client, activity refresh disabled."""
    from citizen.sso import SessionStore

    s = SessionStore(redis_client=fake_redis, ttl_seconds=24 * 3600, clock=clock, touch_on_validate=False)
    yield s
    s.close()


@pytest.fixture
def memory_store(clock):
    """Store with no Redis configured."""
    from citizen.sso import SessionStore

    s = SessionStore(redis_client=None, ttl_seconds=24 * 3600, clock=clock, touch_on_validate=False)
    yield s
    s.close()


# =============================================================================
# Flask API Test Client Fixtures
# =============================================================================

@pytest.fixture
def app(settings, db, users, store):
    """Flask app via the factory, sharing the test database and store."""
    from citizen.app import create_app
    from core.audit import clear_audit_log

    clear_audit_log()
    flask_app = create_app(
        config={'TESTING': True, 'RATELIMIT_ENABLED': False},
        settings=settings,
        store=store,
    )
    yield flask_app
    flask_app.extensions["sso"].db.close()


@pytest.fixture
def services(app):
    return app.extensions["sso"]


@pytest.fixture
def client(app):
    """Flask test client without a cookie jar; tests send Cookie headers explicitly."""
    return app.test_client(use_cookies=False)


@pytest.fixture
def login(client):
    """Log in through the API; returns the session ID."""
    def _login(username="alice", password="wonderland", host=LOGIN_HOST):
        response = client.post(
            '/auth/login',
            json={'username': username, 'password': password},
            base_url=f"https://{host}",
        )
        assert response.status_code == 200, response.get_json()
        return response.get_json()['data']['sso_session']
    return _login
