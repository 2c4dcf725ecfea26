"""
Registry schema initialization.

IMPORTANT: initialize() should ONLY be called by:
- citizen/app.py at startup
- Test fixtures

Never call schema initialization from feature code (routes, decorators, etc.).
"""
import logging

from werkzeug.security import generate_password_hash

from core.db import adapt_schema_sql

logger = logging.getLogger(__name__)


TABLES = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        email TEXT UNIQUE,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_deployments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        app_name TEXT UNIQUE NOT NULL,
        user_id INTEGER,
        domain TEXT,
        port INTEGER,
        status TEXT DEFAULT 'pending',
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_custom_domains (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        app_name TEXT NOT NULL,
        domain TEXT NOT NULL,
        is_active INTEGER DEFAULT 1,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (app_name, domain)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_public_settings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        app_name TEXT UNIQUE NOT NULL,
        is_public INTEGER DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
)

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_app_custom_domains_domain ON app_custom_domains(domain)",
    "CREATE INDEX IF NOT EXISTS idx_app_custom_domains_active ON app_custom_domains(is_active)",
    "CREATE INDEX IF NOT EXISTS idx_app_public_settings_public ON app_public_settings(is_public)",
)


def initialize(db, admin_settings=None):
    """Create all registry tables and seed the bootstrap admin."""
    with db.connect() as conn:
        cursor = conn.cursor()
        for statement in TABLES:
            cursor.execute(adapt_schema_sql(statement, db.db_url))
        for statement in INDEXES:
            cursor.execute(statement)

    if admin_settings is not None:
        _seed_admin(db, admin_settings)


def _seed_admin(db, admin_settings):
    """Create the admin account on first start when a password is configured."""
    password = admin_settings.password.get_secret_value()
    if not password:
        logger.info("ADMIN_PASSWORD not set, skipping admin bootstrap")
        return

    with db.connect() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT id FROM users WHERE username = ?", (admin_settings.username,))
        if cursor.fetchone():
            return

        cursor.execute(
            "INSERT INTO users (username, password_hash, email) VALUES (?, ?, ?)",
            (admin_settings.username, generate_password_hash(password), admin_settings.email),
        )
    logger.info(f"Bootstrap admin user created: {admin_settings.username}")
