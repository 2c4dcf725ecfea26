"""
Deployment and public-app registries.

DeploymentRegistry answers "which app does this host belong to?" from the
deployment table (subdomains of the login host) and the custom-domain table.
PublicAppRegistry answers "may this app be reached without a session?" and
fails closed: no row means private.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

from core.errors import ConflictError, NotFoundError, ValidationError
from core.timestamps import isonow

from citizen.sso.cookies import normalize_host

logger = logging.getLogger(__name__)

APP_NAME_RE = re.compile(r'^[a-z0-9][a-z0-9-]{0,99}$')
HOSTNAME_RE = re.compile(
    r'^(?=.{1,253}$)'
    r'(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+'
    r'[a-z](?:[a-z0-9-]{0,61}[a-z0-9])?$'
)


def validate_app_name(app_name) -> str:
    if not isinstance(app_name, str) or not APP_NAME_RE.match(app_name):
        raise ValidationError("Application name must be lowercase letters, digits and dashes")
    return app_name


def validate_domain(domain) -> str:
    if not isinstance(domain, str) or not domain.strip():
        raise ValidationError("Domain name is required")
    domain = normalize_host(domain)
    if not HOSTNAME_RE.match(domain):
        raise ValidationError(f"Invalid domain name: {domain}")
    return domain


@dataclass(frozen=True)
class AppPublicSetting:
    app_name: str
    is_public: bool
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {"app_name": self.app_name, "is_public": self.is_public, "updated_at": self.updated_at}


@dataclass(frozen=True)
class CustomDomain:
    app_name: str
    domain: str
    is_active: bool = True
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "app_name": self.app_name,
            "domain": self.domain,
            "is_active": self.is_active,
            "created_at": self.created_at,
        }


def _row_to_domain(row) -> CustomDomain:
    return CustomDomain(
        app_name=row["app_name"],
        domain=row["domain"],
        is_active=bool(row["is_active"]),
        created_at=str(row["created_at"]) if row["created_at"] is not None else None,
    )


# =============================================================================
# Public-App Registry
# =============================================================================

class PublicAppRegistry:
    """Per-app authentication bypass flags."""

    def __init__(self, db):
        self._db = db

    def is_public(self, app_name: Optional[str]) -> bool:
        """True only when a row explicitly marks the app public."""
        if not app_name:
            return False
        setting = self.get_setting(app_name)
        return setting is not None and setting.is_public

    def get_setting(self, app_name: str) -> Optional[AppPublicSetting]:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT app_name, is_public, updated_at FROM app_public_settings WHERE app_name = ?",
                (app_name,),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return AppPublicSetting(
            app_name=row["app_name"],
            is_public=bool(row["is_public"]),
            updated_at=str(row["updated_at"]) if row["updated_at"] is not None else None,
        )

    def set_public(self, app_name: str, is_public: bool) -> AppPublicSetting:
        """Create or update the flag."""
        validate_app_name(app_name)
        timestamp = isonow()
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id FROM app_public_settings WHERE app_name = ?", (app_name,))
            if cursor.fetchone():
                cursor.execute(
                    "UPDATE app_public_settings SET is_public = ?, updated_at = ? WHERE app_name = ?",
                    (int(is_public), timestamp, app_name),
                )
            else:
                cursor.execute(
                    "INSERT INTO app_public_settings (app_name, is_public, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    (app_name, int(is_public), timestamp, timestamp),
                )
        logger.info(f"App {app_name} marked {'public' if is_public else 'private'}")
        return AppPublicSetting(app_name=app_name, is_public=is_public, updated_at=timestamp)

    def list_public_apps(self) -> list[str]:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT app_name FROM app_public_settings WHERE is_public = 1 ORDER BY app_name")
            return [row["app_name"] for row in cursor.fetchall()]


# =============================================================================
# Deployment Registry
# =============================================================================

class DeploymentRegistry:
    """Deployed apps and the custom domains routed to them."""

    def __init__(self, db, login_host: str):
        self._db = db
        self._login_host = normalize_host(login_host)

    # ----- deployments ----------------------------------------------------------

    def upsert_deployment(self, app_name: str, user_id: Optional[int] = None,
                          status: str = "deployed", port: Optional[int] = None) -> None:
        validate_app_name(app_name)
        timestamp = isonow()
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id FROM app_deployments WHERE app_name = ?", (app_name,))
            if cursor.fetchone():
                cursor.execute(
                    "UPDATE app_deployments SET status = ?, port = COALESCE(?, port), "
                    "deleted_at = NULL, updated_at = ? WHERE app_name = ?",
                    (status, port, timestamp, app_name),
                )
            else:
                cursor.execute(
                    "INSERT INTO app_deployments (app_name, user_id, status, port, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (app_name, user_id, status, port, timestamp, timestamp),
                )

    def app_exists(self, app_name: str) -> bool:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id FROM app_deployments WHERE app_name = ? AND deleted_at IS NULL",
                (app_name,),
            )
            return cursor.fetchone() is not None

    def resolve_app_from_host(self, hostname: str) -> Optional[str]:
        """
        Map a request host to a deployed app name.

        "<app>.<login_host>" resolves when the app is deployed; any other host
        resolves through the active custom-domain table. The login host itself
        and "www.<login_host>" resolve to None (the platform, not an app).
        """
        host = normalize_host(hostname)
        if not host or host in (self._login_host, f"www.{self._login_host}"):
            return None

        suffix = f".{self._login_host}"
        if host.endswith(suffix):
            label = host[:-len(suffix)]
            if "." in label or label == "www" or not APP_NAME_RE.match(label):
                return None
            return label if self.app_exists(label) else None

        return self.app_for_custom_domain(host)

    # ----- custom domains -------------------------------------------------------

    def app_for_custom_domain(self, domain: str) -> Optional[str]:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT app_name FROM app_custom_domains WHERE domain = ? AND is_active = 1",
                (normalize_host(domain),),
            )
            row = cursor.fetchone()
        return row["app_name"] if row else None

    def is_known_custom_domain(self, domain: str) -> bool:
        return self.app_for_custom_domain(domain) is not None

    def set_custom_domain(self, app_name: str, domain: str) -> CustomDomain:
        """Register a custom domain for an app. 409 if any app already owns it."""
        validate_app_name(app_name)
        domain = validate_domain(domain)
        if domain == self._login_host or domain.endswith(f".{self._login_host}"):
            raise ValidationError("Subdomains of the platform domain cannot be added as custom domains")

        timestamp = isonow()
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT app_name, is_active FROM app_custom_domains WHERE domain = ?",
                (domain,),
            )
            existing = cursor.fetchall()
            if any(bool(row["is_active"]) for row in existing):
                raise ConflictError("Domain already registered")

            if any(row["app_name"] == app_name for row in existing):
                cursor.execute(
                    "UPDATE app_custom_domains SET is_active = 1, updated_at = ? "
                    "WHERE app_name = ? AND domain = ?",
                    (timestamp, app_name, domain),
                )
            else:
                cursor.execute(
                    "INSERT INTO app_custom_domains (app_name, domain, is_active, created_at, updated_at) "
                    "VALUES (?, ?, 1, ?, ?)",
                    (app_name, domain, timestamp, timestamp),
                )
            # Traefik route generation reads the primary domain from here
            cursor.execute(
                "UPDATE app_deployments SET domain = ?, updated_at = ? WHERE app_name = ?",
                (domain, timestamp, app_name),
            )

        logger.info(f"Custom domain {domain} registered for {app_name}")
        return CustomDomain(app_name=app_name, domain=domain, is_active=True, created_at=timestamp)

    def remove_custom_domain(self, app_name: str, domain: str) -> None:
        """Delete a custom domain. 404 if the app does not own it."""
        validate_app_name(app_name)
        domain = validate_domain(domain)
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM app_custom_domains WHERE app_name = ? AND domain = ?",
                (app_name, domain),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Domain {domain} is not registered for {app_name}")
            cursor.execute(
                "UPDATE app_deployments SET domain = NULL, updated_at = ? WHERE app_name = ? AND domain = ?",
                (isonow(), app_name, domain),
            )
        logger.info(f"Custom domain {domain} removed from {app_name}")

    def list_custom_domains(self, app_name: str) -> list[CustomDomain]:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT app_name, domain, is_active, created_at FROM app_custom_domains "
                "WHERE app_name = ? AND is_active = 1 ORDER BY created_at, domain",
                (app_name,),
            )
            return [_row_to_domain(row) for row in cursor.fetchall()]

    def list_active_custom_domains(self) -> list[CustomDomain]:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT app_name, domain, is_active, created_at FROM app_custom_domains "
                "WHERE is_active = 1 ORDER BY app_name, domain"
            )
            return [_row_to_domain(row) for row in cursor.fetchall()]
