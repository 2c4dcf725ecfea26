"""
SSO domain types - no dependencies on other sso modules.

NOTE: Keep this minimal. Only types shared by the store, the cookie policy,
the gate and the bridge belong here.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional

from core.timestamps import parse_timestamp


@dataclass
class Session:
    """A login session, serialised to JSON in Redis."""
    session_id: str
    user_id: int
    username: Optional[str]
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime

    def is_expired(self, at: datetime) -> bool:
        return at >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "username": self.username,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            session_id=data["session_id"],
            user_id=int(data["user_id"]),
            username=data.get("username"),
            created_at=parse_timestamp(data["created_at"]),
            last_activity_at=parse_timestamp(data["last_activity_at"]),
            expires_at=parse_timestamp(data["expires_at"]),
        )


class SessionLookup(NamedTuple):
    """Result of validating a session ID."""
    user_id: Optional[int]
    username: Optional[str]
    ok: bool
    reason: Optional[str] = None  # "not_found" | "expired", for logs only


INVALID_LOOKUP = SessionLookup(None, None, False, "not_found")


class DomainType(str, Enum):
    """How a request host relates to the login domain."""
    LOGIN_DOMAIN = "login_domain"
    LOGIN_SUBDOMAIN = "login_subdomain"
    CUSTOM_DOMAIN = "custom_domain"
    LOCAL_DEVELOPMENT = "local_development"


@dataclass(frozen=True)
class CookieAttributes:
    """Attributes for one Set-Cookie header.

    domain="" means host-only (no Domain attribute); same_site=None means the
    SameSite attribute is omitted.
    """
    name: str
    domain: str
    path: str
    http_only: bool
    secure: bool
    same_site: Optional[str]
    max_age: int

    def set_cookie_kwargs(self) -> dict:
        """Keyword arguments for werkzeug's Response.set_cookie."""
        return {
            "max_age": self.max_age,
            "path": self.path,
            "domain": self.domain or None,
            "secure": self.secure,
            "httponly": self.http_only,
            "samesite": self.same_site,
        }


class DecisionReason(str, Enum):
    """Why the gate allowed or denied a request."""
    PUBLIC_PATH = "public_path"
    PUBLIC_APP = "public_app"
    VALID_SESSION = "valid_session"
    NO_SESSION = "no_session"
    INVALID_SESSION = "invalid_session"
    UNKNOWN_APPLICATION = "unknown_application"


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of one ForwardAuth check. Never persisted."""
    allow: bool
    reason: DecisionReason
    user_id: Optional[int] = None
    username: Optional[str] = None
    app_name: Optional[str] = None
    host: Optional[str] = None
    domain_type: Optional[DomainType] = None

    def to_dict(self) -> dict:
        return {
            "allow": self.allow,
            "reason": self.reason.value,
            "user_id": self.user_id,
            "username": self.username,
            "app_name": self.app_name,
        }
