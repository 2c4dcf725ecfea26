"""
Authorization gate consulted by the reverse proxy on every request.

Order of checks for authorize():
1. public path prefix (ACME challenges, the SSO endpoints) -> allow
2. host -> app through the deployment registry; unknown hosts fail closed
3. public app -> allow without touching the session store
4. session cookie present?
5. session valid and its owner still exists -> allow with identity

Everything here is read-only apart from the session activity touch and the
audit record written for each decision.
"""
import logging
from typing import Callable, Iterable, Optional
from urllib.parse import urlsplit

from werkzeug.http import parse_cookie

from core.audit import log_event

from .cookies import classify_host, is_local_host, normalize_host
from .types import (
    INVALID_LOOKUP,
    AuthorizationDecision,
    DecisionReason,
    DomainType,
    SessionLookup,
)

logger = logging.getLogger(__name__)

DEFAULT_PUBLIC_PATHS = ("/sso/", "/.well-known/acme-challenge/")


def session_id_from_cookie_header(cookie_header: Optional[str], cookie_name: str) -> Optional[str]:
    """Extract the session cookie; a malformed header counts as absent."""
    if not cookie_header:
        return None
    try:
        value = parse_cookie(cookie_header).get(cookie_name)
    except (ValueError, UnicodeError):
        return None
    return value.strip() if value and value.strip() else None


class AuthorizationGate:
    """Per-request allow/deny decisions for the ForwardAuth endpoint."""

    def __init__(
        self,
        store,
        public_apps,
        deployments,
        users,
        login_host: str,
        cookie_name: str = "sso_session",
        public_paths: Iterable[str] = DEFAULT_PUBLIC_PATHS,
        audit: Callable[..., dict] = log_event,
    ):
        self._store = store
        self._public_apps = public_apps
        self._deployments = deployments
        self._users = users
        self._login_host = normalize_host(login_host)
        self._cookie_name = cookie_name
        self._public_paths = tuple(public_paths)
        self._audit = audit

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def is_platform_host(self, host: str) -> bool:
        """The login domain itself, not an app behind it."""
        host = normalize_host(host)
        if host in (self._login_host, f"www.{self._login_host}"):
            return True
        return is_local_host(host) and not host.endswith(f".{self._login_host}")

    def is_public_path(self, request_uri: str) -> bool:
        if not request_uri:
            return False
        path = urlsplit(request_uri).path or "/"
        return any(path.startswith(prefix) for prefix in self._public_paths)

    def authorize(self, request_host: str, cookie_header: Optional[str], request_uri: str = "") -> AuthorizationDecision:
        host = normalize_host(request_host)
        domain_type = classify_host(host, self._login_host)

        if self.is_public_path(request_uri):
            return self._decide(True, DecisionReason.PUBLIC_PATH, host, domain_type)

        app_name = self._deployments.resolve_app_from_host(host)
        if app_name is None and not self.is_platform_host(host):
            return self._decide(False, DecisionReason.UNKNOWN_APPLICATION, host, domain_type)

        if app_name is not None and self._public_apps.is_public(app_name):
            return self._decide(True, DecisionReason.PUBLIC_APP, host, domain_type, app_name=app_name)

        session_id = session_id_from_cookie_header(cookie_header, self._cookie_name)
        if session_id is None:
            return self._decide(False, DecisionReason.NO_SESSION, host, domain_type, app_name=app_name)

        lookup = self.resolve_session(session_id)
        if not lookup.ok:
            return self._decide(False, DecisionReason.INVALID_SESSION, host, domain_type, app_name=app_name)

        return self._decide(
            True, DecisionReason.VALID_SESSION, host, domain_type,
            app_name=app_name, user_id=lookup.user_id, username=lookup.username,
        )

    def resolve_session(self, session_id: Optional[str]) -> SessionLookup:
        """Validate a session and confirm its owner still exists."""
        if not session_id:
            return INVALID_LOOKUP

        lookup = self._store.validate_session(session_id)
        if not lookup.ok:
            logger.debug(f"Session rejected ({lookup.reason})")
            return lookup

        user = self._users.get_user(lookup.user_id)
        if user is None:
            logger.info(f"Session owner {lookup.user_id} no longer exists")
            return SessionLookup(None, None, False, "user_missing")

        return SessionLookup(user.id, user.username, True)

    def _decide(
        self,
        allow: bool,
        reason: DecisionReason,
        host: str,
        domain_type: DomainType,
        app_name: Optional[str] = None,
        user_id: Optional[int] = None,
        username: Optional[str] = None,
    ) -> AuthorizationDecision:
        decision = AuthorizationDecision(
            allow=allow,
            reason=reason,
            user_id=user_id,
            username=username,
            app_name=app_name,
            host=host,
            domain_type=domain_type,
        )
        self._audit(
            "authorize",
            details=f"app={app_name or '-'} reason={reason.value}",
            status="success" if allow else "denied",
            user=username,
            host=host,
        )
        return decision
