"""
Cross-domain session propagation.

The login domain owns the session cookie. Subdomains of the login host share
it through the ".<login_host>" cookie scope; custom domains need a one-time
hand-off code (see SessionStore.issue_handoff) that never puts the session ID
in a URL.

State machine for one attempt::

    INIT --no valid session--------------> UNAUTHENTICATED (redirect to login)
    INIT --target on login domain/subdomain-> BRIDGED (direct redirect)
    INIT --target on known custom domain---> BRIDGING (bridge page)
    INIT --target host unknown-------------> FAILED (login, no return URL)
    BRIDGING --iframe reports ok-----------> BRIDGED (parent navigates)
    BRIDGING --iframe reports error--------> FAILED (login with return URL)

Browser contract (templates/sso/*.html):

1. GET /sso/init?target=<url> renders, on the login origin, a page holding a
   hidden iframe whose src is
   https://<target host>/sso/set-cookie?domain=<target host>&code=<hand-off>,
   and a "message" listener accepting events only from the target origin.
2. /sso/set-cookie, served on the target host itself, checks that the host
   it was reached on is the requested domain, redeems the code for that host
   (or reads a session cookie the host already holds), issues Set-Cookie
   using the cookie policy for that host, and posts
   {type: "sso-bridge", status: "ok"} to the login origin (status "error"
   and no cookie on failure).
3. On "ok" the parent runs window.location.replace(target); on "error" or
   timeout it goes to the login page with the target preserved.

A host-only cookie belongs to whichever host served the response, and a
browser never lets one site set cookies for an unrelated domain. The reverse
proxy therefore routes /sso/ on every custom domain to this service (the
gate lets /sso/ through as a public path), and set-cookie answers "error"
when reached on any host other than the requested domain, so an attempt can
only end BRIDGED with the cookie on the target host, or FAILED.

GET /sso/check is a separate status check: a hidden iframe that posts
{type: "sso-check-result", authenticated} to an allowed origin.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from core.audit import log_event
from core.errors import InvalidDomainForCookie

from .cookies import CookiePolicy, normalize_host
from .gate import AuthorizationGate, session_id_from_cookie_header
from .types import CookieAttributes, DomainType

logger = logging.getLogger(__name__)

VITE_CACHE_PARAMS = ("t",)


class BridgeState(str, Enum):
    INIT = "init"
    UNAUTHENTICATED = "unauthenticated"
    BRIDGING = "bridging"
    BRIDGED = "bridged"
    FAILED = "failed"


@dataclass(frozen=True)
class BridgeOutcome:
    """What /sso/init should do next."""
    state: BridgeState
    redirect_url: Optional[str] = None
    target_url: Optional[str] = None
    target_host: Optional[str] = None
    set_cookie_url: Optional[str] = None
    bridge_origin: Optional[str] = None  # origin of the set-cookie iframe
    fallback_url: Optional[str] = None  # where the bridge page goes on error
    reason: Optional[str] = None


@dataclass(frozen=True)
class CookieGrant:
    """What /sso/set-cookie should emit. session_id is only ever a cookie value."""
    ok: bool
    domain: Optional[str] = None
    session_id: Optional[str] = None
    attributes: Optional[CookieAttributes] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class CheckOutcome:
    """What /sso/check should post to its parent."""
    authenticated: bool
    target_origin: str


def clean_vite_params(url: str) -> str:
    """Drop the dev-server cache-buster (t=...) from a return URL."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in VITE_CACHE_PARAMS]
    return urlunsplit(parts._replace(query=urlencode(query)))


def url_host(parts) -> str:
    """Host of a split http(s) URL. Credentials or backslashes make it unusable."""
    if "\\" in parts.netloc or parts.username is not None or parts.password is not None:
        raise InvalidDomainForCookie("Target must not carry credentials")
    if not parts.hostname:
        raise InvalidDomainForCookie("Target must name a host")
    return normalize_host(parts.hostname)


class SSOBridge:
    """Server side of the init / set-cookie / check exchange."""

    def __init__(
        self,
        gate: AuthorizationGate,
        cookie_policy: CookiePolicy,
        deployments,
        store,
        login_path: str = "/login",
    ):
        self._gate = gate
        self._policy = cookie_policy
        self._deployments = deployments
        self._store = store
        self._login_path = login_path

    # ----- URLs -----------------------------------------------------------------

    @property
    def scheme(self) -> str:
        """https when forced, except for a local login host."""
        if self._policy.classify(self._policy.login_host) is DomainType.LOCAL_DEVELOPMENT:
            return "http"
        return "https" if self._policy.force_https else "http"

    @property
    def login_origin(self) -> str:
        return f"{self.scheme}://{self._policy.login_host}"

    def build_login_url(self, target: Optional[str] = None) -> str:
        """Login page URL, carrying a cleaned return URL when given."""
        base = f"{self.login_origin}{self._login_path}"
        if not target:
            return base
        cleaned = clean_vite_params(target)
        if self.scheme == "https" and cleaned.startswith("http://"):
            cleaned = "https://" + cleaned[len("http://"):]
        return f"{base}?redirect={quote(cleaned, safe='')}"

    def build_sso_init_url(self, target: str) -> str:
        return f"{self.login_origin}/sso/init?target={quote(target, safe='')}"

    # ----- target checks --------------------------------------------------------

    def classify_target(self, target: str) -> tuple[str, DomainType]:
        """Host and domain type of a return URL; raises for hosts we do not serve."""
        # Browsers read "\" as "/", so "/\evil" and "https://evil\@ok" leave the site
        if "\\" in target:
            raise InvalidDomainForCookie("Target must not contain backslashes")
        parts = urlsplit(target)
        if not parts.scheme and not parts.netloc:
            if not target.startswith("/") or target.startswith("//"):
                raise InvalidDomainForCookie("Target must be an absolute URL or a path")
            host = self._policy.login_host
        else:
            if parts.scheme not in ("http", "https"):
                raise InvalidDomainForCookie("Target must be an http(s) URL")
            host = url_host(parts)

        return host, self.classify_domain(host)

    def classify_domain(self, host: str) -> DomainType:
        """Domain type of a host we may issue a cookie for."""
        host = normalize_host(host)
        if not host:
            raise InvalidDomainForCookie("Domain is required")
        domain_type = self._policy.classify(host)
        if domain_type is DomainType.CUSTOM_DOMAIN and not self._deployments.is_known_custom_domain(host):
            raise InvalidDomainForCookie(f"Unknown domain: {host}")
        return domain_type

    def is_allowed_origin(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        parts = urlsplit(origin)
        if parts.scheme not in ("http", "https"):
            return False
        try:
            self.classify_domain(url_host(parts))
        except InvalidDomainForCookie:
            return False
        return True

    # ----- endpoints ------------------------------------------------------------

    def init(self, target: Optional[str], cookie_header: Optional[str]) -> BridgeOutcome:
        """Decide the first step for GET /sso/init."""
        target = target or "/"

        try:
            host, domain_type = self.classify_target(target)
        except InvalidDomainForCookie as e:
            # Return URL dropped so the login page cannot bounce to it
            outcome = BridgeOutcome(BridgeState.FAILED, redirect_url=self.build_login_url(), reason=str(e))
            return self._record(outcome, None)

        session_id = session_id_from_cookie_header(cookie_header, self._gate.cookie_name)
        lookup = self._gate.resolve_session(session_id)
        if not lookup.ok:
            outcome = BridgeOutcome(
                BridgeState.UNAUTHENTICATED,
                redirect_url=self.build_login_url(target),
                target_url=target,
                target_host=host,
            )
            return self._record(outcome, None)

        if domain_type is DomainType.CUSTOM_DOMAIN:
            bridge_origin = f"{self.scheme}://{host}"
            query = urlencode({"domain": host, "code": self._store.issue_handoff(session_id, host)})
            outcome = BridgeOutcome(
                BridgeState.BRIDGING,
                target_url=target,
                target_host=host,
                set_cookie_url=f"{bridge_origin}/sso/set-cookie?{query}",
                bridge_origin=bridge_origin,
                fallback_url=self.build_login_url(target),
            )
            return self._record(outcome, lookup.username)

        outcome = BridgeOutcome(BridgeState.BRIDGED, redirect_url=target, target_url=target, target_host=host)
        return self._record(outcome, lookup.username)

    def set_cookie(
        self,
        domain: Optional[str],
        cookie_header: Optional[str],
        is_https: bool,
        request_host: Optional[str],
        code: Optional[str] = None,
    ) -> CookieGrant:
        """Decide the Set-Cookie for GET /sso/set-cookie reached on request_host.

        The session comes from the hand-off code when one is given, else from a
        cookie the browser already holds for this host.
        """
        try:
            self.classify_domain(domain or "")
        except InvalidDomainForCookie as e:
            log_event("sso_bridge", details=f"set-cookie rejected: {e}", status="denied", host=domain)
            return CookieGrant(ok=False, error="invalid_domain")

        host = normalize_host(domain)
        if normalize_host(request_host) != host:
            # A host-only cookie here would land on request_host, not on domain
            log_event(
                "sso_bridge",
                details=f"set-cookie for {host} reached on {normalize_host(request_host) or '-'}",
                status="denied",
                host=host,
            )
            return CookieGrant(ok=False, domain=host, error="wrong_host")

        if code:
            session_id = self._store.redeem_handoff(code, host)
        else:
            session_id = session_id_from_cookie_header(cookie_header, self._gate.cookie_name)
        lookup = self._gate.resolve_session(session_id)
        if not lookup.ok:
            log_event("sso_bridge", details="set-cookie without a valid session", status="denied", host=host)
            return CookieGrant(ok=False, domain=host, error="unauthenticated")

        log_event("sso_bridge", details="cookie issued", user=lookup.username, host=host)
        return CookieGrant(
            ok=True,
            domain=host,
            session_id=session_id,
            attributes=self._policy.for_host(host, is_https),
        )

    def check(self, origin: Optional[str], cookie_header: Optional[str]) -> Optional[CheckOutcome]:
        """Decide the /sso/check reply. None means the origin is not allowed."""
        if origin and not self.is_allowed_origin(origin):
            logger.warning(f"SSO check from disallowed origin: {origin}")
            return None

        session_id = session_id_from_cookie_header(cookie_header, self._gate.cookie_name)
        lookup = self._gate.resolve_session(session_id)
        if origin:
            parts = urlsplit(origin)
            origin = f"{parts.scheme}://{parts.netloc}"
        return CheckOutcome(authenticated=lookup.ok, target_origin=origin or self.login_origin)

    def _record(self, outcome: BridgeOutcome, username: Optional[str]) -> BridgeOutcome:
        status = {
            BridgeState.BRIDGED: "success",
            BridgeState.BRIDGING: "success",
            BridgeState.UNAUTHENTICATED: "denied",
        }.get(outcome.state, "error")
        details = f"state={outcome.state.value}"
        if outcome.reason:
            details += f" reason={outcome.reason}"
        log_event("sso_bridge", details=details, status=status, user=username, host=outcome.target_host)
        return outcome
