"""
Cookie and domain policy for the session cookie.

Pure and deterministic: the same (hostname, is_https) pair always yields the
same CookieAttributes. Rules:

- login domain and its subdomains share one cookie scoped to ".<login_host>"
  with SameSite=None; Secure so the bridging iframe can carry it.
- custom domains get a host-only cookie with SameSite=Lax.
- local development (localhost, *.localhost, 127.0.0.1, ::1, or any host
  while the login host itself is local) never sets Secure.

SameSite=None is only ever emitted together with Secure.
"""
from dataclasses import replace
from typing import Optional

from config.settings import LOCAL_HOSTNAMES

from .types import CookieAttributes, DomainType


def normalize_host(host: Optional[str]) -> str:
    """Lower-case, strip port and trailing dot. Handles bracketed IPv6."""
    if not host:
        return ""
    host = host.strip().lower()
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end != -1 else host[1:]
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


def is_local_host(hostname: str) -> bool:
    hostname = normalize_host(hostname)
    return hostname in LOCAL_HOSTNAMES or hostname.endswith(".localhost")


def classify_host(hostname: str, login_host: str) -> DomainType:
    """Place a request host relative to the login domain."""
    hostname = normalize_host(hostname)
    login_host = normalize_host(login_host)

    if is_local_host(hostname):
        return DomainType.LOCAL_DEVELOPMENT
    if is_local_host(login_host):
        # Outside hosts are never platform hosts of a local login domain
        return DomainType.CUSTOM_DOMAIN
    if hostname in (login_host, f"www.{login_host}"):
        return DomainType.LOGIN_DOMAIN
    if hostname.endswith(f".{login_host}"):
        return DomainType.LOGIN_SUBDOMAIN
    return DomainType.CUSTOM_DOMAIN


class CookiePolicy:
    """Computes session-cookie attributes per request host."""

    def __init__(
        self,
        login_host: str,
        cookie_name: str = "sso_session",
        max_age: int = 24 * 3600,
        force_https: bool = True,
        omit_samesite_on_insecure: bool = False,
    ):
        self.login_host = normalize_host(login_host)
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.force_https = force_https
        self.omit_samesite_on_insecure = omit_samesite_on_insecure

    @classmethod
    def from_settings(cls, sso_settings) -> "CookiePolicy":
        return cls(
            login_host=sso_settings.login_host,
            cookie_name=sso_settings.session_cookie_name,
            max_age=sso_settings.session_ttl_seconds,
            force_https=sso_settings.force_https,
            omit_samesite_on_insecure=sso_settings.sso_omit_samesite_on_insecure,
        )

    def classify(self, hostname: str) -> DomainType:
        return classify_host(hostname, self.login_host)

    def for_host(self, hostname: str, is_https: bool) -> CookieAttributes:
        """Attributes for the session cookie served on hostname."""
        domain_type = self.classify(hostname)

        if domain_type is DomainType.LOCAL_DEVELOPMENT:
            return self._attributes(
                domain="",
                secure=False,
                same_site=None if self.omit_samesite_on_insecure else "Lax",
            )

        secure = is_https or self.force_https

        if domain_type in (DomainType.LOGIN_DOMAIN, DomainType.LOGIN_SUBDOMAIN):
            # None without Secure is rejected by browsers; fall back to Lax
            return self._attributes(
                domain=f".{self.login_host}",
                secure=secure,
                same_site="None" if secure else "Lax",
            )

        return self._attributes(domain="", secure=secure, same_site="Lax")

    def clear_attributes(self, hostname: str, is_https: bool) -> CookieAttributes:
        """Same scope as for_host, expiring immediately."""
        return replace(self.for_host(hostname, is_https), max_age=0)

    def logout_scopes(self, current_host: str, is_https: bool) -> list[CookieAttributes]:
        """Every scope that may hold the cookie: current host plus the login domain."""
        scopes = []
        seen = set()
        for host in (current_host, self.login_host):
            attrs = self.clear_attributes(host, is_https)
            if attrs.domain in seen:
                continue
            seen.add(attrs.domain)
            scopes.append(attrs)
        return scopes

    def _attributes(self, domain: str, secure: bool, same_site: Optional[str]) -> CookieAttributes:
        return CookieAttributes(
            name=self.cookie_name,
            domain=domain,
            path="/",
            http_only=True,
            secure=secure,
            same_site=same_site,
            max_age=self.max_age,
        )
