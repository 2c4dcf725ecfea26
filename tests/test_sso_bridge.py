"""Tests for cross-domain session propagation decisions."""

import os
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest

from config.settings import AppSettings
from citizen.extensions import build_services
from citizen.sso import BridgeState, DomainType, clean_vite_params
from core.errors import InvalidDomainForCookie


@pytest.fixture
def services(settings, db, users, store, make_deployment):
    make_deployment("dash")
    make_deployment("shop")
    svc = build_services(settings, db, None, store=store)
    svc.deployments.set_custom_domain("shop", "shop.example.com")
    return svc


@pytest.fixture
def bridge(services):
    return services.bridge


@pytest.fixture
def alice_cookie(store):
    return f"sso_session={store.create_session(42, 'alice')}"


class TestUrls:
    def test_login_url_without_target(self, bridge):
        assert bridge.build_login_url() == "https://citizen.io/login"

    def test_login_url_quotes_target(self, bridge):
        url = bridge.build_login_url("https://dash.citizen.io/a?b=1")
        query = parse_qs(urlsplit(url).query)
        assert query["redirect"] == ["https://dash.citizen.io/a?b=1"]

    def test_login_url_upgrades_scheme(self, bridge):
        url = bridge.build_login_url("http://dash.citizen.io/")
        assert parse_qs(urlsplit(url).query)["redirect"] == ["https://dash.citizen.io/"]

    def test_vite_cache_param_removed(self):
        assert clean_vite_params("https://a.citizen.io/x?t=123&page=2") == "https://a.citizen.io/x?page=2"
        assert clean_vite_params("https://a.citizen.io/x") == "https://a.citizen.io/x"

    def test_sso_init_url(self, bridge):
        url = bridge.build_sso_init_url("https://shop.example.com/cart")
        assert url.startswith("https://citizen.io/sso/init?target=")
        assert parse_qs(urlsplit(url).query)["target"] == ["https://shop.example.com/cart"]


class TestClassifyTarget:
    def test_relative_path_is_login_domain(self, bridge):
        assert bridge.classify_target("/dashboard") == ("citizen.io", DomainType.LOGIN_DOMAIN)

    def test_known_custom_domain(self, bridge):
        assert bridge.classify_target("https://shop.example.com/") == (
            "shop.example.com", DomainType.CUSTOM_DOMAIN,
        )

    @pytest.mark.parametrize("target", [
        "https://evil.example.net/",
        "//evil.example.net/",
        "javascript:alert(1)",
        "ftp://shop.example.com/",
        "dashboard",
        "https://evil.example.net\\@citizen.io/",
        "https://citizen.io@evil.example.net/",
        "https://user:pw@shop.example.com/",
        "/\\evil.example.net",
    ])
    def test_rejected_targets(self, bridge, target):
        with pytest.raises(InvalidDomainForCookie):
            bridge.classify_target(target)


class TestInit:
    def test_unauthenticated_goes_to_login_with_target(self, bridge):
        outcome = bridge.init("https://dash.citizen.io/x", None)
        assert outcome.state is BridgeState.UNAUTHENTICATED
        assert "redirect=" in outcome.redirect_url

    def test_subdomain_redirects_directly(self, bridge, alice_cookie):
        outcome = bridge.init("https://dash.citizen.io/x", alice_cookie)
        assert outcome.state is BridgeState.BRIDGED
        assert outcome.redirect_url == "https://dash.citizen.io/x"
        assert outcome.set_cookie_url is None

    def test_custom_domain_needs_bridge_page(self, bridge, alice_cookie):
        outcome = bridge.init("https://shop.example.com/cart", alice_cookie)
        assert outcome.state is BridgeState.BRIDGING
        parts = urlsplit(outcome.set_cookie_url)
        assert (parts.scheme, parts.netloc, parts.path) == ("https", "shop.example.com", "/sso/set-cookie")
        assert parse_qs(parts.query)["domain"] == ["shop.example.com"]
        assert outcome.bridge_origin == "https://shop.example.com"
        assert outcome.target_url == "https://shop.example.com/cart"
        assert outcome.fallback_url.startswith("https://citizen.io/login?redirect=")

    def test_unknown_target_fails_without_return_url(self, bridge, alice_cookie):
        outcome = bridge.init("https://evil.example.net/", alice_cookie)
        assert outcome.state is BridgeState.FAILED
        assert outcome.redirect_url == "https://citizen.io/login"

    def test_session_never_in_urls(self, bridge, store, alice_cookie):
        sid = alice_cookie.split("=", 1)[1]
        for target in ("https://shop.example.com/", "https://dash.citizen.io/", "https://evil.example.net/"):
            outcome = bridge.init(target, alice_cookie)
            for url in (outcome.redirect_url, outcome.set_cookie_url, outcome.fallback_url):
                assert sid not in (url or "")


class TestSetCookie:
    def handoff_code(self, bridge, cookie, target="https://shop.example.com/"):
        outcome = bridge.init(target, cookie)
        return parse_qs(urlsplit(outcome.set_cookie_url).query)["code"][0]

    def test_grants_host_only_cookie_for_custom_domain(self, bridge, alice_cookie):
        code = self.handoff_code(bridge, alice_cookie)
        grant = bridge.set_cookie("shop.example.com", None, True, "shop.example.com", code=code)
        assert grant.ok is True
        assert grant.session_id == alice_cookie.split("=", 1)[1]
        assert grant.attributes.domain == ""
        assert grant.attributes.same_site == "Lax"

    def test_code_is_single_use(self, bridge, alice_cookie):
        code = self.handoff_code(bridge, alice_cookie)
        assert bridge.set_cookie("shop.example.com", None, True, "shop.example.com", code=code).ok
        grant = bridge.set_cookie("shop.example.com", None, True, "shop.example.com", code=code)
        assert grant.error == "unauthenticated"

    def test_existing_cookie_on_target_host(self, bridge, alice_cookie):
        grant = bridge.set_cookie("shop.example.com", alice_cookie, True, "shop.example.com:443")
        assert grant.ok is True

    def test_wrong_host_never_grants(self, bridge, alice_cookie):
        code = self.handoff_code(bridge, alice_cookie)
        grant = bridge.set_cookie("shop.example.com", alice_cookie, True, "citizen.io", code=code)
        assert grant.ok is False
        assert grant.error == "wrong_host"
        assert grant.session_id is None

    def test_unknown_domain_rejected(self, bridge, alice_cookie):
        grant = bridge.set_cookie("evil.example.net", alice_cookie, True, "evil.example.net")
        assert grant.ok is False
        assert grant.error == "invalid_domain"
        assert grant.session_id is None

    def test_missing_domain_rejected(self, bridge, alice_cookie):
        assert bridge.set_cookie(None, alice_cookie, True, "citizen.io").error == "invalid_domain"

    def test_requires_session(self, bridge):
        grant = bridge.set_cookie("shop.example.com", "sso_session=deadbeef", True, "shop.example.com")
        assert grant.ok is False
        assert grant.error == "unauthenticated"

    def test_revoked_session_code_rejected(self, bridge, store, alice_cookie):
        code = self.handoff_code(bridge, alice_cookie)
        store.revoke_session(alice_cookie.split("=", 1)[1])
        grant = bridge.set_cookie("shop.example.com", None, True, "shop.example.com", code=code)
        assert grant.error == "unauthenticated"


class TestCheck:
    def test_allowed_origin(self, bridge, alice_cookie):
        outcome = bridge.check("https://shop.example.com", alice_cookie)
        assert outcome.authenticated is True
        assert outcome.target_origin == "https://shop.example.com"

    def test_origin_trimmed_to_scheme_and_host(self, bridge):
        outcome = bridge.check("https://dash.citizen.io/some/path", None)
        assert outcome.target_origin == "https://dash.citizen.io"
        assert outcome.authenticated is False

    def test_disallowed_origin(self, bridge, alice_cookie):
        assert bridge.check("https://evil.example.net", alice_cookie) is None

    def test_origin_with_credentials_disallowed(self, bridge, alice_cookie):
        assert bridge.check("https://shop.example.com@evil.example.net", alice_cookie) is None

    def test_no_origin_posts_to_login(self, bridge):
        assert bridge.check(None, None).target_origin == "https://citizen.io"


class TestLocalDevelopment:
    def test_local_login_host_uses_http(self, db, store, test_env):
        with patch.dict(os.environ, {"LOGIN_HOST": "localhost"}):
            local_settings = AppSettings()
        svc = build_services(local_settings, db, None, store=store)
        assert svc.bridge.login_origin == "http://localhost"
        assert svc.bridge.build_login_url("http://localhost:5173/x").startswith("http://localhost/login?redirect=http")

    def test_local_login_host_rejects_outside_targets(self, db, store, test_env, alice_cookie):
        with patch.dict(os.environ, {"LOGIN_HOST": "localhost"}):
            local_settings = AppSettings()
        svc = build_services(local_settings, db, None, store=store)

        assert svc.bridge.classify_target("http://app.localhost:5173/")[1] is DomainType.LOCAL_DEVELOPMENT
        with pytest.raises(InvalidDomainForCookie):
            svc.bridge.classify_target("https://anything.example/")
        outcome = svc.bridge.init("https://anything.example/", alice_cookie)
        assert outcome.state is BridgeState.FAILED
