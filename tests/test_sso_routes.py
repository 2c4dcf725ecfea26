"""Tests for the /sso bridge pages."""

import re
from urllib.parse import urlsplit

import pytest

LOGIN_URL = "https://citizen.io"


@pytest.fixture(autouse=True)
def apps(make_deployment, services):
    make_deployment("dash")
    make_deployment("shop")
    services.deployments.set_custom_domain("shop", "shop.example.com")


def nonce_of(response):
    match = re.search(r"'nonce-([^']+)'", response.headers['Content-Security-Policy'])
    return match.group(1) if match else None


class TestInit:
    def test_custom_domain_renders_bridge_page(self, client, login):
        sid = login()
        response = client.get(
            '/sso/init?target=https://shop.example.com/cart',
            headers={'Cookie': f'sso_session={sid}'},
            base_url=LOGIN_URL,
        )

        assert response.status_code == 200
        html = response.get_data(as_text=True)
        assert 'src="https://shop.example.com/sso/set-cookie?domain=shop.example.com&amp;code=' in html
        assert '"https://shop.example.com"' in html
        assert sid not in html
        nonce = nonce_of(response)
        assert nonce and f'nonce="{nonce}"' in html
        csp = response.headers['Content-Security-Policy']
        assert "frame-src https://shop.example.com;" in csp
        assert "frame-ancestors 'self'" in csp
        assert response.headers['X-Frame-Options'] == 'SAMEORIGIN'

    def test_nonce_changes_per_response(self, client, login):
        sid = login()
        headers = {'Cookie': f'sso_session={sid}'}
        first = client.get('/sso/init?target=https://shop.example.com/', headers=headers, base_url=LOGIN_URL)
        second = client.get('/sso/init?target=https://shop.example.com/', headers=headers, base_url=LOGIN_URL)
        assert nonce_of(first) != nonce_of(second)

    def test_subdomain_redirects(self, client, login):
        sid = login()
        response = client.get(
            '/sso/init?target=https://dash.citizen.io/x',
            headers={'Cookie': f'sso_session={sid}'},
            base_url=LOGIN_URL,
        )
        assert response.status_code == 302
        assert response.headers['Location'] == "https://dash.citizen.io/x"

    def test_unauthenticated_redirects_to_login(self, client):
        response = client.get('/sso/init?target=https://shop.example.com/', base_url=LOGIN_URL)
        assert response.status_code == 302
        assert response.headers['Location'].startswith("https://citizen.io/login?redirect=")

    def test_unknown_target_drops_return_url(self, client, login):
        sid = login()
        response = client.get(
            '/sso/init?target=https://evil.example.net/',
            headers={'Cookie': f'sso_session={sid}'},
            base_url=LOGIN_URL,
        )
        assert response.status_code == 302
        assert response.headers['Location'] == "https://citizen.io/login"

    def test_no_session_id_in_redirects(self, client, login):
        sid = login()
        response = client.get(
            '/sso/init?target=https://dash.citizen.io/',
            headers={'Cookie': f'sso_session={sid}'},
            base_url=LOGIN_URL,
        )
        assert sid not in response.headers['Location']


def handoff_url(client, sid, target="https://shop.example.com/"):
    """Path and query of the set-cookie iframe rendered by /sso/init."""
    page = client.get(f'/sso/init?target={target}', headers={'Cookie': f'sso_session={sid}'}, base_url=LOGIN_URL)
    src = re.search(r'src="([^"]+)"', page.get_data(as_text=True)).group(1).replace('&amp;', '&')
    parts = urlsplit(src)
    return f"{parts.path}?{parts.query}"


class TestSetCookie:
    def test_issues_cookie_and_reports_ok(self, client, login):
        sid = login()
        response = client.get(handoff_url(client, sid), base_url="https://shop.example.com")

        assert response.status_code == 200
        html = response.get_data(as_text=True)
        assert '"ok"' in html
        assert sid not in html
        header = response.headers['Set-Cookie']
        assert header.startswith(f"sso_session={sid}")
        assert "Domain=" not in header
        assert "SameSite=Lax" in header
        csp = response.headers['Content-Security-Policy']
        assert "frame-ancestors https://citizen.io" in csp
        assert 'X-Frame-Options' not in response.headers
        assert 'postMessage(message, "https://citizen.io")' in html

    def test_login_origin_never_gets_target_cookie(self, client, login):
        sid = login()
        response = client.get(
            handoff_url(client, sid),
            headers={'Cookie': f'sso_session={sid}'},
            base_url=LOGIN_URL,
        )
        assert response.status_code == 200
        html = response.get_data(as_text=True)
        assert '"error"' in html
        assert '"wrong_host"' in html
        assert 'Set-Cookie' not in response.headers

    def test_code_cannot_be_replayed(self, client, login):
        sid = login()
        url = handoff_url(client, sid)
        assert 'Set-Cookie' in client.get(url, base_url="https://shop.example.com").headers
        replay = client.get(url, base_url="https://shop.example.com")
        assert '"unauthenticated"' in replay.get_data(as_text=True)
        assert 'Set-Cookie' not in replay.headers

    def test_unknown_domain_reports_error(self, client, login):
        sid = login()
        response = client.get(
            '/sso/set-cookie?domain=evil.example.net',
            headers={'Cookie': f'sso_session={sid}'},
            base_url=LOGIN_URL,
        )
        assert response.status_code == 200
        assert '"error"' in response.get_data(as_text=True)
        assert 'Set-Cookie' not in response.headers

    def test_without_session_reports_error(self, client):
        response = client.get('/sso/set-cookie?domain=shop.example.com', base_url="https://shop.example.com")
        assert '"unauthenticated"' in response.get_data(as_text=True)
        assert 'Set-Cookie' not in response.headers


class TestCheck:
    def test_allowed_origin_gets_result(self, client, login):
        sid = login()
        response = client.get(
            '/sso/check?origin=https://shop.example.com',
            headers={'Cookie': f'sso_session={sid}'},
            base_url=LOGIN_URL,
        )
        assert response.status_code == 200
        html = response.get_data(as_text=True)
        assert '"sso-check-result"' in html
        assert 'authenticated: true' in html
        assert sid not in html
        csp = response.headers['Content-Security-Policy']
        assert "frame-ancestors 'self' https://shop.example.com" in csp
        assert 'X-Frame-Options' not in response.headers

    def test_signed_out(self, client):
        response = client.get('/sso/check?origin=https://dash.citizen.io', base_url=LOGIN_URL)
        assert 'authenticated: false' in response.get_data(as_text=True)

    def test_disallowed_origin_is_403(self, client):
        response = client.get('/sso/check?origin=https://evil.example.net', base_url=LOGIN_URL)
        assert response.status_code == 403

    def test_origin_header_is_used(self, client):
        response = client.get('/sso/check', headers={'Origin': 'https://evil.example.net'}, base_url=LOGIN_URL)
        assert response.status_code == 403
