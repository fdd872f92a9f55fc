"""
HTTP Route Tests
================

Tests for the /auth and /management routers through the full middleware
stack (session cookie, access log) with a mocked identity provider.

Test Coverage:
--------------
1. Login redirect and stored nonce/state
2. Callback JSON and HTML responses, redirect on failure
3. Logout destroys the session and clears the cookie
4. Protected routes reject requests without any token before calling
   the provider
5. Bearer header fallback
6. 503 until the provider has been discovered
"""

import logging
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from oidc_gateway.auth.flow import AuthFlow
from oidc_gateway.main import create_app
from oidc_gateway.models import Session, TokenSet, User
from oidc_gateway.oidc.client import CallbackChecks, ProviderErrorKind, ProviderResult
from oidc_gateway.sessions.cookie import decode_session_cookie

from conftest import AUTHORIZATION_URL, PROVIDER_LOGOUT_URL


@pytest.fixture
def logged_in_session():
    return Session(
        tokens=TokenSet(access_token="tok1", refresh_token="rt1", id_token="idt1"),
        user_info=User(sub="user-42", email="user@example.com"),
    )


# ============================================================================
# /auth/login
# ============================================================================

class TestLogin:
    def test_redirects_to_provider(self, client, store, session_id, provider_client):
        response = client.get("/auth/login")

        assert response.status_code == 302
        assert response.headers["location"] == AUTHORIZATION_URL

        session = store.peek(session_id)
        assert session.nonce and session.state
        provider_client.authorization_url.assert_called_once_with(
            scope="phone openid email",
            state=session.state,
            nonce=session.nonce,
        )

    def test_sets_signed_session_cookie(self, client, settings):
        response = client.get("/auth/login")

        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{settings.SESSION_COOKIE_NAME}=")
        assert "HttpOnly" in set_cookie
        assert "samesite=lax" in set_cookie.lower()


# ============================================================================
# /auth/callback
# ============================================================================

class TestCallback:
    def test_login_then_callback_returns_tokens_and_user(self, client, store, session_id, provider_client, settings):
        """login -> callback?code=XYZ&state=<stored> stores tok1 and user-42"""
        client.get("/auth/login")
        pending = store.peek(session_id)

        response = client.get("/auth/callback", params={"code": "XYZ", "state": pending.state})

        assert response.status_code == 200
        body = response.json()
        assert body["tokenSet"]["access_token"] == "tok1"
        assert body["userInfo"]["sub"] == "user-42"

        provider_client.exchange_code.assert_awaited_once_with(
            settings.redirect_uri,
            {"code": "XYZ", "state": pending.state},
            CallbackChecks(nonce=pending.nonce, state=pending.state),
        )
        stored = store.peek(session_id)
        assert stored.tokens.access_token == "tok1"
        assert stored.user_info.sub == "user-42"
        assert stored.state is None

    def test_failure_redirects_home(self, client, store, seed_session, provider_client):
        session_id = seed_session(Session(nonce="N1", state="S1"))
        provider_client.exchange_code = AsyncMock(return_value=ProviderResult.failure(
            ProviderErrorKind.STATE_MISMATCH, "State mismatch between callback and session"
        ))

        response = client.get("/auth/callback", params={"code": "XYZ", "state": "forged"})

        assert response.status_code == 302
        assert response.headers["location"] == "/"
        assert store.peek(session_id).tokens is None

    def test_userinfo_failure_redirects_home(self, client, store, seed_session, provider_client):
        session_id = seed_session(Session(nonce="N1", state="S1"))
        provider_client.userinfo = AsyncMock(return_value=ProviderResult.failure(
            ProviderErrorKind.TIMEOUT, "timed out"
        ))

        response = client.get("/auth/callback", params={"code": "XYZ", "state": "S1"})

        assert response.status_code == 302
        stored = store.peek(session_id)
        assert stored.tokens is None
        assert stored.user_info is None

    def test_html_mode_renders_success_page(self, settings, store, provider_client):
        html_settings = settings.model_copy(update={"CALLBACK_RESPONSE_MODE": "html"})
        app = create_app(settings=html_settings, store=store)
        app.state.auth_flow = AuthFlow(client=provider_client, store=store, settings=html_settings)
        client = TestClient(app, follow_redirects=False)

        client.get("/auth/login")
        state = provider_client.authorization_url.call_args.kwargs["state"]
        response = client.get("/auth/callback", params={"code": "XYZ", "state": state})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "Login Successful" in response.text
        assert "window.__AUTH_RESULT__" in response.text
        assert "user42" in response.text


# ============================================================================
# /auth/logout
# ============================================================================

class TestLogout:
    def test_destroys_session_and_clears_cookie(self, client, store, seed_session, logged_in_session, settings):
        session_id = seed_session(logged_in_session)

        response = client.get("/auth/logout")

        assert response.status_code == 302
        assert response.headers["location"] == PROVIDER_LOGOUT_URL
        assert store.peek(session_id) is None
        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{settings.SESSION_COOKIE_NAME}=")
        assert "Max-Age=0" in set_cookie

    def test_logout_is_idempotent(self, client):
        first = client.get("/auth/logout")
        second = client.get("/auth/logout")

        assert first.status_code == second.status_code == 302
        assert first.headers["location"] == second.headers["location"]

    def test_management_after_logout_is_unauthorized(self, client, seed_session, logged_in_session):
        seed_session(logged_in_session)
        client.get("/auth/logout")

        response = client.get("/management/userinfo")

        assert response.status_code == 401


# ============================================================================
# /management/*
# ============================================================================

class TestManagementGate:
    @pytest.mark.parametrize("path", ["/management/userinfo", "/management/refresh"])
    def test_rejects_without_token_before_provider_call(self, client, provider_client, path):
        response = client.get(path)

        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"
        assert response.headers["www-authenticate"] == "Bearer"
        provider_client.userinfo.assert_not_awaited()
        provider_client.refresh.assert_not_awaited()

    @pytest.mark.parametrize("header", ["bearer abc123", "Bearer", "Basic abc123", "Token abc123"])
    def test_rejects_malformed_authorization_header(self, client, provider_client, header):
        response = client.get("/management/userinfo", headers={"Authorization": header})

        assert response.status_code == 401
        provider_client.userinfo.assert_not_awaited()

    def test_bearer_token_used_for_request_only(self, client, store, session_id, provider_client):
        response = client.get("/management/userinfo", headers={"Authorization": "Bearer abc123"})

        assert response.status_code == 200
        assert response.json()["sub"] == "user-42"
        provider_client.userinfo.assert_awaited_once_with("abc123")
        assert store.peek(session_id) is None

    def test_session_token_wins_over_header(self, client, seed_session, logged_in_session, provider_client):
        seed_session(logged_in_session)

        client.get("/management/userinfo", headers={"Authorization": "Bearer abc123"})

        provider_client.userinfo.assert_awaited_once_with("tok1")


class TestUserinfo:
    def test_returns_live_claims(self, client, seed_session, logged_in_session, provider_client):
        seed_session(logged_in_session)
        provider_client.userinfo = AsyncMock(return_value=ProviderResult.success(
            {"sub": "user-42", "email": "changed@example.com"}
        ))

        response = client.get("/management/userinfo")

        assert response.status_code == 200
        assert response.json() == {"sub": "user-42", "email": "changed@example.com"}

    def test_provider_failure_is_500(self, client, seed_session, logged_in_session, provider_client):
        seed_session(logged_in_session)
        provider_client.userinfo = AsyncMock(return_value=ProviderResult.failure(
            ProviderErrorKind.PROVIDER_ERROR, "invalid_token", status_code=401
        ))

        response = client.get("/management/userinfo")

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to fetch user info"


class TestRefresh:
    def test_refresh_replaces_tokens(self, client, store, seed_session, logged_in_session, provider_client):
        session_id = seed_session(logged_in_session)

        response = client.get("/management/refresh")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Tokens refreshed successfully"
        assert body["tokens"]["access_token"] == "tok2"
        assert body["tokens"]["refresh_token"] == "rt2"
        assert "id_token" not in body["tokens"]
        assert body["user"]["sub"] == "user-42"
        provider_client.refresh.assert_awaited_once_with("rt1")
        assert store.peek(session_id).tokens == TokenSet(access_token="tok2", refresh_token="rt2")

    def test_bearer_only_has_no_refresh_token(self, client, provider_client):
        response = client.get("/management/refresh", headers={"Authorization": "Bearer abc123"})

        assert response.status_code == 400
        assert response.json()["detail"] == "No refresh token in session"
        provider_client.refresh.assert_not_awaited()

    def test_provider_rejection_is_401(self, client, store, seed_session, logged_in_session, provider_client):
        session_id = seed_session(logged_in_session)
        provider_client.refresh = AsyncMock(return_value=ProviderResult.failure(
            ProviderErrorKind.PROVIDER_ERROR, "Refresh Token has expired", status_code=400
        ))

        response = client.get("/management/refresh")

        assert response.status_code == 401
        assert response.json()["detail"] == "Failed to refresh token"
        assert store.peek(session_id).tokens.access_token == "tok1"


# ============================================================================
# Application surface
# ============================================================================

class TestApplication:
    def test_not_ready_before_discovery(self, settings, store):
        app = create_app(settings=settings, store=store)
        client = TestClient(app, follow_redirects=False)

        assert client.get("/health").json()["ready"] is False
        assert client.get("/auth/login").status_code == 503
        assert client.get("/management/userinfo").status_code == 503

    def test_health_reports_ready(self, client):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["ready"] is True

    def test_root_reports_login_status(self, client, seed_session, logged_in_session):
        assert client.get("/").json()["authenticated"] is False

        seed_session(logged_in_session)

        assert client.get("/").json()["authenticated"] is True

    def test_invalid_cookie_starts_new_session(self, app, settings):
        client = TestClient(app, cookies={settings.SESSION_COOKIE_NAME: "forged-cookie-value"})

        response = client.get("/")

        assert response.json()["authenticated"] is False
        new_cookie = response.cookies.get(settings.SESSION_COOKIE_NAME)
        assert decode_session_cookie(new_cookie, settings.SESSION_SECRET) is not None

    def test_unhandled_error_returns_json_500(self, app, provider_client):
        provider_client.userinfo = AsyncMock(side_effect=RuntimeError("boom"))
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/management/userinfo", headers={"Authorization": "Bearer abc123"})

        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"
        assert response.json()["detail"] is None

    def test_access_log_reports_response_size(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="oidc_gateway.access"):
            response = client.get("/health")

        records = [r for r in caplog.records if r.name == "oidc_gateway.access"]
        assert len(records) == 1
        assert records[0].status_code == 200
        assert records[0].bytes == len(response.content)
        assert records[0].path == "/health"
