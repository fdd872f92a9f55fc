"""
Shared fixtures for the gateway tests.

The provider client is replaced by a Mock of OIDCClient whose async operations
return ProviderResult values, so route and flow tests never touch the
network.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient

from oidc_gateway.auth.flow import AuthFlow
from oidc_gateway.config import Settings
from oidc_gateway.main import create_app
from oidc_gateway.models import Session, TokenSet
from oidc_gateway.oidc.client import OIDCClient, ProviderMetadata, ProviderResult
from oidc_gateway.sessions.cookie import decode_session_cookie
from oidc_gateway.sessions.store import InMemorySessionStore

TEST_SESSION_SECRET = "test-session-secret-1234567890123456"
AUTHORIZATION_URL = "https://idp.example.com/oauth2/authorize?client_id=test-client-id"
PROVIDER_LOGOUT_URL = "https://idp.example.com/logout?client_id=test-client-id"

USER_CLAIMS = {
    "sub": "user-42",
    "email": "user@example.com",
    "email_verified": True,
    "username": "user42",
}

DISCOVERY_DOCUMENT = {
    "issuer": "https://idp.example.com/pool",
    "authorization_endpoint": "https://idp.example.com/oauth2/authorize",
    "token_endpoint": "https://idp.example.com/oauth2/token",
    "userinfo_endpoint": "https://idp.example.com/oauth2/userInfo",
    "jwks_uri": "https://idp.example.com/pool/.well-known/jwks.json",
}


def make_response(status_code: int = 200, json_data=None):
    """Mock httpx response; json() raises when no body is given."""
    response = Mock(spec=httpx.Response)
    response.status_code = status_code
    if json_data is None:
        response.json.side_effect = ValueError("No JSON body")
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def settings():
    """Settings for tests, isolated from any local .env file"""
    return Settings(
        _env_file=None,
        OIDC_ISSUER_URL="https://idp.example.com/pool",
        OIDC_CLIENT_ID="test-client-id",
        OIDC_CLIENT_SECRET="test-client-secret",
        APP_ADDRESS="http://testserver",
        SESSION_SECRET=TEST_SESSION_SECRET,
    )


@pytest.fixture
def provider_metadata():
    return ProviderMetadata.from_document(DISCOVERY_DOCUMENT)


@pytest.fixture
def provider_client():
    """Identity provider client with successful defaults"""
    client = Mock(spec=OIDCClient)
    client.authorization_url.return_value = AUTHORIZATION_URL
    client.callback_params.side_effect = OIDCClient.callback_params
    client.exchange_code = AsyncMock(return_value=ProviderResult.success(
        TokenSet(access_token="tok1", refresh_token="rt1", id_token="idt1", expires_at=9999999999)
    ))
    client.refresh = AsyncMock(return_value=ProviderResult.success(
        TokenSet(access_token="tok2", refresh_token="rt2")
    ))
    client.userinfo = AsyncMock(return_value=ProviderResult.success(dict(USER_CLAIMS)))
    client.end_session_url.return_value = PROVIDER_LOGOUT_URL
    return client


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def auth_flow(provider_client, store, settings):
    return AuthFlow(client=provider_client, store=store, settings=settings)


@pytest.fixture
def app(settings, store, auth_flow):
    """Gateway app with the auth flow already published (no discovery)"""
    app = create_app(settings=settings, store=store)
    app.state.auth_flow = auth_flow
    return app


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def session_id(client, settings):
    """Session id the test client's cookie is bound to"""
    response = client.get("/health")
    cookie = response.cookies.get(settings.SESSION_COOKIE_NAME)
    return decode_session_cookie(cookie, settings.SESSION_SECRET)


@pytest.fixture
def seed_session(store, session_id):
    """Write a session for the test client's cookie"""
    def _seed(session: Session) -> str:
        asyncio.run(store.set(session_id, session))
        return session_id
    return _seed
