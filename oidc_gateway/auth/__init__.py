"""
Authentication Package

This package handles the session-bound OIDC authentication flow for the
gateway.

Key responsibilities:
- OIDC login flow initiation and callback handling
- Token refresh and userinfo retrieval against the identity provider
- Bearer token fallback for stateless API calls
- Session logout

Modules:
- flow: AuthFlow, the orchestration of login, callback, refresh, userinfo and logout
- bearer: Authorization header parsing and the protected-operation gate
- routes: Public authentication endpoints (/auth/login, /auth/callback, /auth/logout)

The authentication flow:
1. Client initiates login via /auth/login (state and nonce stored in session)
2. User authenticates with the identity provider
3. Gateway receives the authorization code via /auth/callback
4. Gateway exchanges the code, fetches userinfo, stores tokens and claims
5. Client calls /management/* with its session cookie or a Bearer token
"""

from .flow import AuthFlow
from .routes import auth_router

__all__ = [
    "AuthFlow",
    "auth_router",
]
