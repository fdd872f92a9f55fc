"""
Management Routes - Token Refresh and Userinfo
==============================================

Protected endpoints used by the browser app or API clients once a login
has completed.

Security Model:
---------------
1. The access token comes from the server-side session
2. If the session has none, an `Authorization: Bearer <token>` header is
   accepted for the current request only
3. With neither, the request is rejected with 401 before any provider call
4. The provider is the only judge of whether a token is valid

Endpoints:
----------
- GET /management/refresh: Exchange the refresh token for a new token set
- GET /management/userinfo: Live userinfo claims for the current token
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from oidc_gateway.auth.bearer import get_auth_flow, require_access_token
from oidc_gateway.auth.flow import AuthFlow
from oidc_gateway.models import RefreshResponse, Session
from oidc_gateway.sessions.middleware import get_session_id

logger = logging.getLogger(__name__)

management_router = APIRouter(
    prefix="/management",
    tags=["management"],
)


@management_router.get("/refresh", response_model=RefreshResponse, response_model_exclude_none=True)
async def refresh(
    session_id: str = Depends(get_session_id),
    session: Session = Depends(require_access_token),
    auth_flow: AuthFlow = Depends(get_auth_flow),
) -> RefreshResponse:
    """
    Refresh the session's tokens.

    Returns:
        New token set and freshly fetched user info

    Raises:
        HTTPException: 400 without a refresh token, 401 if the provider
                       rejects the refresh or no access token is available
    """
    return await auth_flow.refresh_tokens(session_id, session)


@management_router.get("/userinfo")
async def userinfo(
    session: Session = Depends(require_access_token),
    auth_flow: AuthFlow = Depends(get_auth_flow),
) -> Dict[str, Any]:
    """
    Fetch the current user's claims from the provider.

    Raises:
        HTTPException: 401 with no access token, 500 if the provider call fails
    """
    return await auth_flow.fetch_userinfo(session)
