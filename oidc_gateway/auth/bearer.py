"""
Bearer token fallback.

Protected operations normally use the access token stored in the session.
When the session has none, a client may present one in a standard
`Authorization: Bearer <token>` header instead. The token is used for the
current request only and is not validated here: the provider decides
whether it is good when the operation uses it.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from oidc_gateway.auth.flow import AuthFlow
from oidc_gateway.models import Session, TokenSet
from oidc_gateway.sessions.middleware import get_session_id

logger = logging.getLogger(__name__)

BEARER_SCHEME = "Bearer"


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Extract the token from an Authorization header value.

    The scheme match is case-sensitive and the value is split on single
    spaces, so "Bearer abc" yields "abc" while "bearer abc" yields nothing.

    Returns:
        The token, or None if the header is absent or malformed
    """
    parts = (authorization or "").split(" ")
    if len(parts) >= 2 and parts[0] == BEARER_SCHEME and parts[1]:
        logger.debug("Extracted Bearer token from header.")
        return parts[1]

    logger.debug("Bearer token not found or malformed in the header.")
    return None


def get_auth_flow(request: Request) -> AuthFlow:
    """
    Dependency returning the auth flow from app state.

    Raises:
        HTTPException: 503 until provider discovery has completed
    """
    auth_flow = getattr(request.app.state, "auth_flow", None)
    if auth_flow is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Identity provider not ready",
        )
    return auth_flow


async def require_access_token(
    request: Request,
    session_id: str = Depends(get_session_id),
    auth_flow: AuthFlow = Depends(get_auth_flow),
) -> Session:
    """
    Gate for protected operations.

    Returns the request's session view: the stored session, or, if it holds
    no access token, a copy carrying the bearer token from the header.

    Raises:
        HTTPException: 401 when neither the session nor the header has a token
    """
    session = await auth_flow.load_session(session_id)
    if session.access_token:
        return session

    logger.warning("No access token found in session. Attempting to extract token from Bearer header.")
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        logger.warning("Access token not provided in Bearer header either.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return session.model_copy(update={"tokens": TokenSet(access_token=token)})
