"""
Session-bound OIDC authentication flow.

`AuthFlow` orchestrates login initiation, callback handling, token refresh,
userinfo retrieval and logout. It is built once the provider has been
discovered, so every instance holds a ready `OIDCClient`.

Session rules enforced here:
- nonce and state are generated per login attempt and consumed by the
  next callback, whatever its outcome
- tokens and userInfo are written together in a single store write, and
  only after every provider call of the operation succeeded
- refresh replaces the token set wholesale
"""

import logging
import secrets
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

from oidc_gateway.config import Settings
from oidc_gateway.models import RefreshResponse, Session, TokenSet, User
from oidc_gateway.oidc.client import CallbackChecks, OIDCClient, ProviderError
from oidc_gateway.sessions.store import SessionStore

logger = logging.getLogger(__name__)


def generate_nonce() -> str:
    return secrets.token_urlsafe(32)


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def _log_provider_error(message: str, error: ProviderError) -> None:
    logger.error(
        f"{message}: {error.message}",
        extra={"error_kind": error.kind.value, "status_code": error.status_code},
    )


class AuthFlow:
    def __init__(self, client: OIDCClient, store: SessionStore, settings: Settings):
        self.client = client
        self.store = store
        self.settings = settings

    async def load_session(self, session_id: str) -> Session:
        return await self.store.get(session_id)

    # =========================================================================
    # Login
    # =========================================================================

    async def initiate_login(self, session_id: str) -> str:
        """
        Start a login attempt and return the provider authorization URL.

        Any nonce/state pair left by an earlier, unfinished attempt in the
        same session is overwritten, which silently aborts that attempt.
        """
        logger.info("Initiating login flow.")
        nonce = generate_nonce()
        state = generate_state()

        session = await self.store.get(session_id)
        await self.store.set(
            session_id,
            session.model_copy(update={"nonce": nonce, "state": state}),
        )

        auth_url = self.client.authorization_url(
            scope=self.settings.OIDC_SCOPE,
            state=state,
            nonce=nonce,
        )
        logger.info("Redirecting to authorization endpoint")
        return auth_url

    # =========================================================================
    # Callback
    # =========================================================================

    async def handle_callback(self, session_id: str, query: Mapping[str, str]) -> Optional[Session]:
        """
        Complete a login attempt.

        Returns:
            The updated session on success, None on any failure. Failures are
            only distinguished in the log.
        """
        logger.info("Received callback from authorization server.")
        session = await self.store.get(session_id)
        checks = CallbackChecks(nonce=session.nonce, state=session.state)

        # Consume the pair so a replayed callback cannot reuse it
        session = session.model_copy(update={"nonce": None, "state": None})
        await self.store.set(session_id, session)

        params = self.client.callback_params(query)
        token_result = await self.client.exchange_code(self.settings.redirect_uri, params, checks)
        if not token_result.ok:
            _log_provider_error("Callback error", token_result.error)
            return None

        tokens = token_result.value
        user = await self._fetch_user(tokens.access_token, "Callback error")
        if user is None:
            return None
        logger.info("User info successfully retrieved from userinfo endpoint.")

        session = session.model_copy(update={"tokens": tokens, "user_info": user})
        await self.store.set(session_id, session)
        logger.info("Login completed", extra={"sub": user.sub})
        return session

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh_tokens(self, session_id: str, session: Session) -> RefreshResponse:
        """
        Exchange the session's refresh token for a new token set.

        Args:
            session_id: Session to update on success
            session: The request's view of the session (may carry a bearer
                     access token that is not persisted)

        Raises:
            HTTPException: 400 without a refresh token, 401 if the provider
                           rejects the refresh or the new token's userinfo
        """
        logger.info("Received request to refresh token.")
        refresh_token = session.tokens.refresh_token if session.tokens else None
        if not refresh_token:
            logger.warning("No refresh token found in session.")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No refresh token in session",
            )

        logger.info(
            "Attempting to refresh token with refresh_token",
            extra={"access_token_expired": session.tokens.expired},
        )
        result = await self.client.refresh(refresh_token)
        if not result.ok:
            _log_provider_error("Error refreshing token", result.error)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Failed to refresh token",
            )

        tokens: TokenSet = result.value
        user = await self._fetch_user(tokens.access_token, "Error refreshing token")
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Failed to refresh token",
            )

        stored = await self.store.get(session_id)
        await self.store.set(
            session_id,
            stored.model_copy(update={"tokens": tokens, "user_info": user}),
        )
        logger.info("Token refresh successful.")

        return RefreshResponse(tokens=tokens, user=user)

    # =========================================================================
    # Userinfo
    # =========================================================================

    async def fetch_userinfo(self, session: Session) -> Dict[str, Any]:
        """
        Live userinfo call with the session's (or bearer) access token.

        Raises:
            HTTPException: 500 if the provider call fails
        """
        logger.info("Received request to fetch user info.")
        result = await self.client.userinfo(session.access_token or "")
        if not result.ok:
            _log_provider_error("Error fetching userinfo", result.error)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch user info",
            )

        logger.info("User info successfully retrieved.")
        return result.value

    # =========================================================================
    # Logout
    # =========================================================================

    async def logout(self, session_id: str) -> str:
        """
        Destroy the session and return where to send the browser.

        Safe to call for a session that no longer exists.
        """
        session = await self.store.get(session_id)
        id_token = session.tokens.id_token if session.tokens else None
        await self.store.destroy(session_id)
        logger.info("Session destroyed")

        logout_url = self.client.end_session_url(
            self.settings.post_logout_redirect_uri,
            id_token_hint=id_token,
            logout_url=self.settings.OIDC_LOGOUT_URL,
        )
        return logout_url or self.settings.post_logout_redirect_uri

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _fetch_user(self, access_token: str, context: str) -> Optional[User]:
        result = await self.client.userinfo(access_token)
        if not result.ok:
            _log_provider_error(context, result.error)
            return None

        try:
            return User.model_validate(result.value)
        except ValueError as e:
            logger.error(f"{context}: unusable userinfo claims: {e}")
            return None
