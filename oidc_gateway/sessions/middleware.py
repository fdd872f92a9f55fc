"""
Session cookie middleware and dependency.

The middleware only resolves *which* session a request belongs to. Routes
receive the id through `get_session_id` and hand it to the auth flow, which
loads and saves the session through the store.
"""

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from oidc_gateway.config import Settings
from oidc_gateway.sessions.cookie import (
    decode_session_cookie,
    encode_session_cookie,
    new_session_id,
)

logger = logging.getLogger(__name__)


class SessionCookieMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, settings: Settings) -> None:
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        cookie = request.cookies.get(self.settings.SESSION_COOKIE_NAME)
        session_id = decode_session_cookie(cookie, self.settings.SESSION_SECRET)
        if session_id is None:
            session_id = new_session_id()
            logger.debug("Issued new session id")

        request.state.session_id = session_id
        request.state.session_destroyed = False

        response = await call_next(request)

        if getattr(request.state, "session_destroyed", False):
            response.delete_cookie(
                self.settings.SESSION_COOKIE_NAME,
                httponly=True,
                secure=self.settings.SESSION_COOKIE_SECURE,
                samesite="lax",
            )
            return response

        response.set_cookie(
            self.settings.SESSION_COOKIE_NAME,
            encode_session_cookie(
                session_id,
                self.settings.SESSION_SECRET,
                self.settings.SESSION_MAX_AGE_SECONDS,
            ),
            max_age=self.settings.SESSION_MAX_AGE_SECONDS,
            httponly=True,
            secure=self.settings.SESSION_COOKIE_SECURE,
            samesite="lax",
        )
        return response


def get_session_id(request: Request) -> str:
    """FastAPI dependency returning the session id resolved by the middleware."""
    return request.state.session_id
