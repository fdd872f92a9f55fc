"""
Session Cookie Signing
======================

The browser only ever holds a signed session id. The cookie value is an
HS256 JWT with the claims `sid`, `iat` and `exp`; tokens and claims stay in
the server-side session store.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

logger = logging.getLogger(__name__)

SESSION_COOKIE_ALGORITHM = "HS256"


class SessionCookieError(Exception):
    """Raised when a session cookie cannot be issued."""
    pass


def new_session_id() -> str:
    """Random, URL-safe session identifier."""
    return secrets.token_urlsafe(32)


def encode_session_cookie(session_id: str, secret: str, max_age_seconds: int) -> str:
    """
    Sign a session id for the cookie.

    Args:
        session_id: Server-side session identifier
        secret: SESSION_SECRET
        max_age_seconds: Lifetime of the signed value

    Returns:
        Encoded JWT string

    Raises:
        SessionCookieError: If no id or secret is given
    """
    if not session_id:
        raise SessionCookieError("Cannot sign an empty session id")
    if not secret:
        raise SessionCookieError("SESSION_SECRET not configured")

    now = datetime.now(timezone.utc)
    payload = {
        "sid": session_id,
        "iat": now,
        "exp": now + timedelta(seconds=max_age_seconds),
    }
    return jwt.encode(payload, secret, algorithm=SESSION_COOKIE_ALGORITHM)


def decode_session_cookie(token: Optional[str], secret: str) -> Optional[str]:
    """
    Verify a session cookie and return the session id it carries.

    A missing, expired or tampered cookie is not an error for the caller:
    it simply gets no session id back and starts a new session.

    Returns:
        The session id, or None if the cookie is absent or invalid
    """
    if not token:
        return None

    try:
        decoded = jwt.decode(
            token,
            secret,
            algorithms=[SESSION_COOKIE_ALGORITHM],
            options={"require": ["exp", "iat", "sid"]},
        )
    except ExpiredSignatureError:
        logger.info("Session cookie expired, starting a new session")
        return None
    except InvalidTokenError as e:
        logger.warning(f"Rejected invalid session cookie: {e}")
        return None

    session_id = decoded.get("sid")
    if not isinstance(session_id, str) or not session_id:
        logger.warning("Session cookie carried no usable session id")
        return None
    return session_id
