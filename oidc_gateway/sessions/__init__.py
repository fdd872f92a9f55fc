"""
Session Package

Server-side sessions for the gateway. The browser cookie only carries a
signed session id; nonce, state, tokens and user claims live in the store.

Modules:
- store: SessionStore interface and the in-memory implementation
- cookie: signing and verification of the session id cookie
- middleware: request-to-session resolution and the get_session_id dependency
"""

from .middleware import SessionCookieMiddleware, get_session_id
from .store import InMemorySessionStore, SessionStore

__all__ = [
    "InMemorySessionStore",
    "SessionCookieMiddleware",
    "SessionStore",
    "get_session_id",
]
