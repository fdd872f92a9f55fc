"""
Server-side session storage.

One entry per browser (or API client) session, keyed by the id carried in
the signed session cookie. Reads and writes are not transactional: two
concurrent requests in the same session can overwrite each other and the
last write wins.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from oidc_gateway.models import Session

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Interface the auth flow uses to load and persist sessions."""

    @abstractmethod
    async def get(self, session_id: str) -> Session:
        """Return the session, or an empty one if the id is unknown or expired."""

    @abstractmethod
    async def set(self, session_id: str, session: Session) -> None:
        """Replace the stored session."""

    @abstractmethod
    async def destroy(self, session_id: str) -> None:
        """Delete the session. Destroying an unknown id is not an error."""


class InMemorySessionStore(SessionStore):
    """
    Dict-backed session store for single-process deployments.

    Entries expire `ttl_seconds` after their last write. Sessions are copied
    on the way in and out so a caller holding a Session cannot change the
    stored entry without calling `set`.
    """

    def __init__(self, ttl_seconds: int = 60 * 60 * 4):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, Tuple[Session, float]] = {}

    async def get(self, session_id: str) -> Session:
        entry = self._sessions.get(session_id)
        if entry is None:
            return Session()

        session, expires_at = entry
        if time.time() >= expires_at:
            logger.debug("Session expired, discarding entry")
            del self._sessions[session_id]
            return Session()

        return session.model_copy(deep=True)

    async def set(self, session_id: str, session: Session) -> None:
        self.purge_expired()
        self._sessions[session_id] = (
            session.model_copy(deep=True),
            time.time() + self.ttl_seconds,
        )

    async def destroy(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of sessions removed
        """
        now = time.time()
        expired = [
            session_id for session_id, (_, expires_at) in self._sessions.items()
            if now >= expires_at
        ]
        for session_id in expired:
            del self._sessions[session_id]

        if expired:
            logger.info("Purged expired sessions", extra={"count": len(expired), "remaining": len(self)})
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)

    def peek(self, session_id: str) -> Optional[Session]:
        """Stored session without expiry handling or copying (diagnostics and tests)."""
        entry = self._sessions.get(session_id)
        return entry[0] if entry else None
