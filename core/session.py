"""
Session Management for Use Cases.

Provides server-held state for multi-step flows (such as the return
intake workflow). Each session:
- Is identified by an opaque session id handed to the client
- Holds the flow's local state until the final submission
- Expires after a period of inactivity
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """
    Base session context.

    Each use case should extend this with use-case-specific fields.
    """
    session_id: str = ""

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def _touch(self):
        """Update the timestamp."""
        self.updated_at = datetime.now(timezone.utc)

    def is_expired(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now - self.updated_at > ttl

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "sessionId": self.session_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class SessionManager:
    """
    Manages session contexts by id.

    This is a simple in-memory manager; sessions do not survive a restart.
    """

    def __init__(
        self,
        context_factory: Callable[[], SessionContext] = SessionContext,
        ttl_minutes: int = 60,
    ):
        """
        Initialize the session manager.

        Args:
            context_factory: Builds a fresh context (a SessionContext subclass)
            ttl_minutes: Idle minutes before a session is discarded
        """
        self._sessions: Dict[str, SessionContext] = {}
        self._context_factory = context_factory
        self._ttl = timedelta(minutes=ttl_minutes)
        self._lock = threading.Lock()

    def create(self) -> SessionContext:
        """Create and register a new session."""
        session = self._context_factory()
        session.session_id = uuid.uuid4().hex
        with self._lock:
            self._purge_expired()
            self._sessions[session.session_id] = session
        logger.debug(f"Created new session {session.session_id}")
        return session

    def get(self, session_id: str) -> Optional[SessionContext]:
        """
        Get an existing, unexpired session.

        Args:
            session_id: The session id

        Returns:
            The session context if it exists, None otherwise
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.is_expired(self._ttl):
                del self._sessions[session_id]
                logger.debug(f"Session {session_id} expired")
                return None
            return session

    def clear(self, session_id: str) -> bool:
        """
        Clear a session.

        Returns:
            True if a session was removed
        """
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.debug(f"Cleared session {session_id}")
        return removed

    def clear_all(self):
        """Clear all sessions."""
        with self._lock:
            self._sessions.clear()
        logger.debug("Cleared all sessions")

    def __len__(self) -> int:
        return len(self._sessions)

    def _purge_expired(self):
        now = datetime.now(timezone.utc)
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(self._ttl, now)]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug(f"Purged {len(expired)} expired sessions")
