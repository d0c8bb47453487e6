"""
Registry of live relay sessions.

Sessions share no state with each other; this registry only tracks which
ones are alive so the status route can count them and shutdown can close
them.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from src.realtime_relay.session import RelaySession
from utils.ml_logging import get_logger

logger = get_logger(__name__)


class ThreadSafeSessionManager:
    """
    Tracks active relay sessions behind an asyncio.Lock.
    """

    def __init__(self):
        self._sessions: Dict[str, RelaySession] = {}
        self._lock = asyncio.Lock()

    async def add_session(self, session: RelaySession) -> None:
        """Register a session that has reached OPEN."""
        async with self._lock:
            self._sessions[session.session_id] = session
            logger.info(f"🔄 Added relay session {session.session_id}. Total sessions: {len(self._sessions)}")

    async def remove_session(self, session_id: str) -> bool:
        """Forget a session. Returns True if it was registered."""
        async with self._lock:
            if session_id in self._sessions:
                del self._sessions[session_id]
                logger.info(f"🗑️ Removed relay session {session_id}. Remaining sessions: {len(self._sessions)}")
                return True
            return False

    async def get_session(self, session_id: str) -> Optional[RelaySession]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def get_session_count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def close_all(self) -> int:
        """Close every registered session; returns how many were closed."""
        async with self._lock:
            sessions: List[RelaySession] = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
        if sessions:
            logger.info(f"Closed {len(sessions)} relay session(s) on shutdown")
        return len(sessions)

    async def cleanup_stale_sessions(self, max_age_hours: int = 24) -> int:
        """Close and drop sessions older than ``max_age_hours``."""
        cutoff_time = datetime.now() - timedelta(hours=max_age_hours)

        async with self._lock:
            stale = [s for s in self._sessions.values() if s.created_at < cutoff_time]
            for session in stale:
                del self._sessions[session.session_id]

        for session in stale:
            await session.close()
        if stale:
            logger.info(f"🧹 Cleaned up {len(stale)} stale sessions.")
        return len(stale)
