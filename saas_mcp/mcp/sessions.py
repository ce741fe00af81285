"""
Session registry for the legacy HTTP+SSE transport.

A session exists from the moment a client opens GET /sse until that
connection closes. The registry is the single source of truth for routing a
POST /messages?sessionId=<id> to the right open connection. Connections open,
post and close concurrently, so every operation takes the lock; removal is
idempotent.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Union
from uuid import uuid4

from anyio.streams.memory import MemoryObjectSendStream
from mcp.shared.message import SessionMessage

logger = logging.getLogger("saas_mcp.mcp.sessions")


def new_session_id() -> str:
    return uuid4().hex


@dataclass
class SseSession:
    """One open event-stream connection."""

    session_id: str
    # Inbound side of the session's protocol engine
    writer: MemoryObjectSendStream[Union[SessionMessage, Exception]]

    async def deliver(self, message: Union[SessionMessage, Exception]) -> None:
        await self.writer.send(message)

    async def close(self) -> None:
        await self.writer.aclose()


class SessionRegistry:
    """Lock-protected session_id -> SseSession map, owned by the transport."""

    def __init__(self) -> None:
        self._sessions: dict[str, SseSession] = {}
        self._lock = threading.Lock()

    def register(self, session: SseSession) -> None:
        with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Session already registered: {session.session_id}")
            self._sessions[session.session_id] = session
            active = len(self._sessions)
        logger.debug("Registered SSE session %s (%d active)", session.session_id, active)

    def get(self, session_id: Optional[str]) -> Optional[SseSession]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[SseSession]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
