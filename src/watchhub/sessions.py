"""Push channel sessions and fan-out of configuration messages."""

import asyncio
import logging
import threading
import uuid
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class TextSocket(Protocol):
    async def send_text(self, data: str) -> None: ...


class PushSession:
    """
    One connected producer.
    
    Messages go through a queue drained by a single writer task, so writes to
    this session never overlap. ``enqueue`` may be called from any thread.
    """

    def __init__(self, websocket: TextSocket, loop: asyncio.AbstractEventLoop):
        self.session_id = uuid.uuid4().hex
        self._websocket = websocket
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def enqueue(self, message: Optional[str]) -> None:
        """Queue a message for this session; None ends the writer."""
        if self._closed:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        except RuntimeError:
            # Event loop already closed
            self._closed = True

    async def run_writer(self) -> None:
        """Send queued messages in order until closed."""
        while True:
            message = await self._queue.get()
            if message is None:
                return
            try:
                await self._websocket.send_text(message)
            except Exception as e:
                logger.warning("Push session %s write failed: %s", self.session_id, e)
                self._closed = True
                return

    def close(self) -> None:
        self.enqueue(None)
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class SessionBroadcaster:
    """
    Set of open push sessions.
    
    A broadcast only enqueues, so a slow session delays nobody but itself.
    Sessions that connect later get no replay and must fetch the watch list.
    """

    def __init__(self):
        self._sessions: Dict[str, PushSession] = {}
        self._lock = threading.Lock()

    def add_session(self, session: PushSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info("Push session %s opened (%d open)", session.session_id, len(self))

    def remove_session(self, session: PushSession) -> None:
        with self._lock:
            self._sessions.pop(session.session_id, None)
        logger.info("Push session %s closed (%d open)", session.session_id, len(self))

    def broadcast(self, message: str) -> int:
        """
        Queue a message for every open session.
        
        Returns:
            Number of sessions the message was queued for
        """
        with self._lock:
            sessions: List[PushSession] = list(self._sessions.values())
        for session in sessions:
            session.enqueue(message)
        return len(sessions)

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
