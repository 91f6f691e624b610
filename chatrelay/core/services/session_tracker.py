"""
Per-room session tracking: one automatic acknowledgement per session and
closure after a period of inactivity.

Every inbound message re-arms the room's inactivity check for the full timeout and
cancels the previous one. The check re-reads the last activity time before acting,
so a superseded check that still runs does nothing.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List, Optional

from chatrelay.core.realtime.scheduler import TaskScheduler
from chatrelay.core.services.sink import MessageSink

logger = logging.getLogger(__name__)

INACTIVITY_TIMEOUT_SECONDS = 600.0
AUTO_REPLY_MESSAGE = "Thank you for your message! An admin will respond shortly."
CLOSING_MESSAGE = "This session has been closed due to inactivity. Please start a new chat if needed."


@dataclass
class Session:
    """Activity state of one room."""
    room_id: str
    last_activity: float
    acknowledged: bool = False


class SessionTracker:
    """Tracks room sessions; rooms are independent and locked separately."""

    def __init__(
        self,
        sink: MessageSink,
        scheduler: TaskScheduler,
        inactivity_timeout: float = INACTIVITY_TIMEOUT_SECONDS,
        auto_reply_message: str = AUTO_REPLY_MESSAGE,
        closing_message: str = CLOSING_MESSAGE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._scheduler = scheduler
        self.inactivity_timeout = inactivity_timeout
        self.auto_reply_message = auto_reply_message
        self.closing_message = closing_message
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._checks: Dict[str, asyncio.Task] = {}
        self._closed = False

    def get_session(self, room_id: str) -> Optional[Session]:
        return self._sessions.get(room_id)

    def active_rooms(self) -> List[str]:
        return list(self._sessions.keys())

    def tracked_lock_count(self) -> int:
        """Number of rooms currently holding a lock entry."""
        return len(self._locks)

    @asynccontextmanager
    async def _room_lock(self, room_id: str) -> AsyncIterator[None]:
        """
        Hold the room's lock. The entry is dropped once no task holds or waits
        on it and the room has no session.
        """
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        # counts holders and waiters, so a waiter never ends up on a discarded lock
        self._lock_users[room_id] = self._lock_users.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[room_id] - 1
            if users:
                self._lock_users[room_id] = users
            else:
                del self._lock_users[room_id]
                if room_id not in self._sessions:
                    del self._locks[room_id]

    async def record_activity(self, room_id: str, sender: str, body: str) -> None:
        """Register an inbound message, acknowledge once per session, re-arm the inactivity check."""
        if self._closed:
            logger.debug("Session tracker closed; ignoring activity in room %s", room_id)
            return
        logger.info("Received message from roomId=%s, sender=%s, message=%s", room_id, sender, body)
        async with self._room_lock(room_id):
            now = self._clock()
            session = self._sessions.get(room_id)
            if session is None:
                session = Session(room_id=room_id, last_activity=now)
                self._sessions[room_id] = session
            else:
                session.last_activity = now

            if not session.acknowledged:
                try:
                    await self._sink.send_message(room_id, self.auto_reply_message)
                except Exception as e:
                    logger.error("Failed to send auto-reply to room %s: %s", room_id, e)
                else:
                    session.acknowledged = True
                    logger.info("Sent auto-reply to room %s", room_id)

            if not self._closed:
                self._schedule_check(room_id)

    def _schedule_check(self, room_id: str) -> None:
        previous = self._checks.pop(room_id, None)
        if previous is not None and previous is not asyncio.current_task():
            previous.cancel()
        handle = self._scheduler.call_later(
            self.inactivity_timeout,
            lambda: self._run_check(room_id),
            name=f"inactivity-{room_id}",
        )
        if handle is not None:
            self._checks[room_id] = handle

    async def _run_check(self, room_id: str) -> None:
        try:
            await self.check_inactivity(room_id)
        finally:
            if self._checks.get(room_id) is asyncio.current_task():
                del self._checks[room_id]

    async def check_inactivity(self, room_id: str) -> bool:
        """
        Close the room's session if it has been idle for the full timeout.

        Returns True if the closing message was sent and the session removed.
        """
        async with self._room_lock(room_id):
            session = self._sessions.get(room_id)
            if session is None:
                return False
            elapsed = self._clock() - session.last_activity
            if elapsed < self.inactivity_timeout:
                logger.debug("Room %s active %.0fs ago; keeping session", room_id, elapsed)
                return False
            try:
                await self._sink.send_message(room_id, self.closing_message)
            except Exception as e:
                logger.error("Failed to send session close message to room %s: %s", room_id, e)
                return False
            del self._sessions[room_id]
            logger.info("Closed session for room %s due to inactivity", room_id)
            return True

    async def close(self) -> None:
        """Cancel every pending inactivity check. Later activity is ignored."""
        self._closed = True
        checks = list(self._checks.values())
        self._checks.clear()
        current = asyncio.current_task()
        for task in checks:
            if task is not current:
                task.cancel()
        logger.info("Session tracker stopped (%s pending check(s) cancelled)", len(checks))
