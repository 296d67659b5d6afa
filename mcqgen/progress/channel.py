"""
In-memory progress channel.

One writer (the pipeline run) and any number of readers per session.
Events for a session reach every subscriber in publish order. publish()
never blocks: each subscriber has a bounded buffer and a slow subscriber
loses its oldest buffered events instead of stalling the pipeline.

A session ends with its first `complete` or `error` stage event. Later
publishes for that session are rejected. Subscribers that arrive late get
the session history replayed first, so subscribing after generate() has
started (or finished) still yields the full sequence.

Sessions do not live forever. Finished sessions beyond the retention limit
are evicted oldest-first, and so are open sessions that have had no event
and no subscriber for `idle_timeout` seconds. Subscribing to an evicted
session ends at once, and a subscriber that sees no event for
`idle_timeout` seconds stops waiting.
"""
from __future__ import annotations

import asyncio
from collections import OrderedDict, deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from time import monotonic
from typing import TYPE_CHECKING

from loguru import logger

from mcqgen.models import ProgressEvent, ProgressStage, ProgressStatus

if TYPE_CHECKING:
    from config import Settings

# Working stages counted by percent_complete()
WORK_STAGES: tuple[ProgressStage, ...] = (
    ProgressStage.INIT,
    ProgressStage.CONTEXT,
    ProgressStage.DRAFT,
    ProgressStage.VALIDATE,
    ProgressStage.SCORE,
    ProgressStage.REFINE,
    ProgressStage.SAVE,
)

HISTORY_LIMIT = 512
EVICTED_ID_LIMIT = 4096
DEFAULT_IDLE_TIMEOUT = 900.0


@dataclass
class _Session:
    history: deque[ProgressEvent] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))
    subscribers: list[asyncio.Queue[ProgressEvent]] = field(default_factory=list)
    closed: bool = False
    dropped: int = 0
    last_activity: float = 0.0


class ProgressChannel:
    """Per-session publish/subscribe for ProgressEvent."""

    def __init__(
        self,
        buffer_size: int = 64,
        retained_sessions: int = 256,
        idle_timeout: float | None = DEFAULT_IDLE_TIMEOUT,
    ):
        self.buffer_size = buffer_size
        self.retained_sessions = retained_sessions
        self.idle_timeout = idle_timeout
        self._sessions: OrderedDict[str, _Session] = OrderedDict()
        # Ids of evicted sessions, so late subscribers end instead of waiting
        self._evicted: OrderedDict[str, None] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: Settings) -> ProgressChannel:
        return cls(
            buffer_size=settings.progress_buffer_size,
            retained_sessions=settings.progress_retained_sessions,
            idle_timeout=settings.progress_idle_timeout_seconds,
        )

    def publish(self, session_id: str, event: ProgressEvent) -> bool:
        """
        Deliver an event to every subscriber of the session.

        Returns:
            False if the session was already closed and the event was dropped
        """
        if event.session_id != session_id:
            raise ValueError(
                f"Event for session {event.session_id} published on session {session_id}"
            )
        self._evicted.pop(session_id, None)
        session = self._get_or_create(session_id)
        if session.closed:
            logger.warning(
                f"Dropping {event.stage.value}/{event.status.value} event for closed session {session_id}"
            )
            return False

        session.last_activity = monotonic()
        session.history.append(event)
        for queue in session.subscribers:
            self._offer(session, queue, event)

        if event.is_terminal:
            session.closed = True
            self._prune()
        return True

    async def subscribe(self, session_id: str) -> AsyncIterator[ProgressEvent]:
        """
        Yield the session's events in order, ending after the terminal event.

        The stream ends early, without a terminal event, if the session was
        evicted or no event arrives within idle_timeout seconds.
        """
        if session_id in self._evicted:
            logger.warning(f"Progress session {session_id} was evicted; nothing to replay")
            return
        session = self._get_or_create(session_id)
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=self.buffer_size)
        for event in session.history:
            self._offer(session, queue, event)
        if not session.closed:
            session.subscribers.append(queue)

        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), self.idle_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"No progress on session {session_id} for {self.idle_timeout}s; ending subscription"
                    )
                    return
                yield event
                if event.is_terminal:
                    return
        finally:
            if queue in session.subscribers:
                session.subscribers.remove(queue)
            # Drop sessions that only a subscriber ever touched
            if not (session.history or session.subscribers or session.closed):
                if self._sessions.get(session_id) is session:
                    del self._sessions[session_id]

    def history(self, session_id: str) -> list[ProgressEvent]:
        session = self._sessions.get(session_id)
        return list(session.history) if session else []

    def is_closed(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return bool(session and session.closed)

    def dropped(self, session_id: str) -> int:
        """Events discarded from slow subscribers' buffers in this session."""
        session = self._sessions.get(session_id)
        return session.dropped if session else 0

    def percent_complete(self, session_id: str) -> int:
        events = self.history(session_id)
        if any(e.stage == ProgressStage.COMPLETE for e in events):
            return 100
        done = {
            e.stage
            for e in events
            if e.stage in WORK_STAGES and e.status in (ProgressStatus.COMPLETE, ProgressStatus.SKIPPED)
        }
        return int(100 * len(done) / len(WORK_STAGES))

    def _get_or_create(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = _Session(last_activity=monotonic())
            self._sessions[session_id] = session
        return session

    def _offer(self, session: _Session, queue: asyncio.Queue[ProgressEvent], event: ProgressEvent):
        if queue.full():
            queue.get_nowait()
            session.dropped += 1
        queue.put_nowait(event)

    def _prune(self):
        closed = [sid for sid, session in self._sessions.items() if session.closed]
        expired = closed[: max(0, len(closed) - self.retained_sessions)]
        if self.idle_timeout is not None:
            cutoff = monotonic() - self.idle_timeout
            expired += [
                sid
                for sid, session in self._sessions.items()
                if not session.closed and not session.subscribers and session.last_activity < cutoff
            ]
        for session_id in expired:
            del self._sessions[session_id]
            self._evicted[session_id] = None
        while len(self._evicted) > EVICTED_ID_LIMIT:
            self._evicted.popitem(last=False)
        if expired:
            logger.debug(f"Evicted {len(expired)} progress sessions")
