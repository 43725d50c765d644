"""Media session state for callbridge.

Each telephony media stream gets a MediaSession that tracks its state
machine, the speech-service adapter it owns, the conversation transcript and
the playback bookkeeping needed for barge-in. The SessionStore lists live
sessions for the status endpoint.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from callbridge.transcript import Transcript, Turn

if TYPE_CHECKING:
    from callbridge.realtime.adapter import RealtimeAdapter


class SessionState(str, Enum):
    AWAITING_START = "awaiting_start"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseCause(str, Enum):
    TELEPHONY_STOPPED = "telephony_stopped"
    TELEPHONY_CLOSED = "telephony_closed"
    END_OF_CALL = "end_of_call"
    ADAPTER_FAILED = "adapter_failed"
    ADAPTER_CLOSED = "adapter_closed"


@dataclass
class MediaSession:
    """A single call flowing through the bridge.

    The session exclusively owns its adapter; it is created when the
    telephony socket connects and bound to a stream/call on ``start``.
    """

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Identifiers (bound on start)
    stream_id: str = ""
    call_id: str | None = None

    state: SessionState = SessionState.AWAITING_START
    close_cause: CloseCause | None = None

    adapter: RealtimeAdapter | None = None
    instructions: str = ""

    # Conversation
    transcript: Transcript = field(default_factory=Transcript)
    active_response_id: str | None = None
    active_message_id: str | None = None
    is_user_speaking: bool = False

    # Interruption
    interrupted: bool = False
    interrupted_response_id: str | None = None

    # Playback clock (milliseconds, telephony media timestamps)
    latest_media_timestamp: int = 0
    response_start_timestamp: int | None = None
    pending_marks: list[str] = field(default_factory=list)

    # Counters
    frames_in: int = 0
    frames_out: int = 0
    frames_dropped: int = 0

    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None

    @property
    def conversation_log(self) -> list[Turn]:
        return self.transcript.turns

    @property
    def pending_assistant_text(self) -> str:
        return self.transcript.pending

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def duration_ms(self) -> int:
        """Session duration in milliseconds."""
        end = self.ended_at or time.time()
        return int((end - self.started_at) * 1000)

    def reset_playback(self) -> None:
        """Forget everything known about audio queued at the telephony side."""
        self.pending_marks.clear()
        self.response_start_timestamp = None
        self.active_message_id = None

    def summary(self) -> dict:
        return {
            "session_id": self.session_id,
            "stream_id": self.stream_id,
            "call_id": self.call_id,
            "state": self.state.value,
            "turns": len(self.conversation_log),
            "duration_ms": self.duration_ms,
        }


class SessionStore:
    """Live sessions keyed by session_id."""

    def __init__(self) -> None:
        self._sessions: dict[str, MediaSession] = {}

    def create(self, **kwargs) -> MediaSession:
        session = MediaSession(**kwargs)
        self._sessions[session.session_id] = session
        logger.info(f"Session created: {session.session_id}")
        return session

    def remove(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session:
            logger.info(
                f"Session removed: {session.session_id} "
                f"(duration: {session.duration_ms}ms)"
            )

    @property
    def active_count(self) -> int:
        """Number of sessions not yet closed."""
        return sum(1 for s in self._sessions.values() if not s.is_closed)

    @property
    def all_sessions(self) -> list[MediaSession]:
        return list(self._sessions.values())
