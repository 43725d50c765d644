"""Unified event model for callbridge.

Both wire protocols are translated into these events: the telephony
serializer turns Media Streams frames into ``StreamStarted`` /
``AudioFrame`` / ``Mark`` / ``StreamStopped``, and the realtime serializer
turns speech-service messages into the response/transcript/speech events.
The media bridge only ever reasons about these canonical types.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    # Telephony side
    STREAM_STARTED = "stream_started"
    AUDIO_FRAME = "audio_frame"
    STREAM_STOPPED = "stream_stopped"
    CLEAR_AUDIO = "clear_audio"
    MARK = "mark"
    # Speech service side
    SESSION_READY = "session_ready"
    RESPONSE_STARTED = "response_started"
    OUTPUT_ITEM_ADDED = "output_item_added"
    SPEECH_STARTED = "speech_started"
    SPEECH_STOPPED = "speech_stopped"
    AUDIO_DELTA = "audio_delta"
    TRANSCRIPT_DELTA = "transcript_delta"
    TRANSCRIPTION_COMPLETED = "transcription_completed"
    RESPONSE_DONE = "response_done"
    ADAPTER_CLOSED = "adapter_closed"
    # Either side
    ERROR = "error"


class Event(BaseModel):
    """Base event that all callbridge events inherit from."""

    event_type: EventType
    timestamp: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Telephony events
# ---------------------------------------------------------------------------


class StreamStarted(Event):
    """The media stream for a call is up.

    ``call_id`` is the out-of-band call identifier (used to claim the
    operator prompt); ``prompt`` is only set when the prompt itself was
    passed as a stream parameter.
    """

    event_type: EventType = EventType.STREAM_STARTED
    stream_id: str = ""
    call_id: str | None = None
    prompt: str | None = None
    custom_parameters: dict[str, Any] = Field(default_factory=dict)
    media_format: dict[str, Any] = Field(default_factory=dict)


class AudioFrame(Event):
    """A base64 audio payload, passed through without decoding."""

    event_type: EventType = EventType.AUDIO_FRAME
    stream_id: str = ""
    payload: str = ""
    # Milliseconds since the stream started (inbound frames only)
    media_timestamp: int | None = None


class StreamStopped(Event):
    event_type: EventType = EventType.STREAM_STOPPED
    stream_id: str = ""


class ClearAudio(Event):
    """Control event: instruct the telephony side to drop queued playback."""

    event_type: EventType = EventType.CLEAR_AUDIO
    stream_id: str = ""


class Mark(Event):
    """Named playback checkpoint.

    Sent after each outbound audio chunk; the telephony platform echoes it
    back once everything before it has been played to the caller.
    """

    event_type: EventType = EventType.MARK
    stream_id: str = ""
    name: str = ""


# ---------------------------------------------------------------------------
# Speech service events
# ---------------------------------------------------------------------------


class SessionReady(Event):
    """Socket open and session configuration sent."""

    event_type: EventType = EventType.SESSION_READY
    reconnected: bool = False


class ResponseStarted(Event):
    event_type: EventType = EventType.RESPONSE_STARTED
    response_id: str = ""


class OutputItemAdded(Event):
    event_type: EventType = EventType.OUTPUT_ITEM_ADDED
    response_id: str = ""
    item_id: str = ""


class SpeechStarted(Event):
    """Server-side VAD heard the caller start talking."""

    event_type: EventType = EventType.SPEECH_STARTED
    audio_start_ms: int = 0
    item_id: str = ""


class SpeechStopped(Event):
    event_type: EventType = EventType.SPEECH_STOPPED
    audio_end_ms: int = 0
    item_id: str = ""


class AudioDelta(Event):
    event_type: EventType = EventType.AUDIO_DELTA
    response_id: str = ""
    item_id: str = ""
    delta: str = ""


class TranscriptDelta(Event):
    """A fragment of the assistant's spoken text."""

    event_type: EventType = EventType.TRANSCRIPT_DELTA
    response_id: str = ""
    item_id: str = ""
    delta: str = ""


class TranscriptionCompleted(Event):
    """A finished transcription of one caller utterance."""

    event_type: EventType = EventType.TRANSCRIPTION_COMPLETED
    item_id: str = ""
    transcript: str = ""


class ResponseDone(Event):
    event_type: EventType = EventType.RESPONSE_DONE
    response_id: str = ""
    status: str = ""


class AdapterClosed(Event):
    """The speech service socket is gone for good.

    ``fatal`` is set when the close was abnormal and the retry budget ran out.
    """

    event_type: EventType = EventType.ADAPTER_CLOSED
    code: int | None = None
    reason: str = ""
    fatal: bool = False


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorEvent(Event):
    """An error reported in-band by the remote side."""

    event_type: EventType = EventType.ERROR
    code: str = ""
    message: str = ""
    error_type: str = ""


AnyEvent = (
    StreamStarted
    | AudioFrame
    | StreamStopped
    | ClearAudio
    | Mark
    | SessionReady
    | ResponseStarted
    | OutputItemAdded
    | SpeechStarted
    | SpeechStopped
    | AudioDelta
    | TranscriptDelta
    | TranscriptionCompleted
    | ResponseDone
    | AdapterClosed
    | ErrorEvent
)

EVENT_TYPE_MAP: dict[EventType, type[Event]] = {
    EventType.STREAM_STARTED: StreamStarted,
    EventType.AUDIO_FRAME: AudioFrame,
    EventType.STREAM_STOPPED: StreamStopped,
    EventType.CLEAR_AUDIO: ClearAudio,
    EventType.MARK: Mark,
    EventType.SESSION_READY: SessionReady,
    EventType.RESPONSE_STARTED: ResponseStarted,
    EventType.OUTPUT_ITEM_ADDED: OutputItemAdded,
    EventType.SPEECH_STARTED: SpeechStarted,
    EventType.SPEECH_STOPPED: SpeechStopped,
    EventType.AUDIO_DELTA: AudioDelta,
    EventType.TRANSCRIPT_DELTA: TranscriptDelta,
    EventType.TRANSCRIPTION_COMPLETED: TranscriptionCompleted,
    EventType.RESPONSE_DONE: ResponseDone,
    EventType.ADAPTER_CLOSED: AdapterClosed,
    EventType.ERROR: ErrorEvent,
}
