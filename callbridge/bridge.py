"""callbridge - per-call media bridge.

The MediaBridge owns one telephony media socket and the speech-service
session behind it. It runs two loops per call:

1. telephony loop: Twilio frames -> serializer -> adapter (caller audio)
2. realtime loop:  adapter events -> transcript / barge-in -> Twilio

Both loops only mutate the session from the event loop, so no locking is
needed. Closing goes through CLOSING (with a grace delay so the goodbye can
finish playing) to CLOSED, where both sockets are closed exactly once.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from callbridge.config import BridgeConfig
from callbridge.core.events import (
    AdapterClosed,
    AnyEvent,
    AudioDelta,
    AudioFrame,
    ClearAudio,
    ErrorEvent,
    Mark,
    OutputItemAdded,
    ResponseDone,
    ResponseStarted,
    SessionReady,
    SpeechStarted,
    SpeechStopped,
    StreamStarted,
    StreamStopped,
    TranscriptDelta,
    TranscriptionCompleted,
)
from callbridge.errors import AdapterConnectError, MessageParseError
from callbridge.lifecycle import AdapterFactory, CallLifecycle
from callbridge.registry import PromptRegistry
from callbridge.serializers.base import BaseSerializer
from callbridge.serializers.twilio import TwilioSerializer
from callbridge.session import CloseCause, MediaSession, SessionState, SessionStore
from callbridge.transcript import Transcript
from callbridge.transports.base import BaseTransport, TransportClosed

CANCEL_NOT_ACTIVE = "response_cancel_not_active"


class MediaBridge:
    """Bridges one telephony media stream to one speech-service session.

    Usage:
        bridge = MediaBridge(transport, config, registry)
        await bridge.run()  # returns once both sides are closed
    """

    def __init__(
        self,
        telephony: BaseTransport,
        config: BridgeConfig,
        registry: PromptRegistry,
        adapter_factory: AdapterFactory | None = None,
        serializer: BaseSerializer | None = None,
        sessions: SessionStore | None = None,
    ) -> None:
        self.telephony = telephony
        self.config = config
        self.registry = registry
        self.serializer = serializer or TwilioSerializer()
        self.sessions = sessions if sessions is not None else SessionStore()
        self.lifecycle = CallLifecycle(config, registry, adapter_factory)
        self.session = self.sessions.create(
            transcript=Transcript(end_call_marker=config.call.end_call_marker)
        )

        self._realtime_task: asyncio.Task | None = None
        self._grace_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> MediaSession:
        """Serve the telephony socket until the session is closed."""
        session = self.session
        logger.info(f"New media connection: session={session.session_id}")
        try:
            await self._telephony_loop()
        except Exception as e:
            logger.error(f"Bridge error for session {session.session_id}: {e}")
        finally:
            if not session.is_closed:
                if self._grace_task and not self._grace_task.done():
                    self._grace_task.cancel()
                await self._shutdown(CloseCause.TELEPHONY_CLOSED)
            await self._drain()
            self.sessions.remove(session.session_id)
        return session

    async def _telephony_loop(self) -> None:
        while True:
            try:
                raw = await self.telephony.recv()
            except TransportClosed as exc:
                logger.info(f"Telephony socket closed (code={exc.code})")
                return

            try:
                events = await self.serializer.deserialize(raw)
            except MessageParseError as exc:
                logger.warning(f"Dropping malformed telephony frame: {exc.detail}")
                continue

            for event in events:
                await self._on_telephony_event(event)

    async def _realtime_loop(self, started: StreamStarted) -> None:
        try:
            adapter = await self.lifecycle.start(self.session, started)
        except AdapterConnectError as exc:
            logger.error(f"Session {self.session.session_id}: {exc.detail}")
            self._begin_closing(CloseCause.ADAPTER_FAILED)
            return

        try:
            async for event in adapter.events():
                await self._on_realtime_event(event)
        except Exception as e:
            logger.error(f"Realtime loop error for session {self.session.session_id}: {e}")
            self._begin_closing(CloseCause.ADAPTER_FAILED)

    # ------------------------------------------------------------------
    # Telephony -> speech service
    # ------------------------------------------------------------------

    async def _on_telephony_event(self, event: AnyEvent) -> None:
        if isinstance(event, StreamStarted):
            self._on_stream_started(event)
        elif isinstance(event, AudioFrame):
            await self._on_audio_frame(event)
        elif isinstance(event, Mark):
            self._on_mark(event)
        elif isinstance(event, StreamStopped):
            await self._on_stream_stopped()

    def _on_stream_started(self, event: StreamStarted) -> None:
        session = self.session
        if session.state is not SessionState.AWAITING_START:
            logger.warning(f"Ignoring repeated start on session {session.session_id}")
            return
        session.stream_id = event.stream_id
        session.call_id = event.call_id
        session.state = SessionState.ACTIVE
        logger.info(f"Media stream started: stream={event.stream_id} call={event.call_id}")
        self._realtime_task = asyncio.create_task(self._realtime_loop(event))

    async def _on_audio_frame(self, frame: AudioFrame) -> None:
        session = self.session
        session.frames_in += 1
        if frame.media_timestamp is not None:
            session.latest_media_timestamp = frame.media_timestamp

        adapter = session.adapter
        if session.is_closed or adapter is None or not adapter.is_ready:
            session.frames_dropped += 1
            return
        if not await adapter.send_audio(frame.payload):
            session.frames_dropped += 1

    def _on_mark(self, event: Mark) -> None:
        marks = self.session.pending_marks
        if event.name in marks:
            marks.remove(event.name)
        elif marks:
            marks.pop(0)

    async def _on_stream_stopped(self) -> None:
        logger.info(f"Media stream stopped: stream={self.session.stream_id}")
        self._begin_closing(CloseCause.TELEPHONY_STOPPED)
        if self.session.adapter is not None:
            await self.session.adapter.close()

    # ------------------------------------------------------------------
    # Speech service -> telephony
    # ------------------------------------------------------------------

    async def _on_realtime_event(self, event: AnyEvent) -> None:
        session = self.session

        if isinstance(event, AudioDelta):
            await self._on_audio_delta(event)

        elif isinstance(event, TranscriptDelta):
            if self._is_stale(event.response_id):
                return
            if session.transcript.add_assistant_delta(event.delta):
                logger.info(f"End-of-call marker received on session {session.session_id}")
                self._begin_closing(CloseCause.END_OF_CALL)

        elif isinstance(event, TranscriptionCompleted):
            session.transcript.add_user(event.transcript)

        elif isinstance(event, SpeechStarted):
            session.is_user_speaking = True
            if session.active_response_id or session.pending_marks:
                await self._interrupt()

        elif isinstance(event, SpeechStopped):
            session.is_user_speaking = False

        elif isinstance(event, ResponseStarted):
            session.active_response_id = event.response_id or None
            session.interrupted = False
            # Playback offsets are per assistant item; marks of earlier audio stay pending.
            session.response_start_timestamp = None
            session.active_message_id = None

        elif isinstance(event, OutputItemAdded):
            if not self._is_stale(event.response_id):
                session.active_message_id = event.item_id or None

        elif isinstance(event, ResponseDone):
            if event.response_id == session.active_response_id:
                session.active_response_id = None
            if not self._is_stale(event.response_id):
                session.transcript.flush()

        elif isinstance(event, ErrorEvent):
            if event.code == CANCEL_NOT_ACTIVE:
                logger.debug(f"Speech service: {event.message}")
            else:
                logger.error(f"Speech service error [{event.code}]: {event.message}")

        elif isinstance(event, SessionReady):
            if event.reconnected:
                logger.info(f"Session {session.session_id} reconnected to speech service")
                session.transcript.flush()
                session.active_response_id = None
                session.interrupted = False
                session.interrupted_response_id = None
                session.reset_playback()

        elif isinstance(event, AdapterClosed):
            cause = CloseCause.ADAPTER_FAILED if event.fatal else CloseCause.ADAPTER_CLOSED
            self._begin_closing(cause)

    def _is_stale(self, response_id: str) -> bool:
        """True for output of a response the caller talked over."""
        session = self.session
        if session.interrupted:
            return True
        return bool(response_id) and response_id == session.interrupted_response_id

    async def _on_audio_delta(self, event: AudioDelta) -> None:
        session = self.session
        if session.is_closed or self._is_stale(event.response_id):
            return

        if session.response_start_timestamp is None:
            session.response_start_timestamp = session.latest_media_timestamp
        if event.item_id and session.active_message_id is None:
            session.active_message_id = event.item_id

        stream_id = session.stream_id
        if await self._send_telephony(AudioFrame(stream_id=stream_id, payload=event.delta)):
            session.frames_out += 1
            mark = f"audio-{session.frames_out}"
            if await self._send_telephony(Mark(stream_id=stream_id, name=mark)):
                session.pending_marks.append(mark)

    async def _interrupt(self) -> None:
        """Caller barge-in: stop playback and cancel the active response."""
        session = self.session
        adapter = session.adapter
        response_id = session.active_response_id

        session.transcript.flush()
        await self._send_telephony(ClearAudio(stream_id=session.stream_id))

        if adapter is not None:
            if response_id:
                await adapter.cancel_response(response_id)
            if (
                self.config.call.truncate_on_interrupt
                and session.active_message_id
                and session.response_start_timestamp is not None
            ):
                played_ms = session.latest_media_timestamp - session.response_start_timestamp
                await adapter.truncate(session.active_message_id, played_ms)

        session.interrupted = True
        session.interrupted_response_id = response_id
        session.active_response_id = None
        session.reset_playback()
        logger.info(f"Caller interrupted response {response_id} on session {session.session_id}")

    async def _send_telephony(self, event: AnyEvent) -> bool:
        if self.session.is_closed:
            return False
        message = await self.serializer.serialize(event)
        if message is None:
            return False
        try:
            await self.telephony.send(message)
        except TransportClosed:
            logger.debug(f"Telephony socket closed; dropped {event.event_type.value}")
            return False
        return True

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    def _begin_closing(self, cause: CloseCause) -> bool:
        if not self.lifecycle.begin_closing(self.session, cause):
            return False
        self._grace_task = asyncio.create_task(self._close_after_grace())
        return True

    async def _close_after_grace(self) -> None:
        await asyncio.sleep(self.config.call.grace_delay_seconds)
        await self._shutdown(self.session.close_cause or CloseCause.TELEPHONY_CLOSED)

    async def _shutdown(self, cause: CloseCause) -> None:
        self.lifecycle.begin_closing(self.session, cause)
        task = self._realtime_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        await self.lifecycle.finish(self.session, self.telephony)

    async def _drain(self) -> None:
        for task in (self._realtime_task, self._grace_task):
            if task is None or task is asyncio.current_task():
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Session task failed: {e}")
