"""OpenAI Realtime API message translation.

Pure translation, no I/O: builds the client messages callbridge sends and
turns server messages into canonical events.

Protocol reference:
    https://platform.openai.com/docs/api-reference/realtime
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger

from callbridge.config import RealtimeConfig
from callbridge.core.events import (
    AnyEvent,
    AudioDelta,
    ErrorEvent,
    OutputItemAdded,
    ResponseDone,
    ResponseStarted,
    SpeechStarted,
    SpeechStopped,
    TranscriptDelta,
    TranscriptionCompleted,
)
from callbridge.errors import MessageParseError

# Server messages that are only worth a debug line
IGNORED_EVENT_TYPES = frozenset({
    "session.created",
    "session.updated",
    "rate_limits.updated",
    "input_audio_buffer.committed",
    "conversation.item.created",
    "response.content_part.added",
    "response.content_part.done",
    "response.output_item.done",
    "response.audio.done",
    "response.audio_transcript.done",
    "response.text.delta",
    "response.text.done",
})


class RealtimeSerializer:
    """Translator for the OpenAI Realtime WebSocket protocol."""

    # ------------------------------------------------------------------
    # Client messages
    # ------------------------------------------------------------------

    @staticmethod
    def session_update(config: RealtimeConfig, instructions: str) -> dict[str, Any]:
        """Build the one ``session.update`` sent after every handshake."""
        session: dict[str, Any] = {
            "turn_detection": {
                "type": "server_vad",
                "threshold": config.vad_threshold,
            },
            "input_audio_format": config.input_audio_format,
            "output_audio_format": config.output_audio_format,
            "voice": config.voice,
            "instructions": instructions,
            "modalities": list(config.modalities),
        }
        if config.transcription_model:
            session["input_audio_transcription"] = {"model": config.transcription_model}
        return {"type": "session.update", "session": session}

    @staticmethod
    def append_audio(payload: str) -> dict[str, Any]:
        return {"type": "input_audio_buffer.append", "audio": payload}

    @staticmethod
    def cancel_response(response_id: str | None = None) -> dict[str, Any]:
        message: dict[str, Any] = {"type": "response.cancel"}
        if response_id:
            message["response_id"] = response_id
        return message

    @staticmethod
    def truncate(item_id: str, audio_end_ms: int, content_index: int = 0) -> dict[str, Any]:
        return {
            "type": "conversation.item.truncate",
            "item_id": item_id,
            "content_index": content_index,
            "audio_end_ms": max(0, int(audio_end_ms)),
        }

    # ------------------------------------------------------------------
    # Server messages
    # ------------------------------------------------------------------

    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        """Parse one server message into events.

        Raises:
            MessageParseError: If the frame is not a JSON object.
        """
        msg = self._parse_message(raw)
        msg_type = msg.get("type", "")

        if msg_type == "response.created":
            response = msg.get("response") or {}
            return [ResponseStarted(response_id=response.get("id", ""))]

        if msg_type == "response.output_item.added":
            item = msg.get("item")
            if not item:
                return []
            return [OutputItemAdded(response_id=msg.get("response_id", ""), item_id=item.get("id", ""))]

        if msg_type == "input_audio_buffer.speech_started":
            return [
                SpeechStarted(
                    audio_start_ms=msg.get("audio_start_ms") or 0,
                    item_id=msg.get("item_id", ""),
                )
            ]

        if msg_type == "input_audio_buffer.speech_stopped":
            return [
                SpeechStopped(
                    audio_end_ms=msg.get("audio_end_ms") or 0,
                    item_id=msg.get("item_id", ""),
                )
            ]

        if msg_type == "response.audio.delta":
            if not msg.get("delta"):
                return []
            return [
                AudioDelta(
                    response_id=msg.get("response_id", ""),
                    item_id=msg.get("item_id", ""),
                    delta=msg["delta"],
                )
            ]

        if msg_type == "response.audio_transcript.delta":
            if not msg.get("delta"):
                return []
            return [
                TranscriptDelta(
                    response_id=msg.get("response_id", ""),
                    item_id=msg.get("item_id", ""),
                    delta=msg["delta"],
                )
            ]

        if msg_type == "conversation.item.input_audio_transcription.completed":
            return [
                TranscriptionCompleted(
                    item_id=msg.get("item_id", ""),
                    transcript=msg.get("transcript") or "",
                )
            ]

        if msg_type == "response.done":
            response = msg.get("response") or {}
            return [ResponseDone(response_id=response.get("id", ""), status=response.get("status", ""))]

        if msg_type == "error":
            error = msg.get("error") or {}
            return [
                ErrorEvent(
                    code=error.get("code") or "",
                    message=error.get("message") or "",
                    error_type=error.get("type") or "",
                )
            ]

        if msg_type in IGNORED_EVENT_TYPES:
            logger.debug(f"Realtime event: {msg_type}")
        return []

    @staticmethod
    def _parse_message(raw: bytes | str | dict) -> dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            msg = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MessageParseError(f"invalid realtime frame: {exc}") from exc
        if not isinstance(msg, dict):
            raise MessageParseError("realtime frame is not a JSON object")
        return msg
