"""Twilio Media Streams WebSocket serializer.

Translates between Twilio's Media Streams WebSocket protocol and
callbridge's unified event model. Twilio streams audio as base64-encoded
mu-law at 8kHz inside JSON messages; the payload is handed on as-is since
the speech service is configured for the same codec.

Protocol reference:
    https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import json
from typing import Any

from callbridge.core.events import (
    AnyEvent,
    AudioFrame,
    ClearAudio,
    Mark,
    StreamStarted,
    StreamStopped,
)
from callbridge.errors import MessageParseError
from callbridge.serializers.base import BaseSerializer

# customParameters keys that may carry the call identifier / operator prompt
CALL_ID_PARAMETERS = ("CallSid", "callSid", "call_id")
PROMPT_PARAMETERS = ("Prompt", "prompt")


class TwilioSerializer(BaseSerializer):
    """Serializer for the Twilio Media Streams WebSocket protocol.

    Twilio sends JSON messages with an ``event`` field that indicates the
    message type.

    State kept across the lifetime of a single stream:
        stream_sid: The unique identifier for the media stream.
    """

    def __init__(self) -> None:
        self.stream_sid: str = ""

    @property
    def name(self) -> str:
        return "twilio"

    # ------------------------------------------------------------------
    # Deserialization (Twilio -> events)
    # ------------------------------------------------------------------

    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        """Parse a Twilio Media Streams message into events.

        Message types handled:
            * ``connected`` -- initial handshake acknowledgement (ignored).
            * ``start``     -- stream metadata; produces :class:`StreamStarted`.
            * ``media``     -- audio payload; produces :class:`AudioFrame`.
            * ``mark``      -- playback checkpoint reached; :class:`Mark`.
            * ``stop``      -- stream ended; produces :class:`StreamStopped`.

        Anything else (``dtmf`` included) is ignored.
        """
        msg = self._parse_message(raw)
        event_type = msg.get("event", "")

        if event_type == "start":
            return self._handle_start(msg)

        if event_type == "media":
            return self._handle_media(msg)

        if event_type == "mark":
            return self._handle_mark(msg)

        if event_type == "stop":
            return self._handle_stop(msg)

        return []

    # ------------------------------------------------------------------
    # Serialization (events -> Twilio)
    # ------------------------------------------------------------------

    async def serialize(self, event: AnyEvent) -> str | None:
        """Convert an event to a Twilio Media Streams message.

        Supported outbound events: :class:`AudioFrame` (``media``),
        :class:`ClearAudio` (``clear``) and :class:`Mark` (``mark``).
        """
        if isinstance(event, AudioFrame):
            return json.dumps(
                {
                    "event": "media",
                    "streamSid": event.stream_id or self.stream_sid,
                    "media": {"payload": event.payload},
                }
            )

        if isinstance(event, ClearAudio):
            return self.build_clear_message()

        if isinstance(event, Mark):
            return self.build_mark_message(event.name)

        return None

    def build_clear_message(self) -> str:
        """Build a Twilio ``clear`` control message.

        Sending this message instructs Twilio to discard any buffered audio
        that has not yet been played to the caller.  Used for barge-in.
        """
        return json.dumps({"event": "clear", "streamSid": self.stream_sid})

    def build_mark_message(self, name: str) -> str:
        return json.dumps(
            {
                "event": "mark",
                "streamSid": self.stream_sid,
                "mark": {"name": name},
            }
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_message(raw: bytes | str | dict) -> dict[str, Any]:
        """Normalise the raw WebSocket frame into a dict."""
        if isinstance(raw, dict):
            return raw
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            msg = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MessageParseError(f"invalid Twilio frame: {exc}") from exc
        if not isinstance(msg, dict):
            raise MessageParseError("Twilio frame is not a JSON object")
        return msg

    def _handle_start(self, msg: dict) -> list[AnyEvent]:
        start_data = msg.get("start") or {}
        self.stream_sid = start_data.get("streamSid") or msg.get("streamSid", "")
        if not self.stream_sid:
            raise MessageParseError("start message without streamSid")

        custom_params = start_data.get("customParameters") or {}
        call_sid = _first_present(custom_params, CALL_ID_PARAMETERS) or start_data.get("callSid")

        return [
            StreamStarted(
                stream_id=self.stream_sid,
                call_id=call_sid or None,
                prompt=_first_present(custom_params, PROMPT_PARAMETERS),
                custom_parameters=custom_params,
                media_format=start_data.get("mediaFormat") or {},
            )
        ]

    def _handle_media(self, msg: dict) -> list[AnyEvent]:
        media_data = msg.get("media") or {}
        # Only the caller's leg is forwarded to the speech service
        if media_data.get("track") not in (None, "inbound"):
            return []

        payload = media_data.get("payload")
        if not isinstance(payload, str) or not payload:
            raise MessageParseError("media message without payload")

        timestamp = media_data.get("timestamp")
        try:
            media_timestamp = int(timestamp) if timestamp is not None else None
        except (TypeError, ValueError):
            media_timestamp = None

        return [
            AudioFrame(
                stream_id=msg.get("streamSid", self.stream_sid),
                payload=payload,
                media_timestamp=media_timestamp,
            )
        ]

    def _handle_mark(self, msg: dict) -> list[AnyEvent]:
        mark_data = msg.get("mark") or {}
        return [
            Mark(
                stream_id=msg.get("streamSid", self.stream_sid),
                name=mark_data.get("name", ""),
            )
        ]

    def _handle_stop(self, msg: dict) -> list[AnyEvent]:
        return [StreamStopped(stream_id=msg.get("streamSid", self.stream_sid))]


def _first_present(params: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = params.get(key)
        if value:
            return str(value)
    return None
