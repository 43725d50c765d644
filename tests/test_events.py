"""Tests for the callbridge event model."""

from callbridge.core.events import (
    EVENT_TYPE_MAP,
    AdapterClosed,
    AudioFrame,
    ErrorEvent,
    EventType,
    SessionReady,
    StreamStarted,
)
from callbridge.transports.base import TransportClosed


class TestEventModel:
    """Test the Pydantic event models."""

    def test_audio_frame_defaults(self):
        frame = AudioFrame()
        assert frame.event_type == EventType.AUDIO_FRAME
        assert frame.payload == ""
        assert frame.media_timestamp is None

    def test_stream_started(self):
        event = StreamStarted(
            stream_id="MZ123",
            call_id="CA456",
            prompt="Check the booking",
            custom_parameters={"CallSid": "CA456"},
        )
        assert event.event_type == EventType.STREAM_STARTED
        assert event.call_id == "CA456"
        assert event.custom_parameters["CallSid"] == "CA456"

    def test_adapter_closed(self):
        event = AdapterClosed(code=1011, reason="server error", fatal=True)
        assert event.event_type == EventType.ADAPTER_CLOSED
        assert event.fatal

    def test_session_ready(self):
        assert not SessionReady().reconnected
        assert SessionReady(reconnected=True).reconnected

    def test_error(self):
        err = ErrorEvent(code="rate_limit_exceeded", message="slow down")
        assert err.event_type == EventType.ERROR

    def test_timestamp_auto_set(self):
        assert AudioFrame().timestamp > 0

    def test_serialization(self):
        data = AdapterClosed(code=1006).model_dump()
        assert data["event_type"] == EventType.ADAPTER_CLOSED
        assert data["code"] == 1006


class TestEventTypeMap:

    def test_every_type_mapped(self):
        for event_type in EventType:
            assert event_type in EVENT_TYPE_MAP

    def test_map_matches_defaults(self):
        for event_type, cls in EVENT_TYPE_MAP.items():
            assert cls().event_type == event_type


class TestTransportClosed:

    def test_default_code_is_abnormal(self):
        exc = TransportClosed()
        assert exc.code == 1006
        assert not exc.is_normal

    def test_normal(self):
        assert TransportClosed(1000, "bye").is_normal
