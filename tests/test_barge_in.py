"""Tests for barge-in: clear, cancel, truncate and stale-response filtering."""

import pytest

from callbridge.config import BridgeConfig

from conftest import BridgeHarness, eventually


def response_created(response_id):
    return {"type": "response.created", "response": {"id": response_id}}


def audio_delta(response_id, payload, item_id="item_1"):
    return {
        "type": "response.audio.delta",
        "response_id": response_id,
        "item_id": item_id,
        "delta": payload,
    }


SPEECH_STARTED = {"type": "input_audio_buffer.speech_started", "audio_start_ms": 1600, "item_id": "item_u"}


async def play_response(harness, response_id="resp_1", payloads=("AAA1", "AAA2"), item_id="item_1"):
    rt = harness.realtime
    sent_before = len(harness.telephony_of_kind("media"))
    rt.feed(response_created(response_id))
    rt.feed({
        "type": "response.output_item.added",
        "response_id": response_id,
        "item": {"id": item_id, "type": "message"},
    })
    for payload in payloads:
        rt.feed(audio_delta(response_id, payload, item_id=item_id))
    await eventually(lambda: len(harness.telephony_of_kind("media")) == sent_before + len(payloads))


class TestBargeIn:

    @pytest.mark.asyncio
    async def test_caller_speech_cancels_active_response(self, harness):
        harness.run()
        await harness.start_call()
        harness.media(timestamp=1000)
        await eventually(lambda: harness.session.latest_media_timestamp == 1000)

        await play_response(harness)
        assert len(harness.telephony_of_kind("mark")) == 2

        harness.media(timestamp=1640)
        await eventually(lambda: harness.session.latest_media_timestamp == 1640)
        harness.realtime.feed(SPEECH_STARTED)

        await eventually(lambda: harness.realtime.of_kind("conversation.item.truncate"))
        assert harness.telephony_of_kind("clear") == [{"event": "clear", "streamSid": "MZ456"}]
        assert harness.realtime.of_kind("response.cancel") == [
            {"type": "response.cancel", "response_id": "resp_1"}
        ]
        [truncate] = harness.realtime.of_kind("conversation.item.truncate")
        assert truncate["item_id"] == "item_1"
        assert truncate["audio_end_ms"] == 640

        session = harness.session
        assert session.is_user_speaking
        assert session.interrupted
        assert session.interrupted_response_id == "resp_1"
        assert session.active_response_id is None
        assert session.pending_marks == []

        await harness.hang_up()

    @pytest.mark.asyncio
    async def test_no_audio_from_cancelled_response(self, harness):
        harness.run()
        await harness.start_call()
        await play_response(harness)

        harness.realtime.feed(SPEECH_STARTED)
        await eventually(lambda: harness.telephony_of_kind("clear"))

        harness.realtime.feed(audio_delta("resp_1", "LATE"))
        harness.realtime.feed(response_created("resp_2"))
        harness.realtime.feed(audio_delta("resp_1", "LATER"))
        harness.realtime.feed(audio_delta("resp_2", "NEW1", item_id="item_2"))

        await eventually(lambda: len(harness.telephony_of_kind("media")) == 3)
        payloads = [m["media"]["payload"] for m in harness.telephony_of_kind("media")]
        assert payloads == ["AAA1", "AAA2", "NEW1"]
        assert harness.session.active_response_id == "resp_2"

        await harness.hang_up()

    @pytest.mark.asyncio
    async def test_partial_text_committed_and_stale_text_ignored(self, harness):
        harness.run()
        await harness.start_call()
        rt = harness.realtime
        rt.feed(response_created("resp_1"))
        rt.feed({"type": "response.audio_transcript.delta", "response_id": "resp_1", "delta": "Our opening hours are"})
        rt.feed(audio_delta("resp_1", "AAA1"))
        await eventually(lambda: harness.telephony_of_kind("media"))

        rt.feed(SPEECH_STARTED)
        rt.feed({"type": "response.audio_transcript.delta", "response_id": "resp_1", "delta": " nine to five."})
        rt.feed({"type": "response.done", "response": {"id": "resp_1", "status": "cancelled"}})
        rt.feed({
            "type": "conversation.item.input_audio_transcription.completed",
            "item_id": "item_u",
            "transcript": "Are you open Sunday?",
        })

        await eventually(lambda: len(harness.session.conversation_log) == 2)
        log = [(t.role, t.text) for t in harness.session.conversation_log]
        assert log == [
            ("assistant", "Our opening hours are"),
            ("user", "Are you open Sunday?"),
        ]
        assert harness.session.pending_assistant_text == ""

        await harness.hang_up()

    @pytest.mark.asyncio
    async def test_speech_with_nothing_playing(self, harness):
        harness.run()
        await harness.start_call()
        harness.realtime.feed(SPEECH_STARTED)
        await eventually(lambda: harness.session.is_user_speaking)

        harness.realtime.feed({"type": "input_audio_buffer.speech_stopped", "audio_end_ms": 2000})
        await eventually(lambda: not harness.session.is_user_speaking)
        assert harness.telephony_of_kind("clear") == []
        assert harness.realtime.of_kind("response.cancel") == []

        await harness.hang_up()

    @pytest.mark.asyncio
    async def test_queued_playback_cleared_after_response_done(self, harness):
        harness.run()
        await harness.start_call()
        await play_response(harness, payloads=("AAA1",))
        harness.realtime.feed({"type": "response.done", "response": {"id": "resp_1", "status": "completed"}})
        await eventually(lambda: harness.session.active_response_id is None)

        harness.realtime.feed(SPEECH_STARTED)
        await eventually(lambda: harness.telephony_of_kind("clear"))
        assert harness.realtime.of_kind("response.cancel") == []

        await harness.hang_up()

    @pytest.mark.asyncio
    async def test_played_audio_needs_no_clear(self, harness):
        harness.run()
        await harness.start_call()
        await play_response(harness, payloads=("AAA1",))
        harness.realtime.feed({"type": "response.done", "response": {"id": "resp_1", "status": "completed"}})
        harness.telephony.feed({"event": "mark", "streamSid": "MZ456", "mark": {"name": "audio-1"}})
        await eventually(
            lambda: harness.session.active_response_id is None and not harness.session.pending_marks
        )

        harness.realtime.feed(SPEECH_STARTED)
        await eventually(lambda: harness.session.is_user_speaking)
        assert harness.telephony_of_kind("clear") == []

        await harness.hang_up()

    @pytest.mark.asyncio
    async def test_truncate_disabled(self):
        config = BridgeConfig.from_dict({
            "grace_delay": 0.01,
            "retry_backoff": 0,
            "call": {"truncate_on_interrupt": False},
        })
        harness = BridgeHarness(config)
        harness.run()
        await harness.start_call()
        await play_response(harness)

        harness.realtime.feed(SPEECH_STARTED)
        await eventually(lambda: harness.realtime.of_kind("response.cancel"))
        assert harness.realtime.of_kind("conversation.item.truncate") == []

        await harness.hang_up()

    @pytest.mark.asyncio
    async def test_cancel_race_error_is_harmless(self, harness):
        harness.run()
        await harness.start_call()
        harness.realtime.feed({
            "type": "error",
            "error": {"type": "invalid_request_error", "code": "response_cancel_not_active", "message": "none"},
        })
        harness.media()
        await eventually(lambda: harness.realtime.of_kind("input_audio_buffer.append"))
        assert harness.session.state.value == "active"

        await harness.hang_up()

    @pytest.mark.asyncio
    async def test_truncate_offset_restarts_with_each_response(self, harness):
        harness.run()
        await harness.start_call()
        harness.media(timestamp=1000)
        await eventually(lambda: harness.session.latest_media_timestamp == 1000)

        await play_response(harness, response_id="resp_1", payloads=("AAA1",))
        harness.realtime.feed({"type": "response.done", "response": {"id": "resp_1", "status": "completed"}})
        harness.telephony.feed({"event": "mark", "streamSid": "MZ456", "mark": {"name": "audio-1"}})
        await eventually(
            lambda: harness.session.active_response_id is None and not harness.session.pending_marks
        )

        harness.media(timestamp=5000)
        await eventually(lambda: harness.session.latest_media_timestamp == 5000)
        await play_response(harness, response_id="resp_2", payloads=("BBB1",), item_id="item_2")
        assert harness.session.response_start_timestamp == 5000
        assert harness.session.active_message_id == "item_2"

        harness.media(timestamp=5300)
        await eventually(lambda: harness.session.latest_media_timestamp == 5300)
        harness.realtime.feed(SPEECH_STARTED)

        await eventually(lambda: harness.realtime.of_kind("conversation.item.truncate"))
        [truncate] = harness.realtime.of_kind("conversation.item.truncate")
        assert truncate["item_id"] == "item_2"
        assert truncate["audio_end_ms"] == 300

        await harness.hang_up()
