"""Shared fixtures: in-memory transports standing in for both sockets."""

import asyncio
import json

import pytest

from callbridge.bridge import MediaBridge
from callbridge.config import BridgeConfig
from callbridge.realtime.adapter import RealtimeAdapter
from callbridge.realtime.retry import RetryPolicy
from callbridge.registry import PromptRegistry
from callbridge.session import SessionStore
from callbridge.transports.base import BaseTransport, TransportClosed


class FakeTransport(BaseTransport):
    """Queue-backed transport. ``feed`` plays the remote side."""

    def __init__(self, connected=False, fail_connect=False):
        self.inbox = asyncio.Queue()
        self.sent = []
        self.connected = connected
        self.fail_connect = fail_connect
        self.connect_calls = 0
        self.disconnects = 0
        self.url = None
        self.headers = None

    async def connect(self, **kwargs):
        self.connect_calls += 1
        if self.fail_connect:
            raise OSError("connection refused")
        self.connected = True

    async def send(self, data):
        if not self.connected:
            raise TransportClosed(None, "not connected")
        self.sent.append(data)

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, TransportClosed):
            self.connected = False
            raise item
        return item

    async def disconnect(self):
        self.disconnects += 1
        if self.connected:
            self.connected = False
            self.inbox.put_nowait(TransportClosed(1000, "closed locally"))

    def is_connected(self):
        return self.connected

    def feed(self, message):
        self.inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self, code=1006):
        self.inbox.put_nowait(TransportClosed(code, "dropped"))

    @property
    def messages(self):
        return [json.loads(m) for m in self.sent]

    def of_kind(self, kind, key="type"):
        return [m for m in self.messages if m.get(key) == kind]


class FakeTransportFactory:
    """Speech-service transport factory; the first ``failures`` connects fail."""

    def __init__(self, failures=0):
        self.failures = failures
        self.created = []

    def __call__(self, url, headers):
        fail = self.failures > 0
        if fail:
            self.failures -= 1
        transport = FakeTransport(fail_connect=fail)
        transport.url = url
        transport.headers = headers
        self.created.append(transport)
        return transport

    @property
    def current(self):
        return self.created[-1]


async def eventually(predicate, timeout=2.0):
    """Poll until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class BridgeHarness:
    """A MediaBridge wired to fake sockets on both sides."""

    def __init__(self, config, failures=0):
        self.config = config
        self.registry = PromptRegistry()
        self.sessions = SessionStore()
        self.telephony = FakeTransport(connected=True)
        self.transports = FakeTransportFactory(failures=failures)
        self.adapters = []
        self.bridge = MediaBridge(
            self.telephony,
            config,
            self.registry,
            adapter_factory=self._make_adapter,
            sessions=self.sessions,
        )
        self.task = None

    def _make_adapter(self, instructions):
        adapter = RealtimeAdapter(
            self.config.realtime,
            api_key="sk-test",
            instructions=instructions,
            retry=RetryPolicy.from_config(self.config.retry),
            transport_factory=self.transports,
        )
        self.adapters.append(adapter)
        return adapter

    @property
    def session(self):
        return self.bridge.session

    @property
    def realtime(self):
        return self.transports.current

    def run(self):
        self.task = asyncio.create_task(self.bridge.run())
        return self.task

    def send_start(self, call_sid="CA123", prompt=None, stream_sid="MZ456"):
        params = {"CallSid": call_sid}
        if prompt is not None:
            params["Prompt"] = prompt
        self.telephony.feed({
            "event": "start",
            "streamSid": stream_sid,
            "start": {
                "streamSid": stream_sid,
                "callSid": call_sid,
                "customParameters": params,
                "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
            },
        })

    async def start_call(self, **kwargs):
        self.send_start(**kwargs)
        await eventually(lambda: self.session.adapter is not None and self.session.adapter.is_ready)

    async def finished(self, timeout=2.0):
        return await asyncio.wait_for(self.task, timeout)

    async def hang_up(self):
        """Telephony socket goes away; wait for the bridge to wind down."""
        self.telephony.drop(1000)
        return await self.finished()

    def media(self, payload="AAAA", timestamp=0):
        self.telephony.feed({
            "event": "media",
            "streamSid": self.session.stream_id,
            "media": {"track": "inbound", "timestamp": str(timestamp), "payload": payload},
        })

    def stop(self):
        self.telephony.feed({"event": "stop", "streamSid": self.session.stream_id})

    def telephony_of_kind(self, kind):
        return self.telephony.of_kind(kind, key="event")


@pytest.fixture
def config():
    return BridgeConfig.from_dict({"grace_delay": 0.01, "retry_backoff": 0})


@pytest.fixture
def harness(config):
    return BridgeHarness(config)
