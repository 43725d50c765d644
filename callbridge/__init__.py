"""callbridge - outbound AI phone calls.

Bridges a Twilio Media Streams call to an OpenAI Realtime session: the
caller's audio goes to the speech service, the assistant's audio comes back
to the call, and the assistant ends the call itself when its task is done.

Quick start:
    $ pip install callbridge
    $ callbridge init          # generates bridge.yaml
    $ callbridge run --config bridge.yaml

    $ curl -X POST localhost:8765/make-call \\
        -H 'content-type: application/json' \\
        -d '{"phoneNumber": "+15551234567", "prompt": "Book a table for two at 7pm"}'
"""

__version__ = "0.1.0"

# Core
from callbridge.bridge import MediaBridge
from callbridge.config import (
    BridgeConfig,
    CallConfig,
    Credentials,
    RealtimeConfig,
    RetryConfig,
    ServerConfig,
    load_config,
)
from callbridge.errors import (
    AdapterConnectError,
    CallBridgeError,
    ConfigError,
    MessageParseError,
    TelephonyError,
)
from callbridge.lifecycle import CallLifecycle
from callbridge.registry import CallPrompt, PromptRegistry
from callbridge.session import CloseCause, MediaSession, SessionState, SessionStore
from callbridge.transcript import Transcript, Turn

# Events
from callbridge.core.events import (
    AdapterClosed,
    AudioDelta,
    AudioFrame,
    ClearAudio,
    ErrorEvent,
    Event,
    EventType,
    Mark,
    SessionReady,
    SpeechStarted,
    StreamStarted,
    StreamStopped,
    TranscriptDelta,
    TranscriptionCompleted,
)

# Speech service
from callbridge.realtime import RealtimeAdapter, RealtimeSerializer, RetryPolicy

# Telephony
from callbridge.serializers.base import BaseSerializer
from callbridge.serializers.twilio import TwilioSerializer

# Transports
from callbridge.transports.base import BaseTransport, TransportClosed
from callbridge.transports.websocket import WebSocketClientTransport

__all__ = [
    # Core
    "MediaBridge",
    "BridgeConfig",
    "CallConfig",
    "Credentials",
    "RealtimeConfig",
    "RetryConfig",
    "ServerConfig",
    "load_config",
    "CallBridgeError",
    "ConfigError",
    "MessageParseError",
    "AdapterConnectError",
    "TelephonyError",
    "CallLifecycle",
    "CallPrompt",
    "PromptRegistry",
    "MediaSession",
    "SessionState",
    "CloseCause",
    "SessionStore",
    "Transcript",
    "Turn",
    # Events
    "Event",
    "EventType",
    "StreamStarted",
    "AudioFrame",
    "StreamStopped",
    "ClearAudio",
    "Mark",
    "SessionReady",
    "SpeechStarted",
    "AudioDelta",
    "TranscriptDelta",
    "TranscriptionCompleted",
    "AdapterClosed",
    "ErrorEvent",
    # Speech service
    "RealtimeAdapter",
    "RealtimeSerializer",
    "RetryPolicy",
    # Telephony
    "BaseSerializer",
    "TwilioSerializer",
    # Transports
    "BaseTransport",
    "TransportClosed",
    "WebSocketClientTransport",
]
