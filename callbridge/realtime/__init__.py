"""callbridge speech service side - OpenAI Realtime API session adapter.

Usage:
    from callbridge.realtime import RealtimeAdapter, RetryPolicy

    adapter = RealtimeAdapter(config.realtime, api_key, instructions)
    await adapter.connect()
    async for event in adapter.events():
        ...
"""

from callbridge.realtime.adapter import RealtimeAdapter, TransportFactory
from callbridge.realtime.retry import RetryPolicy
from callbridge.realtime.serializer import RealtimeSerializer

__all__ = [
    "RealtimeAdapter",
    "RealtimeSerializer",
    "RetryPolicy",
    "TransportFactory",
]
