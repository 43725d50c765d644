"""Speech-service session adapter.

Owns the WebSocket to the OpenAI Realtime API for one media session:
performs the handshake (socket + one ``session.update``), exposes the
inbound stream as canonical events, and reconnects within a bounded retry
budget when the socket drops abnormally.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable

from loguru import logger

from callbridge.config import RealtimeConfig
from callbridge.core.events import AdapterClosed, AnyEvent, SessionReady
from callbridge.errors import AdapterConnectError, MessageParseError
from callbridge.realtime.retry import RetryPolicy
from callbridge.realtime.serializer import RealtimeSerializer
from callbridge.transports.base import BaseTransport, TransportClosed
from callbridge.transports.websocket import WebSocketClientTransport

# (url, headers) -> unconnected transport
TransportFactory = Callable[[str, dict[str, str]], BaseTransport]


def _default_transport(url: str, headers: dict[str, str]) -> BaseTransport:
    return WebSocketClientTransport(url=url, headers=headers)


class RealtimeAdapter:
    """One speech-service session.

    Args:
        config: Endpoint, voice and audio settings.
        api_key: OpenAI API key.
        instructions: System instructions sent with every handshake.
        retry: Retry budget for each outage, reset after every successful handshake.
        transport_factory: Builds the socket; defaults to the websockets client.
    """

    def __init__(
        self,
        config: RealtimeConfig,
        api_key: str,
        instructions: str,
        retry: RetryPolicy | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.config = config
        self.instructions = instructions
        self.retry = retry or RetryPolicy()
        self.serializer = RealtimeSerializer()
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        self._transport_factory = transport_factory or _default_transport
        self._transport: BaseTransport | None = None
        self._ready = False
        self._closed = False

        # Counters
        self.config_sends = 0
        self.reconnects = 0

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._transport is not None
            and self._transport.is_connected()
        )

    @property
    def is_ready(self) -> bool:
        """Handshake done and the socket still open."""
        return self._ready and self.is_open

    @property
    def closed(self) -> bool:
        return self._closed

    async def connect(self) -> None:
        """Open the socket and configure the session.

        Raises:
            AdapterConnectError: If every attempt in the retry budget failed,
                or the adapter was closed while connecting.
        """
        while True:
            try:
                await self._handshake()
            except Exception as exc:
                logger.warning(f"Realtime connect failed: {exc}")
                if self._closed or not self.retry.should_retry():
                    raise AdapterConnectError(f"Speech service connection failed: {exc}") from exc
                await self.retry.wait()
                continue

            if self._closed:
                await self._drop_transport()
                raise AdapterConnectError("Adapter closed while connecting")
            self.retry.reset()
            return

    async def _handshake(self) -> None:
        transport = self._transport_factory(self.config.endpoint, self._headers)
        await transport.connect()
        update = self.serializer.session_update(self.config, self.instructions)
        try:
            await transport.send(json.dumps(update))
        except BaseException:
            # Also on cancellation: the socket is not ours to track yet.
            await transport.disconnect()
            raise
        self._transport = transport
        self._ready = True
        self.config_sends += 1
        logger.info(f"Realtime session configured (voice={self.config.voice})")

    async def _reconnect(self) -> bool:
        await self._drop_transport()
        while not self._closed and self.retry.should_retry():
            await self.retry.wait()
            if self._closed:
                break
            logger.info(
                f"Reconnecting to speech service "
                f"(attempt {self.retry.attempts_made}/{self.retry.max_attempts})"
            )
            try:
                await self._handshake()
            except Exception as exc:
                logger.warning(f"Realtime reconnect failed: {exc}")
                continue
            if self._closed:
                await self._drop_transport()
                return False
            self.reconnects += 1
            self.retry.reset()
            return True
        return False

    async def _drop_transport(self) -> None:
        self._ready = False
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.disconnect()

    async def close(self) -> None:
        """Close the socket. Idempotent; later sends become no-ops."""
        if self._closed:
            return
        self._closed = True
        self._ready = False
        if self._transport is not None:
            await self._transport.disconnect()
        logger.info("Realtime session closed")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def events(self) -> AsyncIterator[AnyEvent]:
        """Yield events until the session is gone for good.

        Starts with :class:`SessionReady` and always ends with exactly one
        :class:`AdapterClosed`.
        """
        if self._transport is None:
            yield AdapterClosed(reason="not connected", fatal=self.retry.remaining == 0)
            return

        yield SessionReady()
        while True:
            transport = self._transport
            try:
                if transport is None:
                    raise TransportClosed(None, "not connected")
                raw = await transport.recv()
            except (TransportClosed, OSError) as exc:
                code = exc.code if isinstance(exc, TransportClosed) else None
                reason = exc.reason if isinstance(exc, TransportClosed) else str(exc)
                normal = isinstance(exc, TransportClosed) and exc.is_normal

                if self._closed or normal:
                    self._ready = False
                    yield AdapterClosed(code=code, reason=reason, fatal=False)
                    return

                logger.warning(f"Speech service socket dropped (code={code}, reason={reason!r})")
                if await self._reconnect():
                    yield SessionReady(reconnected=True)
                    continue
                if self._closed:
                    yield AdapterClosed(code=code, reason=reason, fatal=False)
                else:
                    logger.error("Speech service retry budget exhausted")
                    yield AdapterClosed(code=code, reason=reason, fatal=True)
                return

            try:
                parsed = await self.serializer.deserialize(raw)
            except MessageParseError as exc:
                logger.warning(f"Dropping malformed realtime frame: {exc.detail}")
                continue
            for event in parsed:
                yield event

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_event(self, message: dict[str, Any]) -> bool:
        """Send one client message. Returns False when nothing was sent."""
        if not self.is_open:
            logger.debug(f"Dropping {message.get('type')}: speech socket not open")
            return False
        try:
            await self._transport.send(json.dumps(message))
        except TransportClosed:
            logger.debug(f"Dropping {message.get('type')}: speech socket closed")
            return False
        return True

    async def send_audio(self, payload: str) -> bool:
        return await self.send_event(self.serializer.append_audio(payload))

    async def cancel_response(self, response_id: str | None = None) -> bool:
        return await self.send_event(self.serializer.cancel_response(response_id))

    async def truncate(self, item_id: str, audio_end_ms: int) -> bool:
        return await self.send_event(self.serializer.truncate(item_id, audio_end_ms))
