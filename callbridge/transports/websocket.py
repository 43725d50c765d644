"""WebSocket client transport for callbridge.

Used for the speech-service side: callbridge connects as a client to the
realtime API. Built on the ``websockets`` asyncio client.
"""

from __future__ import annotations

from typing import Any

import websockets.asyncio.client
from loguru import logger
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from callbridge.transports.base import BaseTransport, TransportClosed


def _closed_from(exc: ConnectionClosed) -> TransportClosed:
    frame = exc.rcvd or exc.sent
    if frame is None:
        return TransportClosed(None, "")
    return TransportClosed(frame.code, frame.reason)


class WebSocketClientTransport(BaseTransport):
    """WebSocket client transport for connecting to a remote endpoint.

    Args:
        url: The ``ws://`` / ``wss://`` endpoint.
        headers: Extra HTTP headers for the opening handshake.
        **ws_kwargs: Passed through to ``websockets.asyncio.client.connect``.
    """

    def __init__(
        self,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        **ws_kwargs: Any,
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._ws: Any | None = None
        self._ws_kwargs = ws_kwargs

    async def connect(self, **kwargs) -> None:
        url = kwargs.get("url", self._url)
        if not url:
            raise ValueError("WebSocket URL is required")
        self._url = url
        logger.info(f"Connecting to WebSocket: {url}")
        self._ws = await websockets.asyncio.client.connect(
            url,
            additional_headers=self._headers,
            **self._ws_kwargs,
        )
        logger.info(f"Connected to {url}")

    async def send(self, data: bytes | str) -> None:
        if not self._ws:
            raise TransportClosed(None, "not connected")
        try:
            await self._ws.send(data)
        except ConnectionClosed as exc:
            raise _closed_from(exc) from exc

    async def recv(self) -> bytes | str:
        if not self._ws:
            raise TransportClosed(None, "not connected")
        try:
            return await self._ws.recv()
        except ConnectionClosed as exc:
            raise _closed_from(exc) from exc

    async def disconnect(self) -> None:
        if self._ws:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.info("WebSocket client disconnected")

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN
