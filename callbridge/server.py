"""HTTP/WebSocket server for callbridge.

FastAPI application that places outbound calls, answers Twilio's webhook
with TwiML pointing the call's media stream back at this service, and
bridges each media WebSocket to the speech service. Also exposes health
check and status endpoints.
"""

from __future__ import annotations

import html
from typing import Any
from urllib.parse import urlencode, urlsplit

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from callbridge import __version__
from callbridge.bridge import MediaBridge
from callbridge.calls import OutboundDialer
from callbridge.config import BridgeConfig, load_config
from callbridge.errors import CallBridgeError
from callbridge.lifecycle import AdapterFactory
from callbridge.registry import PromptRegistry
from callbridge.session import SessionStore
from callbridge.transports.base import NORMAL_CLOSURE, BaseTransport, TransportClosed


class MakeCallRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(alias="phoneNumber", min_length=1)
    prompt: str = ""


class EmergencyStopRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    call_sid: str = Field(alias="callSid", min_length=1)


def create_app(
    config: BridgeConfig | dict | str | None = None,
    registry: PromptRegistry | None = None,
    dialer: OutboundDialer | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Bridge configuration (YAML path, dict, or BridgeConfig).
        registry: Prompt registry shared by every call; a new one by default.
        dialer: Outbound call client; built from the config credentials by default.
        adapter_factory: Speech-service adapter factory passed to every bridge.
    """
    bridge_config = load_config(config)
    prompts = registry if registry is not None else PromptRegistry()
    sessions = SessionStore()
    calls = dialer or OutboundDialer(bridge_config.credentials)
    listen_path = bridge_config.server.listen_path

    app = FastAPI(
        title="callbridge",
        description="Outbound AI phone calls over Twilio Media Streams and OpenAI Realtime",
        version=__version__,
    )
    app.state.config = bridge_config
    app.state.registry = prompts
    app.state.sessions = sessions
    app.state.dialer = calls

    @app.get("/health")
    async def health():
        return JSONResponse({"status": "ok", "active_calls": sessions.active_count})

    @app.get("/status")
    async def status_():
        return JSONResponse({
            "active_calls": sessions.active_count,
            "pending_prompts": len(prompts),
            "sessions": [s.summary() for s in sessions.all_sessions],
        })

    @app.api_route("/incoming-call", methods=["GET", "POST"])
    async def incoming_call(request: Request):
        params: dict[str, Any] = dict(request.query_params)
        if request.method == "POST":
            params.update(await request.form())

        call_sid = str(params.get("CallSid", ""))
        prompt = str(params.get("prompt") or params.get("Prompt") or "")
        logger.info(f"Incoming call webhook: {call_sid}")

        host = _public_host(bridge_config.server.public_url, request)
        twiml = build_stream_twiml(f"wss://{host}{listen_path}", call_sid, prompt)
        return Response(content=twiml, media_type="application/xml")

    @app.post("/make-call")
    async def make_call(body: MakeCallRequest, request: Request):
        base = bridge_config.server.public_url.rstrip("/") or f"https://{_public_host('', request)}"
        webhook_url = f"{base}/incoming-call?{urlencode({'prompt': body.prompt})}"
        try:
            call_sid = await calls.place_call(body.phone_number, webhook_url)
        except CallBridgeError as e:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to initiate call",
            ) from e

        prompts.store(call_sid, body.prompt)
        return JSONResponse({"callSid": call_sid})

    @app.post("/emergency-stop")
    async def emergency_stop(body: EmergencyStopRequest):
        try:
            await calls.end_call(body.call_sid)
        except CallBridgeError as e:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to terminate call",
            ) from e
        return JSONResponse({"success": True})

    @app.websocket(listen_path)
    async def media_stream(websocket: WebSocket):
        await websocket.accept()
        logger.info(f"Media WebSocket connected: {websocket.client}")

        transport = _FastAPIWebSocketTransport(websocket)
        bridge = MediaBridge(
            transport,
            bridge_config,
            prompts,
            adapter_factory=adapter_factory,
            sessions=sessions,
        )
        await bridge.run()

    return app


def build_stream_twiml(stream_url: str, call_sid: str, prompt: str) -> str:
    """TwiML that connects the answered call to our media WebSocket."""
    url = html.escape(stream_url, quote=True)
    sid = html.escape(call_sid, quote=True)
    text = html.escape(prompt, quote=True)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Connect>
        <Stream url="{url}">
            <Parameter name="CallSid" value="{sid}" />
            <Parameter name="Prompt" value="{text}" />
        </Stream>
    </Connect>
</Response>"""


def _public_host(public_url: str, request: Request) -> str:
    if public_url:
        parts = urlsplit(public_url)
        return parts.netloc or parts.path.rstrip("/")
    return request.headers.get("host") or request.url.netloc


class _FastAPIWebSocketTransport(BaseTransport):
    """Adapter to make FastAPI's WebSocket work with callbridge's transport interface."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._connected = True

    async def connect(self, **kwargs) -> None:
        pass  # Already accepted by FastAPI

    async def send(self, data: bytes | str) -> None:
        if not self._connected:
            raise TransportClosed(None, "not connected")
        try:
            if isinstance(data, bytes):
                await self._ws.send_bytes(data)
            else:
                await self._ws.send_text(data)
        except WebSocketDisconnect as exc:
            self._connected = False
            raise TransportClosed(exc.code, exc.reason or "") from exc
        except RuntimeError as exc:
            self._connected = False
            raise TransportClosed(None, str(exc)) from exc

    async def recv(self) -> bytes | str:
        if not self._connected:
            raise TransportClosed(None, "not connected")
        try:
            msg = await self._ws.receive()
        except RuntimeError as exc:
            self._connected = False
            raise TransportClosed(None, str(exc)) from exc

        if msg["type"] == "websocket.disconnect":
            self._connected = False
            raise TransportClosed(msg.get("code", NORMAL_CLOSURE), msg.get("reason") or "")
        if msg.get("text") is not None:
            return msg["text"]
        if msg.get("bytes") is not None:
            return msg["bytes"]
        raise TransportClosed(None, f"unexpected message type {msg['type']}")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        try:
            await self._ws.close()
        except RuntimeError as exc:
            logger.debug(f"Media WebSocket already closed: {exc}")

    def is_connected(self) -> bool:
        return self._connected


def run_server(config: BridgeConfig | dict | str, host: str | None = None, port: int | None = None) -> None:
    """Run the callbridge server with uvicorn.

    Args:
        config: Bridge configuration.
        host: Override the listen host.
        port: Override the listen port.
    """
    bridge_config = load_config(config)
    app = create_app(bridge_config)

    uvicorn.run(
        app,
        host=host or bridge_config.server.listen_host,
        port=port or bridge_config.server.listen_port,
    )
