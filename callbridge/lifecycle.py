"""Call lifecycle: session start sequence and symmetric teardown."""

from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from callbridge.config import BridgeConfig
from callbridge.core.events import StreamStarted
from callbridge.instructions import compose_instructions
from callbridge.realtime.adapter import RealtimeAdapter
from callbridge.realtime.retry import RetryPolicy
from callbridge.registry import PromptRegistry
from callbridge.session import CloseCause, MediaSession, SessionState
from callbridge.transports.base import BaseTransport

# instructions -> unconnected adapter
AdapterFactory = Callable[[str], RealtimeAdapter]


class CallLifecycle:
    """Starts and finishes media sessions.

    Args:
        config: Bridge configuration.
        registry: Shared prompt registry.
        adapter_factory: Builds the speech-service adapter for a session.
            Defaults to an OpenAI Realtime adapter using ``config``.
    """

    def __init__(
        self,
        config: BridgeConfig,
        registry: PromptRegistry,
        adapter_factory: AdapterFactory | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self._adapter_factory = adapter_factory or self._default_adapter

    def _default_adapter(self, instructions: str) -> RealtimeAdapter:
        return RealtimeAdapter(
            self.config.realtime,
            api_key=self.config.credentials.openai_api_key,
            instructions=instructions,
            retry=RetryPolicy.from_config(self.config.retry),
        )

    async def start(self, session: MediaSession, started: StreamStarted) -> RealtimeAdapter:
        """Claim the prompt, build the instructions and connect the adapter.

        The adapter is attached to the session before connecting so a
        concurrent close can reach it.

        Raises:
            AdapterConnectError: If the speech service could not be reached.
        """
        call_id = session.call_id
        prompt: str | None = None
        if call_id:
            if started.prompt and call_id not in self.registry:
                self.registry.store(call_id, started.prompt)
            prompt = self.registry.claim(call_id)
        else:
            prompt = started.prompt

        if prompt:
            logger.info(f"Using prompt for call {call_id}: {prompt}")
        else:
            logger.warning(f"No prompt found for call {call_id}; using default task")

        session.instructions = compose_instructions(self.config.call, prompt)
        adapter = self._adapter_factory(session.instructions)
        session.adapter = adapter
        await adapter.connect()
        logger.info(f"Session {session.session_id} connected to speech service")
        return adapter

    def begin_closing(self, session: MediaSession, cause: CloseCause) -> bool:
        """Move to CLOSING. Only the first cause is recorded."""
        if session.state in (SessionState.CLOSING, SessionState.CLOSED):
            return False
        session.state = SessionState.CLOSING
        session.close_cause = cause
        logger.info(f"Session {session.session_id} closing: {cause.value}")
        return True

    async def finish(self, session: MediaSession, telephony: BaseTransport) -> bool:
        """Close both sockets and release the call's prompt. Runs once."""
        if session.state is SessionState.CLOSED:
            return False
        if session.close_cause is None:
            session.close_cause = CloseCause.TELEPHONY_CLOSED
        session.state = SessionState.CLOSED
        session.ended_at = time.time()

        session.transcript.flush()
        try:
            if session.adapter is not None:
                await session.adapter.close()
            await telephony.disconnect()
        finally:
            if session.call_id:
                self.registry.discard(session.call_id)

        logger.info(
            f"Call {session.call_id} ended ({session.close_cause.value}, "
            f"{session.duration_ms}ms). Transcript:\n{session.transcript.format()}"
        )
        return True
