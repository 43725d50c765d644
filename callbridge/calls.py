"""Outbound call control through the Twilio REST API."""

from __future__ import annotations

from typing import Any

from fastapi.concurrency import run_in_threadpool
from loguru import logger
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from callbridge.config import Credentials
from callbridge.errors import TelephonyError


class OutboundDialer:
    """Places and hangs up calls.

    The Twilio client is blocking, so every request runs in the threadpool.

    Args:
        credentials: Account SID, auth token and the caller-id number.
        client: A ready Twilio client; built from ``credentials`` when omitted.
    """

    def __init__(self, credentials: Credentials, client: Any | None = None) -> None:
        self.credentials = credentials
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self.credentials.require("twilio_account_sid", "twilio_auth_token")
            self._client = TwilioClient(
                self.credentials.twilio_account_sid,
                self.credentials.twilio_auth_token,
            )
        return self._client

    async def place_call(self, to: str, webhook_url: str) -> str:
        """Dial ``to``; Twilio fetches TwiML from ``webhook_url`` on answer.

        Returns:
            The call SID.
        """
        try:
            call = await run_in_threadpool(
                self.client.calls.create,
                url=webhook_url,
                to=to,
                from_=self.credentials.twilio_phone_number,
                method="GET",
            )
        except TwilioException as e:
            logger.error(f"Twilio outbound call error: {e}")
            raise TelephonyError(f"Failed to initiate call: {e}") from e

        logger.info(f"Outbound call initiated: {call.sid} -> {to}")
        return call.sid

    async def end_call(self, call_sid: str) -> None:
        """Force the call to ``completed``."""
        try:
            await run_in_threadpool(self.client.calls(call_sid).update, status="completed")
        except TwilioException as e:
            logger.error(f"Twilio hang-up error for {call_sid}: {e}")
            raise TelephonyError(f"Failed to end call: {e}") from e

        logger.info(f"Call {call_sid} terminated")
