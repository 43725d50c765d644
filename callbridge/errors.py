"""Exceptions raised by callbridge.

Every failure is scoped to a single call session; none of these is meant
to take the process down.
"""

from __future__ import annotations


class CallBridgeError(Exception):
    default_detail: str = "Call bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ConfigError(CallBridgeError):
    default_detail = "Invalid configuration."


class MessageParseError(CallBridgeError):
    """An inbound frame could not be decoded. The frame is dropped."""

    default_detail = "Malformed message."


class AdapterConnectError(CallBridgeError):
    """The speech service could not be (re)connected within the retry budget."""

    default_detail = "Speech service connection failed."


class TelephonyError(CallBridgeError):
    default_detail = "Telephony provider request failed."
