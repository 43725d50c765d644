"""Base serializer interface for the telephony side.

Serializers are pure message translators with no I/O: they convert
between a telephony platform's media-stream wire format and callbridge's
unified event model.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from callbridge.core.events import AnyEvent


class BaseSerializer(ABC):
    """Abstract base class for telephony media-stream serializers.

    Key principles:
    - Serializers do NO I/O (no network calls, no file access)
    - Per-stream state is limited to the stream id used as a fallback
      for frames that omit it
    - Audio payloads are never decoded; they pass through opaquely
    """

    @abstractmethod
    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        """Parse a raw message from the telephony platform into events.

        Args:
            raw: The raw WebSocket frame (bytes / str) or already-parsed JSON.

        Returns:
            List of events. Empty list if the message should be ignored.

        Raises:
            MessageParseError: If the frame is not a valid message.
        """
        ...

    @abstractmethod
    async def serialize(self, event: AnyEvent) -> str | None:
        """Convert an event to the platform's wire format.

        Returns:
            The serialized message, or None if this event type has no
            outbound representation.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this serializer (e.g., 'twilio')."""
        ...
