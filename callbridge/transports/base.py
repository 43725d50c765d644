"""Base transport interface for callbridge.

Transports handle the raw I/O connection lifecycle. They are responsible
for connecting, sending, receiving, and disconnecting, and they report a
closed peer uniformly through :class:`TransportClosed`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class TransportClosed(Exception):
    """The connection is closed (by either side).

    Attributes:
        code: WebSocket close code, or 1006 when none was received.
        reason: Close reason, if any.
    """

    def __init__(self, code: int | None = None, reason: str = "") -> None:
        self.code = ABNORMAL_CLOSURE if code is None else code
        self.reason = reason
        super().__init__(f"connection closed (code={self.code}, reason={reason!r})")

    @property
    def is_normal(self) -> bool:
        return self.code == NORMAL_CLOSURE


class BaseTransport(ABC):
    """Abstract base class for transport connections.

    Transports manage the network connection to either the telephony
    platform or the speech service. They handle connection lifecycle and
    raw message I/O.
    """

    @abstractmethod
    async def connect(self, **kwargs) -> None:
        """Establish the transport connection.

        Args:
            **kwargs: Transport-specific connection parameters.
        """
        ...

    @abstractmethod
    async def send(self, data: bytes | str) -> None:
        """Send data over the transport.

        Raises:
            TransportClosed: If the connection is closed.
        """
        ...

    @abstractmethod
    async def recv(self) -> bytes | str:
        """Receive the next message from the transport.

        Raises:
            TransportClosed: If the connection is closed.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport connection gracefully. Safe to call twice."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the transport is currently connected."""
        ...
