"""
Transport Abstraction
=====================

A transport is the physical or logical channel a Connection rides on.
Every transport offers the same small capability set:

- open() / close()
- write(data): send raw bytes, raising TransportError on failure
- read(size): return up to size bytes, fewer if the read timed out,
  raising TransportError on an I/O failure

Transports know nothing about commands or replies. The length_prefixed
flag tells the Connection whether it must add the 2-byte length header
itself (serial, USB, loopback) or whether the channel passes payloads
through unchanged (TCP tunnel).

This module also provides LoopbackTransport, an in-process transport
that hands written bytes back to the reader. It is used to test code
built on top of Connection without real hardware.
"""

import logging
from abc import ABC, abstractmethod
from typing import Final

from brick_sdk.errors import TransportError

# Configure module logger
logger = logging.getLogger(__name__)


# Default read/write timeout in seconds
DEFAULT_TIMEOUT: Final[float] = 5.0


# =============================================================================
# Transport Base Class
# =============================================================================

class Transport(ABC):
    """
    Abstract byte channel to a brick.

    Subclasses implement open/close/write/read. Reads block for at most
    the transport's timeout and return what arrived, which may be fewer
    bytes than requested (including none).
    """

    # True if the Connection must prefix every message with its length
    length_prefixed: bool = True

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Return True while the channel is open."""

    @abstractmethod
    def open(self) -> None:
        """Open the channel. Raises TransportError on failure."""

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Raises TransportError on failure."""

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Write all of data. Raises TransportError on failure."""

    @abstractmethod
    def read(self, size: int) -> bytes:
        """Read up to size bytes, returning fewer on timeout."""

    def end_of_message(self) -> None:
        """Called by Connection after a complete reply has been read."""

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"{type(self).__name__}({state})"


# =============================================================================
# Loopback Transport
# =============================================================================

class LoopbackTransport(Transport):
    """
    In-process transport for tests.

    With echo enabled (the default) every written byte becomes readable,
    so a framed message sent through a Connection is received back
    unchanged. With echo disabled only bytes passed to feed() are
    readable, which lets a test double script brick replies.

    Attributes:
        written: Every buffer passed to write(), in order.

    Example:
        transport = LoopbackTransport()
        conn = Connection(transport, NxtReply, settle_delay=0)
        conn.open()
        reply = conn.send_and_receive(command)   # reply.data == command.data
    """

    def __init__(self, echo: bool = True, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self.echo = echo
        self.written: list[bytes] = []
        self._pending = bytearray()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def pending(self) -> int:
        """Number of bytes waiting to be read."""
        return len(self._pending)

    def open(self) -> None:
        self._open = True
        logger.debug("Loopback opened")

    def close(self) -> None:
        self._open = False
        self._pending.clear()
        logger.debug("Loopback closed")

    def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("Loopback is not open")
        self.written.append(bytes(data))
        if self.echo:
            self._pending.extend(data)

    def read(self, size: int) -> bytes:
        if not self._open:
            raise TransportError("Loopback is not open")
        chunk = bytes(self._pending[:size])
        del self._pending[:size]
        return chunk

    def feed(self, data: bytes) -> None:
        """Make data available to the next read() calls."""
        self._pending.extend(data)
