"""
Brick Connection
================

This module turns Command and Reply objects into transport traffic. It
handles:

- Length framing for transports that need it
- The open/close state machine
- Classification of transport failures into typed errors

Wire Format
-----------
On serial/Bluetooth, USB and loopback transports every message in both
directions carries a 2-byte little-endian length header:

    ┌───────────┬───────────┬──────────────────────┐
    │  len lo   │  len hi   │   payload (len B)    │
    └───────────┴───────────┴──────────────────────┘

receive() reads exactly the two header bytes first, then exactly the
announced number of payload bytes. On a TCP tunnel the payload is sent
as-is and one transport read is one reply.

Failure Classification
----------------------
- open fails                        -> ConnectionError(OPEN_ERROR)
- write fails                       -> ConnectionError(WRITE_ERROR)
- no header byte before timeout     -> ConnectionError(NO_REPLY)
- payload shorter than announced    -> family WRONG_NUMBER_OF_BYTES
- any other read failure            -> ConnectionError(READ_ERROR)

The family error class comes from the reply type the connection is built
with (NxtReply -> NxtBrickError, Ev3Reply -> Ev3BrickError), so it is
fixed when the connection is constructed.

Concurrency
-----------
A connection carries one exchange at a time and is not thread-safe.
Callers issuing request/reply pairs should use send_and_receive().
"""

import logging
import struct
import time
from typing import Final

from brick_sdk.comms.codec import Command, Reply
from brick_sdk.comms.transport import Transport
from brick_sdk.errors import (
    ConnectionError,
    ConnectionErrorCode,
    TransportError,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Size of the length header on framed transports
HEADER_SIZE: Final[int] = 2

# Largest payload a length header can describe
MAX_PAYLOAD_SIZE: Final[int] = 0xFFFF

# Wait after opening before the first command (seconds)
SETTLE_DELAY: Final[float] = 1.0

# Read size for pass-through transports
MAX_UNFRAMED_REPLY: Final[int] = 1024


def encode_length(length: int) -> bytes:
    """Encode a payload length as the 2-byte little-endian header."""
    if not 0 <= length <= MAX_PAYLOAD_SIZE:
        raise ValueError(
            f"Payload too large: {length} bytes, maximum {MAX_PAYLOAD_SIZE}"
        )
    return struct.pack("<H", length)


def decode_length(header: bytes) -> int:
    """Decode the 2-byte little-endian length header."""
    return struct.unpack("<H", header)[0]


# =============================================================================
# Connection
# =============================================================================

class Connection:
    """
    A connection to one brick over one transport.

    Args:
        transport: The channel to use. The connection owns it from
                   open() to close().
        reply_type: Reply class for this firmware family (NxtReply or
                    Ev3Reply). Selects the error family.
        settle_delay: Seconds to wait after opening. Defaults to
                      SETTLE_DELAY; tests pass 0.

    Example:
        transport = SerialTransport("/dev/rfcomm0")
        with Connection(transport, NxtReply) as conn:
            reply = conn.send_and_receive(command)
    """

    def __init__(
        self,
        transport: Transport,
        reply_type: type[Reply],
        settle_delay: float = SETTLE_DELAY,
    ):
        if reply_type.error_family is None:
            raise TypeError(
                f"{reply_type.__name__} does not name an error family"
            )
        self.transport = transport
        self.reply_type = reply_type
        self.settle_delay = settle_delay
        self._open = False

    @property
    def error_family(self):
        """Brick error class used for family specific failures."""
        return self.reply_type.error_family

    @property
    def is_open(self) -> bool:
        return self._open

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    def open(self) -> None:
        """
        Open the transport and wait for it to settle.

        Raises:
            ConnectionError: OPEN_ERROR if the transport cannot be opened.
        """
        if self._open:
            logger.debug("Connection already open")
            return

        try:
            self.transport.open()
        except TransportError as e:
            raise ConnectionError(ConnectionErrorCode.OPEN_ERROR, str(e)) from e

        self._open = True
        logger.info("Connection open on %r", self.transport)

        if self.settle_delay > 0:
            time.sleep(self.settle_delay)

    def close(self) -> None:
        """
        Close the transport.

        Failures while closing are logged and ignored; the connection is
        marked closed regardless.
        """
        self._open = False
        try:
            self.transport.close()
        except TransportError as e:
            logger.warning("Error closing transport: %s", e)
        logger.info("Connection closed")

    def __enter__(self) -> "Connection":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> None:
        if not self._open:
            raise ConnectionError(ConnectionErrorCode.NOT_OPEN)

    # -------------------------------------------------------------------------
    # Message Exchange
    # -------------------------------------------------------------------------

    def send(self, command: Command) -> None:
        """
        Send a command.

        The command is marked as sent and cannot be appended to again.

        Raises:
            ConnectionError: NOT_OPEN if the connection is closed,
                             WRITE_ERROR if the transport write fails.
            ValueError: If the payload is too large to frame.
        """
        self._require_open()

        payload = command.data
        if self.transport.length_prefixed:
            frame = encode_length(len(payload)) + payload
        else:
            frame = payload

        logger.debug("Sending %d bytes: %s", len(frame), frame.hex())

        try:
            self.transport.write(frame)
        except TransportError as e:
            raise ConnectionError(ConnectionErrorCode.WRITE_ERROR, str(e)) from e

        command.mark_sent()

    def receive(self) -> Reply:
        """
        Receive one reply.

        Returns:
            Reply of this connection's reply_type.

        Raises:
            ConnectionError: NOT_OPEN, NO_REPLY or READ_ERROR.
            BrickError: Family WRONG_NUMBER_OF_BYTES if the payload is
                        shorter than its header announced.
        """
        self._require_open()

        if self.transport.length_prefixed:
            payload = self._receive_framed()
        else:
            payload = self._receive_unframed()

        self.transport.end_of_message()
        logger.debug("Received %d bytes: %s", len(payload), payload.hex())
        return self.reply_type(payload)

    def send_and_receive(self, command: Command) -> Reply:
        """Send a command and return the reply to it."""
        self.send(command)
        return self.receive()

    def _receive_framed(self) -> bytes:
        try:
            header = self.transport.read(HEADER_SIZE)
        except TransportError as e:
            if e.bytes_read == 0:
                raise ConnectionError(ConnectionErrorCode.NO_REPLY, str(e)) from e
            raise ConnectionError(ConnectionErrorCode.READ_ERROR, str(e)) from e

        if len(header) == 0:
            raise ConnectionError(ConnectionErrorCode.NO_REPLY)
        if len(header) != HEADER_SIZE:
            raise ConnectionError(
                ConnectionErrorCode.READ_ERROR,
                f"incomplete length header ({len(header)} byte)",
            )

        expected = decode_length(header)

        try:
            payload = self.transport.read(expected)
        except TransportError as e:
            raise ConnectionError(ConnectionErrorCode.READ_ERROR, str(e)) from e

        if len(payload) != expected:
            family = self.error_family
            raise family(
                family.WRONG_NUMBER_OF_BYTES,
                f"expected {expected}, got {len(payload)}",
            )
        return payload

    def _receive_unframed(self) -> bytes:
        try:
            payload = self.transport.read(MAX_UNFRAMED_REPLY)
        except TransportError as e:
            raise ConnectionError(ConnectionErrorCode.READ_ERROR, str(e)) from e

        if not payload:
            raise ConnectionError(ConnectionErrorCode.NO_REPLY)
        return payload

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return (
            f"Connection({self.transport!r}, "
            f"family={self.error_family.family}, {state})"
        )
