"""
TCP Tunnel Transport
====================

A tunnel is a relay program (typically on a phone or a second computer
paired with the brick) that accepts TCP connections and forwards brick
messages over its own Bluetooth or USB link.

The tunnel defines its own message boundaries, so this transport is
pass-through: the Connection writes payloads without a length header,
and each read() returns the next segment received from the socket.
"""

import logging
import socket
from typing import Final, Optional

from brick_sdk.comms.transport import DEFAULT_TIMEOUT, Transport
from brick_sdk.errors import TransportError

# Configure module logger
logger = logging.getLogger(__name__)


# Default port the tunnel listens on
DEFAULT_TUNNEL_PORT: Final[int] = 1500

# Timeout for establishing the TCP connection (seconds)
CONNECT_TIMEOUT: Final[float] = 5.0


class TunnelTransport(Transport):
    """
    Pass-through transport over a TCP connection to a tunnel.

    Args:
        host: Tunnel host name or IP address.
        port: Tunnel TCP port.
        timeout: Read timeout in seconds.
    """

    length_prefixed = False

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_TUNNEL_PORT,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(timeout)
        self.host = host
        self.port = port
        self._socket: Optional[socket.socket] = None

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    def open(self) -> None:
        logger.info("Connecting to tunnel at %s:%d", self.host, self.port)
        try:
            sock = socket.create_connection(
                (self.host, self.port), timeout=CONNECT_TIMEOUT
            )
        except OSError as e:
            raise TransportError(
                f"Cannot connect to tunnel {self.host}:{self.port}: {e}"
            ) from e

        # Brick messages are small; send them without Nagle delay
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(self.timeout)
        self._socket = sock
        logger.debug("Tunnel connection established")

    def close(self) -> None:
        if self._socket is None:
            return
        sock, self._socket = self._socket, None
        try:
            sock.close()
        except OSError as e:
            raise TransportError(f"Error closing tunnel socket: {e}") from e
        logger.debug("Tunnel connection closed")

    def write(self, data: bytes) -> None:
        if self._socket is None:
            raise TransportError("Tunnel is not connected")
        try:
            self._socket.sendall(data)
        except OSError as e:
            raise TransportError(f"Tunnel write failed: {e}") from e

    def read(self, size: int) -> bytes:
        """Return the next received segment (at most size bytes)."""
        if self._socket is None:
            raise TransportError("Tunnel is not connected")
        try:
            return self._socket.recv(size)
        except socket.timeout:
            return b""
        except OSError as e:
            raise TransportError(f"Tunnel read failed: {e}") from e
