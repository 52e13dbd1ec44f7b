"""
Brick SDK Configuration
=======================

Connection settings shared by the command-line tool and scripts. Values
come from, in increasing priority:

1. The defaults below
2. Environment variables (BrickConfig.from_env)
3. Explicit command-line options

Environment variables (all optional):
    BRICK_TRANSPORT: serial, usb or tunnel
    BRICK_FAMILY: nxt or ev3
    BRICK_PORT: Serial device path (e.g., /dev/rfcomm0)
    BRICK_HOST: Tunnel host name
    BRICK_TCP_PORT: Tunnel TCP port
    BRICK_TIMEOUT: Read/write timeout in seconds
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Final, Optional

from brick_sdk.comms.connection import SETTLE_DELAY
from brick_sdk.comms.transport import DEFAULT_TIMEOUT
from brick_sdk.comms.tunnel import DEFAULT_TUNNEL_PORT

logger = logging.getLogger(__name__)


TRANSPORTS: Final[tuple[str, ...]] = ("serial", "usb", "tunnel")
FAMILIES: Final[tuple[str, ...]] = ("nxt", "ev3")


@dataclass(frozen=True)
class BrickConfig:
    """
    Settings needed to reach a brick.

    Attributes:
        transport: Transport name (one of TRANSPORTS).
        family: Firmware family (one of FAMILIES).
        port: Serial device; auto-detected when None.
        host: Tunnel host (tunnel transport only).
        tcp_port: Tunnel TCP port.
        timeout: Read/write timeout in seconds.
        settle_delay: Wait after opening the connection, in seconds.
    """

    transport: str = "serial"
    family: str = "nxt"
    port: Optional[str] = None
    host: Optional[str] = None
    tcp_port: int = DEFAULT_TUNNEL_PORT
    timeout: float = DEFAULT_TIMEOUT
    settle_delay: float = SETTLE_DELAY

    @classmethod
    def from_env(cls) -> "BrickConfig":
        """
        Create a BrickConfig from environment variables.

        Invalid values are ignored and the default is kept.
        """
        config = cls()

        if transport := os.environ.get("BRICK_TRANSPORT"):
            if transport.lower() in TRANSPORTS:
                config = replace(config, transport=transport.lower())
            else:
                logger.warning("Ignoring BRICK_TRANSPORT=%r", transport)

        if family := os.environ.get("BRICK_FAMILY"):
            if family.lower() in FAMILIES:
                config = replace(config, family=family.lower())
            else:
                logger.warning("Ignoring BRICK_FAMILY=%r", family)

        if port := os.environ.get("BRICK_PORT"):
            config = replace(config, port=port)

        if host := os.environ.get("BRICK_HOST"):
            config = replace(config, host=host)

        if tcp_port := os.environ.get("BRICK_TCP_PORT"):
            try:
                config = replace(config, tcp_port=int(tcp_port))
            except ValueError:
                logger.warning("Ignoring BRICK_TCP_PORT=%r", tcp_port)

        if timeout := os.environ.get("BRICK_TIMEOUT"):
            try:
                config = replace(config, timeout=float(timeout))
            except ValueError:
                logger.warning("Ignoring BRICK_TIMEOUT=%r", timeout)

        return config

    def merged(self, **overrides) -> "BrickConfig":
        """Return a copy with every override that is not None applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)
