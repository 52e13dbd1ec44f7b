"""
Serial and Bluetooth Transport
==============================

NXT and EV3 bricks expose a Bluetooth Serial Port Profile channel. Once
the brick is paired, the operating system presents it as an ordinary
serial device:

- Linux: /dev/rfcomm0 (after `rfcomm bind`)
- macOS: /dev/tty.NXT-DevB, /dev/tty.EV3-SerialPort
- Windows: an outgoing COM port

This module provides:

- Port enumeration and detection of likely brick ports
- SerialTransport, a length-prefixed Transport built on pyserial

Serial Port Settings
--------------------
The baud rate of a Bluetooth virtual port is not used by the radio link,
so any value the driver accepts works. Reads and writes both time out
after 5 seconds by default; a brick that has not answered by then is
reported as "no reply" by the Connection.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from brick_sdk.comms.transport import DEFAULT_TIMEOUT, Transport
from brick_sdk.errors import TransportError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Default baud rate (ignored by Bluetooth virtual ports)
DEFAULT_BAUD_RATE: Final[int] = 115200

# Substrings that identify a port as a likely brick connection
BRICK_PORT_HINTS: Final[tuple[str, ...]] = ("rfcomm", "nxt", "ev3", "bluetooth")

# LEGO USB vendor id, reported by some CDC drivers
LEGO_VENDOR_ID: Final[int] = 0x0694


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    Information about an available serial port.

    Attributes:
        device: System device path (e.g., '/dev/rfcomm0', 'COM5')
        description: Human-readable description from the driver
        manufacturer: Device manufacturer (if available)
        vid: USB Vendor ID (None for non-USB ports)
        pid: USB Product ID (None for non-USB ports)
    """

    device: str
    description: str
    manufacturer: Optional[str] = None
    vid: Optional[int] = None
    pid: Optional[int] = None

    @property
    def is_brick(self) -> bool:
        """Return True if the port looks like a brick connection."""
        if self.vid == LEGO_VENDOR_ID:
            return True
        text = f"{self.device} {self.description}".lower()
        return any(hint in text for hint in BRICK_PORT_HINTS)

    def __str__(self) -> str:
        parts = [self.device]
        if self.description:
            parts.append(f"- {self.description}")
        if self.is_brick:
            parts.append("(brick)")
        return " ".join(parts)


# =============================================================================
# Port Enumeration
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """
    List all available serial ports on the system.

    Returns:
        List of PortInfo objects describing available ports.

    Example:
        >>> for port in list_serial_ports():
        ...     print(f"{port.device}: {port.description}")
        /dev/rfcomm0: NXT
        /dev/ttyS0: ttyS0
    """
    ports = []

    for port in serial.tools.list_ports.comports():
        info = PortInfo(
            device=port.device,
            description=port.description or "",
            manufacturer=port.manufacturer,
            vid=port.vid,
            pid=port.pid,
        )
        ports.append(info)
        logger.debug("Found port: %s (%s)", port.device, info.description)

    return ports


def find_brick_port() -> Optional[str]:
    """
    Attempt to auto-detect the serial port of a paired brick.

    Returns:
        Device path of the first port that looks like a brick, or None.
    """
    for port in list_serial_ports():
        if port.is_brick:
            logger.info("Auto-detected brick port: %s", port.device)
            return port.device

    logger.debug("No brick port found")
    return None


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """
    Format a list of ports for display to the user.

    Args:
        ports: List of PortInfo objects to format.
        verbose: If True, include manufacturer and USB ids.

    Returns:
        Formatted string with one port per line.
    """
    if not ports:
        return "No serial ports found."

    lines = []
    for port in ports:
        line = f"  {port}"
        if verbose:
            if port.manufacturer:
                line += f"\n    Manufacturer: {port.manufacturer}"
            if port.vid is not None and port.pid is not None:
                line += f"\n    USB VID:PID: {port.vid:04X}:{port.pid:04X}"
        lines.append(line)

    return "\n".join(lines)


def describe_open_error(device: str, error: Exception) -> str:
    """
    Turn a failure to open a port into a message with a likely fix.

    Bluetooth ports fail differently from wired ones: the RFCOMM device
    node only exists once it is bound to the brick's address, and the
    connection itself is made when the port is opened, so a brick that
    is switched off shows up as a refused or timed out open.
    """
    text = str(error).lower()
    is_rfcomm = "rfcomm" in device

    if "permission denied" in text:
        return (
            f"No access to {device}. RFCOMM and USB serial devices belong to "
            "the 'dialout' group; add your user with "
            "'sudo usermod -a -G dialout $USER' and log in again."
        )
    if "no such file" in text or "not found" in text:
        if is_rfcomm:
            return (
                f"{device} does not exist. Bind the paired brick first: "
                f"'sudo rfcomm bind {device} <brick address>'."
            )
        return (
            f"Serial port not found: {device}. "
            "Use 'bricklink ports' to list available ports."
        )
    if "refused" in text or "host is down" in text or "timed out" in text:
        return (
            f"The brick did not accept the Bluetooth connection on {device}. "
            "Check that it is switched on, paired, and has Bluetooth enabled."
        )
    if "busy" in text or "in use" in text:
        return (
            f"{device} is in use. Another program may hold the connection, "
            "or the brick is connected to a different host."
        )
    return f"Cannot open {device}: {error}"


# =============================================================================
# Serial Transport
# =============================================================================

class SerialTransport(Transport):
    """
    Length-prefixed transport over a serial or Bluetooth port.

    Example:
        transport = SerialTransport("/dev/rfcomm0")
        with Connection(transport, NxtReply) as conn:
            reply = conn.send_and_receive(command)
    """

    length_prefixed = True

    def __init__(
        self,
        device: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(timeout)
        self.device = device
        self.baud_rate = baud_rate
        self._port: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    def open(self) -> None:
        """
        Open and configure the port.

        Raises:
            TransportError: If the port cannot be opened, with a hint for
                            the common causes.
        """
        logger.info("Opening serial port: %s", self.device)

        try:
            self._port = serial.Serial(
                port=self.device,
                baudrate=self.baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
            self._port.reset_input_buffer()
        except serial.SerialException as e:
            raise TransportError(describe_open_error(self.device, e)) from e

        logger.debug("Port opened: %s (timeout=%.1f)", self.device, self.timeout)

    def close(self) -> None:
        if self._port is None:
            return
        port, self._port = self._port, None
        try:
            port.close()
        except serial.SerialException as e:
            raise TransportError(f"Error closing {self.device}: {e}") from e
        logger.debug("Serial port closed")

    def write(self, data: bytes) -> None:
        if self._port is None:
            raise TransportError(f"Serial port {self.device} is not open")
        try:
            self._port.write(data)
            self._port.flush()
        except serial.SerialException as e:
            raise TransportError(f"Write to {self.device} failed: {e}") from e

    def read(self, size: int) -> bytes:
        if self._port is None:
            raise TransportError(f"Serial port {self.device} is not open")
        try:
            return self._port.read(size)
        except serial.SerialException as e:
            raise TransportError(f"Read from {self.device} failed: {e}") from e
