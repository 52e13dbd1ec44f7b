"""
Brick SDK - Protocol Stack for LEGO Mindstorms NXT and EV3
==========================================================

This package lets a host computer talk to NXT and EV3 bricks over
Bluetooth (serial), USB, or a TCP tunnel. It covers the protocol layer
only: message encoding, connections, the firmware error taxonomy, and
chunked file transfer with remote directory walking.

Main Components
---------------
- **comms**: Codec, transports, connection, NXT/EV3 file systems,
  transfer session and directory walker
- **errors**: Exception hierarchy and the reply error classifier
- **config**: Connection settings from defaults and the environment
- **cli**: The `bricklink` command-line tool

Quick Start
-----------
Upload a program to an NXT:
    >>> from brick_sdk import Connection, NxtFileSystem, NxtReply
    >>> from brick_sdk import SerialTransport, TransferSession
    >>> with Connection(SerialTransport("/dev/rfcomm0"), NxtReply) as conn:
    ...     TransferSession(NxtFileSystem(conn)).upload_file("robot.rxe")

Or use the command-line tool:
    $ bricklink --port /dev/rfcomm0 upload robot.rxe
    $ bricklink --transport usb --family ev3 tree /home/root/lms2012/prjs/
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from brick_sdk.errors import (
    BrickSdkError,
    CommsError,
    TransportError,
    ConnectionError as BrickConnectionError,  # Avoid collision with builtin
    ConnectionErrorCode,
    TunnelError,
    TunnelErrorCode,
    BrickError,
    NxtBrickError,
    NxtErrorCode,
    Ev3BrickError,
    Ev3ErrorCode,
    check_for_error,
)

from brick_sdk.comms import (
    Command,
    Reply,
    ElementKind,
    Connection,
    Transport,
    LoopbackTransport,
    SerialTransport,
    UsbTransport,
    TunnelTransport,
    NxtCommand,
    NxtReply,
    NxtFileSystem,
    Ev3Command,
    Ev3Reply,
    Ev3FileSystem,
    TransferSession,
    DirectoryWalker,
    FolderStructure,
    RemoteFile,
    FileType,
    list_serial_ports,
)

from brick_sdk.config import BrickConfig

__all__ = [
    "__version__",
    # Errors
    "BrickSdkError",
    "CommsError",
    "TransportError",
    "BrickConnectionError",
    "ConnectionErrorCode",
    "TunnelError",
    "TunnelErrorCode",
    "BrickError",
    "NxtBrickError",
    "NxtErrorCode",
    "Ev3BrickError",
    "Ev3ErrorCode",
    "check_for_error",
    # Communication
    "Command",
    "Reply",
    "ElementKind",
    "Connection",
    "Transport",
    "LoopbackTransport",
    "SerialTransport",
    "UsbTransport",
    "TunnelTransport",
    "NxtCommand",
    "NxtReply",
    "NxtFileSystem",
    "Ev3Command",
    "Ev3Reply",
    "Ev3FileSystem",
    "TransferSession",
    "DirectoryWalker",
    "FolderStructure",
    "RemoteFile",
    "FileType",
    "list_serial_ports",
    # Configuration
    "BrickConfig",
]
