"""
Brick Communication Module
==========================

This module provides the protocol stack for talking to LEGO Mindstorms
NXT and EV3 bricks: message encoding, transports, connections and file
transfer.

Module Structure
----------------
- **codec**: Command / Reply encoding, ElementKind
- **transport**: Transport base class and the in-process loopback
- **serial**: Serial / Bluetooth transport and port enumeration
- **usb**: USB transport (pyusb)
- **tunnel**: TCP tunnel transport
- **connection**: Length framing and failure classification
- **nxt** / **ev3**: Firmware message layouts and file systems
- **transfer**: Chunked upload / download
- **files**: Remote file models and the directory walker

Quick Start
-----------
**Uploading a program to an NXT over Bluetooth**:

    from brick_sdk.comms import (
        Connection,
        NxtFileSystem,
        NxtReply,
        SerialTransport,
        TransferSession,
    )

    with Connection(SerialTransport("/dev/rfcomm0"), NxtReply) as conn:
        session = TransferSession(NxtFileSystem(conn))
        session.upload_file("robot.rxe")

**Walking the projects folder of an EV3 over USB**:

    from brick_sdk.comms import (
        EV3_USB, Connection, DirectoryWalker, Ev3FileSystem, Ev3Reply,
        UsbTransport,
    )

    with Connection(UsbTransport(EV3_USB), Ev3Reply) as conn:
        tree = DirectoryWalker(Ev3FileSystem(conn)).walk("/home/root/lms2012/prjs/")
        for folder in tree.run_through_folders():
            print(folder.path)

Error Handling
--------------
All errors inherit from `BrickSdkError` (see `brick_sdk.errors`):

- `ConnectionError`: open / write / read / no-reply failures
- `NxtBrickError` / `Ev3BrickError`: firmware status codes

Thread Safety
-------------
Connections are NOT thread-safe and carry one exchange at a time. Use
only from a single thread, or protect all calls with external
synchronization.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Message codec
from brick_sdk.comms.codec import (
    BYTE,
    ELEMENT_KINDS,
    FLOAT,
    INT,
    SHORT,
    Command,
    ElementKind,
    Reply,
)

# Transports
from brick_sdk.comms.transport import (
    DEFAULT_TIMEOUT,
    LoopbackTransport,
    Transport,
)
from brick_sdk.comms.serial import (
    DEFAULT_BAUD_RATE,
    PortInfo,
    SerialTransport,
    find_brick_port,
    format_port_list,
    list_serial_ports,
)
from brick_sdk.comms.usb import (
    EV3_USB,
    NXT_USB,
    UsbProfile,
    UsbTransport,
    find_usb_brick,
)
from brick_sdk.comms.tunnel import (
    DEFAULT_TUNNEL_PORT,
    TunnelTransport,
)

# Connection
from brick_sdk.comms.connection import (
    SETTLE_DELAY,
    Connection,
    decode_length,
    encode_length,
)

# Firmware families
from brick_sdk.comms.nxt import (
    FileMode,
    NxtCommand,
    NxtCommandType,
    NxtFileSystem,
    NxtReply,
    NxtSystemCommand,
)
from brick_sdk.comms.ev3 import (
    MAILBOX_SEQUENCE,
    PROJECTS_PATH,
    Ev3Command,
    Ev3CommandType,
    Ev3FileSystem,
    Ev3Reply,
    Ev3ReplyType,
    Ev3Sequence,
    Ev3SystemCommand,
)

# Transfer and files
from brick_sdk.comms.transfer import (
    FileProtocol,
    ProgressCallback,
    TransferSession,
)
from brick_sdk.comms.files import (
    DirectoryWalker,
    FileType,
    FolderStructure,
    Listing,
    RemoteFile,
    join_path,
    parse_listing,
)

__all__ = [
    # Codec
    "Command",
    "Reply",
    "ElementKind",
    "ELEMENT_KINDS",
    "BYTE",
    "SHORT",
    "INT",
    "FLOAT",
    # Transports
    "Transport",
    "LoopbackTransport",
    "SerialTransport",
    "UsbTransport",
    "UsbProfile",
    "NXT_USB",
    "EV3_USB",
    "TunnelTransport",
    "DEFAULT_TIMEOUT",
    "DEFAULT_BAUD_RATE",
    "DEFAULT_TUNNEL_PORT",
    "PortInfo",
    "list_serial_ports",
    "find_brick_port",
    "find_usb_brick",
    "format_port_list",
    # Connection
    "Connection",
    "SETTLE_DELAY",
    "encode_length",
    "decode_length",
    # NXT
    "NxtCommand",
    "NxtCommandType",
    "NxtReply",
    "NxtSystemCommand",
    "NxtFileSystem",
    "FileMode",
    # EV3
    "Ev3Command",
    "Ev3CommandType",
    "Ev3Reply",
    "Ev3ReplyType",
    "Ev3Sequence",
    "Ev3SystemCommand",
    "Ev3FileSystem",
    "PROJECTS_PATH",
    "MAILBOX_SEQUENCE",
    # Transfer
    "FileProtocol",
    "ProgressCallback",
    "TransferSession",
    # Files
    "FileType",
    "RemoteFile",
    "FolderStructure",
    "Listing",
    "DirectoryWalker",
    "join_path",
    "parse_listing",
]
