"""
Brick SDK Error Hierarchy
=========================

This module defines the exception hierarchy for the entire Brick SDK and
the error classifier that turns firmware status bytes into typed errors.
All exceptions inherit from BrickSdkError, allowing callers to catch all
SDK-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
BrickSdkError (base)
├── CommsError (host side communication)
│   ├── TransportError - low-level I/O failure inside a transport
│   ├── ConnectionError - open/write/read/no-reply failures
│   └── TunnelError - failure reported by a TCP tunnel endpoint
└── BrickError (reported by, or about, the brick firmware)
    ├── NxtBrickError - NXT firmware status codes
    └── Ev3BrickError - EV3 firmware status codes

Error Families
--------------
The NXT and EV3 firmwares use disjoint status code spaces, so every
BrickError subclass carries its own IntEnum of codes. A few codes are
produced locally rather than by the firmware (a reply with the wrong
length, an unknown status byte); they are placed outside the range the
firmware uses so they can never collide with a real status.

A connection is bound to one family when it is constructed (see
brick_sdk.comms.connection), so the mapping from a transport failure to
a typed error never depends on runtime type inspection.

Checking Replies
----------------
check_for_error() is the single place that decides whether a reply is
usable:

    reply = connection.send_and_receive(command)
    check_for_error(reply, expected_length=6)
    handle = reply.get_byte(5)

The error flag is checked before the length, and both checks raise
through raise_for_reply(), so a caller can never observe success on a
malformed reply.
"""

from enum import IntEnum
from typing import ClassVar, Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class BrickSdkError(Exception):
    """
    Base exception for all Brick SDK errors.

    All exceptions in the SDK inherit from this class, allowing callers
    to catch all SDK-related errors with a single except clause:

        try:
            session.upload("prog.rxe", data)
        except BrickSdkError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Error Codes
# =============================================================================

class ConnectionErrorCode(IntEnum):
    """Locally detected connection failures."""

    OPEN_ERROR = 0x30
    WRITE_ERROR = 0x31
    READ_ERROR = 0x32
    NO_REPLY = 0x33
    NOT_OPEN = 0x34


class TunnelErrorCode(IntEnum):
    """Failures reported by a TCP tunnel endpoint."""

    UNSUPPORTED_COMMAND = 0x21
    ERROR_EXECUTING = 0x22


class NxtErrorCode(IntEnum):
    """
    NXT firmware status codes.

    The firmware reports these in byte 2 of every reply. 0x01 and 0x02
    are never sent by the brick; they are assigned locally.
    """

    # Local codes
    WRONG_NUMBER_OF_BYTES = 0x01
    UNKNOWN_ERROR_CODE = 0x02

    # Communication / direct command errors
    PENDING_COMMUNICATION = 0x20
    MAILBOX_EMPTY = 0x40

    # File system errors
    NO_MORE_HANDLES = 0x81
    NO_SPACE = 0x82
    NO_MORE_FILES = 0x83
    END_OF_FILE_EXPECTED = 0x84
    END_OF_FILE = 0x85
    NOT_LINEAR_FILE = 0x86
    FILE_NOT_FOUND = 0x87
    HANDLE_ALREADY_CLOSED = 0x88
    NO_LINEAR_SPACE = 0x89
    UNDEFINED_FILE_ERROR = 0x8A
    FILE_IS_BUSY = 0x8B
    NO_WRITE_BUFFERS = 0x8C
    APPEND_NOT_POSSIBLE = 0x8D
    FILE_IS_FULL = 0x8E
    FILE_EXISTS = 0x8F
    MODULE_NOT_FOUND = 0x90
    OUT_OF_BOUNDARY = 0x91
    ILLEGAL_FILE_NAME = 0x92
    ILLEGAL_HANDLE = 0x93

    # Direct command errors
    REQUEST_FAILED = 0xBD
    UNKNOWN_OPCODE = 0xBE
    INSANE_PACKET = 0xBF
    OUT_OF_RANGE = 0xC0
    COMMUNICATION_BUS_ERROR = 0xDD
    NO_FREE_MEMORY_IN_BUFFER = 0xDE
    CHANNEL_NOT_VALID = 0xDF
    CHANNEL_BUSY = 0xE0
    NO_ACTIVE_PROGRAM = 0xEC
    ILLEGAL_SIZE = 0xED
    ILLEGAL_MAILBOX = 0xEE
    INVALID_FIELD = 0xEF
    BAD_INPUT_OUTPUT = 0xF0
    INSUFFICIENT_MEMORY = 0xFB
    BAD_ARGUMENTS = 0xFF


class Ev3ErrorCode(IntEnum):
    """
    EV3 system command status codes.

    0x00-0x0C come from the firmware; 0x20 and above are local.
    """

    SUCCESS = 0x00
    UNKNOWN_HANDLE = 0x01
    HANDLE_NOT_READY = 0x02
    CORRUPT_FILE = 0x03
    NO_HANDLES_AVAILABLE = 0x04
    NO_PERMISSION = 0x05
    ILLEGAL_PATH = 0x06
    FILE_EXISTS = 0x07
    END_OF_FILE = 0x08
    SIZE_ERROR = 0x09
    UNKNOWN_ERROR = 0x0A
    ILLEGAL_FILENAME = 0x0B
    ILLEGAL_CONNECTION = 0x0C

    # Local codes
    WRONG_NUMBER_OF_BYTES = 0x20
    WRONG_SEQUENCE_NUMBER = 0x21
    UNDEFINED_FILE_ERROR = 0x22
    UNKNOWN_ERROR_CODE = 0x23


# =============================================================================
# Descriptions
# =============================================================================

_CONNECTION_DESCRIPTIONS: dict[int, str] = {
    ConnectionErrorCode.OPEN_ERROR: "Failed to open connection",
    ConnectionErrorCode.WRITE_ERROR: "Error sending Brick command",
    ConnectionErrorCode.READ_ERROR: "Error reading Brick reply",
    ConnectionErrorCode.NO_REPLY: "Communication error - no reply from Brick",
    ConnectionErrorCode.NOT_OPEN: "Connection is not open",
}

_TUNNEL_DESCRIPTIONS: dict[int, str] = {
    TunnelErrorCode.UNSUPPORTED_COMMAND: "Tunnel does not support the command",
    TunnelErrorCode.ERROR_EXECUTING: "Tunnel failed to execute command",
}

_NXT_DESCRIPTIONS: dict[int, str] = {
    NxtErrorCode.WRONG_NUMBER_OF_BYTES: "Wrong number of bytes received",
    NxtErrorCode.UNKNOWN_ERROR_CODE: "Unknown error code received from brick",
    NxtErrorCode.PENDING_COMMUNICATION: "Pending communication transaction in progress",
    NxtErrorCode.MAILBOX_EMPTY: "Specified mailbox queue is empty",
    NxtErrorCode.NO_MORE_HANDLES: "No more handles",
    NxtErrorCode.NO_SPACE: "No space",
    NxtErrorCode.NO_MORE_FILES: "No more files",
    NxtErrorCode.END_OF_FILE_EXPECTED: "End of file expected",
    NxtErrorCode.END_OF_FILE: "End of file",
    NxtErrorCode.NOT_LINEAR_FILE: "Not a linear file",
    NxtErrorCode.FILE_NOT_FOUND: "File not found",
    NxtErrorCode.HANDLE_ALREADY_CLOSED: "Handle already closed",
    NxtErrorCode.NO_LINEAR_SPACE: "No linear space",
    NxtErrorCode.UNDEFINED_FILE_ERROR: "Undefined file error",
    NxtErrorCode.FILE_IS_BUSY: "File is busy",
    NxtErrorCode.NO_WRITE_BUFFERS: "No write buffers",
    NxtErrorCode.APPEND_NOT_POSSIBLE: "Append not possible",
    NxtErrorCode.FILE_IS_FULL: "File is full",
    NxtErrorCode.FILE_EXISTS: "File exists",
    NxtErrorCode.MODULE_NOT_FOUND: "Module not found",
    NxtErrorCode.OUT_OF_BOUNDARY: "Out of boundary",
    NxtErrorCode.ILLEGAL_FILE_NAME: "Illegal file name",
    NxtErrorCode.ILLEGAL_HANDLE: "Illegal handle",
    NxtErrorCode.REQUEST_FAILED: "Request failed (file not found?)",
    NxtErrorCode.UNKNOWN_OPCODE: "Unknown command opcode",
    NxtErrorCode.INSANE_PACKET: "Insane packet",
    NxtErrorCode.OUT_OF_RANGE: "Data contains out-of-range values",
    NxtErrorCode.COMMUNICATION_BUS_ERROR: "Communication bus error",
    NxtErrorCode.NO_FREE_MEMORY_IN_BUFFER: "No free memory in communication buffer",
    NxtErrorCode.CHANNEL_NOT_VALID: "Specified channel/connection is not valid",
    NxtErrorCode.CHANNEL_BUSY: "Specified channel/connection not configured or busy",
    NxtErrorCode.NO_ACTIVE_PROGRAM: "No active program",
    NxtErrorCode.ILLEGAL_SIZE: "Illegal size specified",
    NxtErrorCode.ILLEGAL_MAILBOX: "Illegal mailbox queue ID specified",
    NxtErrorCode.INVALID_FIELD: "Attempted to access invalid field of a structure",
    NxtErrorCode.BAD_INPUT_OUTPUT: "Bad input or output specified",
    NxtErrorCode.INSUFFICIENT_MEMORY: "Insufficient memory available",
    NxtErrorCode.BAD_ARGUMENTS: "Bad arguments",
}

_EV3_DESCRIPTIONS: dict[int, str] = {
    Ev3ErrorCode.SUCCESS: "Success",
    Ev3ErrorCode.UNKNOWN_HANDLE: "Unknown handle",
    Ev3ErrorCode.HANDLE_NOT_READY: "Handle not ready",
    Ev3ErrorCode.CORRUPT_FILE: "Corrupt file",
    Ev3ErrorCode.NO_HANDLES_AVAILABLE: "No handles available",
    Ev3ErrorCode.NO_PERMISSION: "No permission",
    Ev3ErrorCode.ILLEGAL_PATH: "Illegal path",
    Ev3ErrorCode.FILE_EXISTS: "File exists",
    Ev3ErrorCode.END_OF_FILE: "End of file",
    Ev3ErrorCode.SIZE_ERROR: "Size error",
    Ev3ErrorCode.UNKNOWN_ERROR: "Unknown error",
    Ev3ErrorCode.ILLEGAL_FILENAME: "Illegal file name",
    Ev3ErrorCode.ILLEGAL_CONNECTION: "Illegal connection",
    Ev3ErrorCode.WRONG_NUMBER_OF_BYTES: "Wrong number of bytes received",
    Ev3ErrorCode.WRONG_SEQUENCE_NUMBER: "Reply sequence number does not match command",
    Ev3ErrorCode.UNDEFINED_FILE_ERROR: "Undefined file error",
    Ev3ErrorCode.UNKNOWN_ERROR_CODE: "Unknown error code received from brick",
}


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(BrickSdkError):
    """Base exception for host side communication errors."""
    pass


class TransportError(CommsError):
    """
    Low-level I/O failure inside a transport.

    Transports wrap library specific exceptions (serial.SerialException,
    usb.core.USBError, OSError) into this class. Connection never lets a
    TransportError reach the caller; it classifies it into a
    ConnectionError first.

    Attributes:
        bytes_read: Bytes successfully read before the failure, if the
                    failure happened during a read.
    """

    def __init__(self, message: str, bytes_read: int = 0):
        self.bytes_read = bytes_read
        super().__init__(message)


class ConnectionError(CommsError):
    """
    Failure opening, writing to, or reading from a brick connection.

    Raised when:
    - The transport cannot be opened (OPEN_ERROR)
    - A command cannot be written (WRITE_ERROR)
    - The brick does not answer at all (NO_REPLY)
    - A reply cannot be read (READ_ERROR)

    Note:
        This is a brick-specific ConnectionError, distinct from the
        Python builtin. It inherits from CommsError for consistent
        error handling in the comms package.
    """

    def __init__(self, code: ConnectionErrorCode, message: str = ""):
        self.code = ConnectionErrorCode(code)
        self.description = _CONNECTION_DESCRIPTIONS[self.code]
        super().__init__(
            f"{self.description}: {message}" if message else self.description
        )


class TunnelError(CommsError):
    """Error reported by a TCP tunnel endpoint rather than the brick."""

    def __init__(self, code: int, message: str = ""):
        self.code = code
        self.description = _TUNNEL_DESCRIPTIONS.get(code, "Unknown tunnel error")
        super().__init__(
            f"{self.description}: {message}" if message else self.description
        )


# =============================================================================
# Brick (Firmware) Exceptions
# =============================================================================

class BrickError(BrickSdkError):
    """
    Error reported by, or about, the brick firmware.

    Subclasses bind a code enumeration and name the members used by the
    rest of the SDK:

    - WRONG_NUMBER_OF_BYTES: reply length differs from the expected one
    - UNDEFINED_FILE_ERROR: a transfer acknowledged fewer bytes than sent
    - HANDLE_ALREADY_CLOSED: tolerated when closing a remote handle
    - UNKNOWN_ERROR_CODE: the brick returned a status we do not know

    Attributes:
        code: Member of the family code enumeration.
        raw_code: The status byte exactly as received.
        description: Human readable description of the code.
    """

    family: ClassVar[str] = ""
    codes: ClassVar[type[IntEnum]]
    descriptions: ClassVar[dict[int, str]] = {}

    WRONG_NUMBER_OF_BYTES: ClassVar[IntEnum]
    UNDEFINED_FILE_ERROR: ClassVar[IntEnum]
    HANDLE_ALREADY_CLOSED: ClassVar[IntEnum]
    UNKNOWN_ERROR_CODE: ClassVar[IntEnum]

    def __init__(self, code: int, message: str = ""):
        self.raw_code = int(code)
        try:
            self.code = self.codes(code)
        except ValueError:
            self.code = self.UNKNOWN_ERROR_CODE
        self.description = self.descriptions.get(self.code, "Unknown error")
        text = self.description
        if self.code == self.UNKNOWN_ERROR_CODE and self.raw_code != self.code:
            text = f"{text} (0x{self.raw_code:02X})"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)

    @classmethod
    def from_code(cls, code: int, message: str = "") -> "BrickError":
        """Build the family error for a raw status byte."""
        return cls(code, message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.name}, raw=0x{self.raw_code:02X})"


class NxtBrickError(BrickError):
    """Error in the NXT firmware code space."""

    family = "NXT"
    codes = NxtErrorCode
    descriptions = _NXT_DESCRIPTIONS

    WRONG_NUMBER_OF_BYTES = NxtErrorCode.WRONG_NUMBER_OF_BYTES
    UNDEFINED_FILE_ERROR = NxtErrorCode.UNDEFINED_FILE_ERROR
    HANDLE_ALREADY_CLOSED = NxtErrorCode.HANDLE_ALREADY_CLOSED
    UNKNOWN_ERROR_CODE = NxtErrorCode.UNKNOWN_ERROR_CODE


class Ev3BrickError(BrickError):
    """Error in the EV3 firmware code space."""

    family = "EV3"
    codes = Ev3ErrorCode
    descriptions = _EV3_DESCRIPTIONS

    WRONG_NUMBER_OF_BYTES = Ev3ErrorCode.WRONG_NUMBER_OF_BYTES
    UNDEFINED_FILE_ERROR = Ev3ErrorCode.UNDEFINED_FILE_ERROR
    # The EV3 reports a handle that was already released as unknown
    HANDLE_ALREADY_CLOSED = Ev3ErrorCode.UNKNOWN_HANDLE
    UNKNOWN_ERROR_CODE = Ev3ErrorCode.UNKNOWN_ERROR_CODE


# =============================================================================
# Error Classifier
# =============================================================================

def raise_for_reply(
    reply,
    code: int,
    message: str = "",
) -> None:
    """
    Raise the family error for a reply.

    This is the single raising path used by check_for_error(), so every
    rejected reply surfaces as the same exception type regardless of
    which check failed.

    Args:
        reply: Reply whose error_family names the exception class.
        code: Family status code to raise.
        message: Optional context appended to the description.

    Raises:
        BrickError: Always (the family subclass).
    """
    raise reply.error_family.from_code(code, message)


def check_for_error(
    reply,
    expected_length: int,
    sequence_number: Optional[int] = None,
    exact: bool = True,
) -> None:
    """
    Verify that a reply carries no error and has the expected shape.

    The checks run in this order, and the first one that fails raises:

    1. The reply's error flag (firmware status)
    2. The reply length
    3. The echoed sequence number (EV3 only, when given)

    Args:
        reply: NXT or EV3 reply to check.
        expected_length: Payload length the command should produce.
        sequence_number: Sequence number the command was sent with.
        exact: If False, expected_length is a minimum (replies that
               carry a variable amount of data).

    Raises:
        BrickError: Family error carrying the firmware status, or one of
                    the local WRONG_NUMBER_OF_BYTES / WRONG_SEQUENCE_NUMBER
                    codes.

    Example:
        >>> check_for_error(reply, 28)           # NXT find first
        >>> check_for_error(reply, 6, 100)       # EV3 begin download
    """
    family = reply.error_family

    if reply.has_error:
        raise_for_reply(reply, reply.error_code)

    length_ok = (
        len(reply) == expected_length if exact
        else len(reply) >= expected_length
    )
    if not length_ok:
        raise_for_reply(
            reply,
            family.WRONG_NUMBER_OF_BYTES,
            f"expected {expected_length}, got {len(reply)}",
        )

    if sequence_number is not None and reply.sequence_number != sequence_number:
        raise_for_reply(
            reply,
            Ev3ErrorCode.WRONG_SEQUENCE_NUMBER,
            f"expected {sequence_number}, got {reply.sequence_number}",
        )
