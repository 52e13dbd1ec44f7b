"""
EV3 Protocol
============

Command and reply layout of the EV3 firmware system commands, and the
EV3 file system operations built on top of them.

Message Layout
--------------
    Command:  [seq lo][seq hi][type][opcode][parameters...]
    Reply:    [seq lo][seq hi][reply type][opcode][status][data...]

The brick echoes the sequence number of the command it answers, which
lets check_for_error() detect a reply that belongs to another exchange.
Every operation uses a fixed sequence number (see Ev3Sequence).

File System
-----------
The EV3 addresses files by absolute path ("/home/root/lms2012/prjs/...")
or by paths relative to the firmware directory ("../prjs/..."). Handles
are returned by the begin operations. Writes move at most 50 bytes and
reads at most 100 bytes per message. A read whose last chunk reaches the
end of file is answered with END_OF_FILE, which is not an error.
"""

import logging
from enum import IntEnum
from typing import Final

from brick_sdk.comms.codec import Command, Reply
from brick_sdk.comms.connection import Connection
from brick_sdk.errors import (
    BrickSdkError,
    Ev3BrickError,
    Ev3ErrorCode,
    check_for_error,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

MAX_WRITE_CHUNK: Final[int] = 50
MAX_READ_CHUNK: Final[int] = 100
MAX_LIST_CHUNK: Final[int] = 1000

# Byte offset of the status in a system reply
STATUS_OFFSET: Final[int] = 4

# Directory holding user projects
PROJECTS_PATH: Final[str] = "/home/root/lms2012/prjs/"


class Ev3CommandType(IntEnum):
    """Type byte of an EV3 command."""

    DIRECT_REPLY = 0x00
    SYSTEM_REPLY = 0x01
    DIRECT_NO_REPLY = 0x80
    SYSTEM_NO_REPLY = 0x81


class Ev3ReplyType(IntEnum):
    """Type byte of an EV3 reply."""

    DIRECT_REPLY = 0x02
    SYSTEM_REPLY = 0x03
    DIRECT_ERROR = 0x04
    SYSTEM_ERROR = 0x05


class Ev3SystemCommand(IntEnum):
    """EV3 system command opcodes."""

    BEGIN_DOWNLOAD = 0x92
    CONTINUE_DOWNLOAD = 0x93
    BEGIN_UPLOAD = 0x94
    CONTINUE_UPLOAD = 0x95
    BEGIN_GET_FILE = 0x96
    CONTINUE_GET_FILE = 0x97
    CLOSE_FILE_HANDLE = 0x98
    LIST_FILES = 0x99
    CONTINUE_LIST_FILES = 0x9A
    CREATE_DIR = 0x9B
    DELETE_FILE = 0x9C
    LIST_OPEN_HANDLES = 0x9D
    WRITE_MAILBOX = 0x9E
    BLUETOOTH_PIN = 0x9F
    ENTER_FW_UPDATE = 0xA0


class Ev3Sequence(IntEnum):
    """Sequence number sent with each operation."""

    BEGIN_WRITE = 100
    CONTINUE_WRITE = 101
    BEGIN_READ = 102
    CONTINUE_READ = 103
    CLOSE_HANDLE = 104
    CREATE_DIR = 105
    DELETE_FILE = 106
    OPEN_HANDLES = 108
    LIST_FILES = 109
    CONTINUE_LIST = 110


# Mailbox writes reuse the BEGIN_WRITE number; kept apart from Ev3Sequence
# so the enum has no aliases
MAILBOX_SEQUENCE: Final[int] = 100


# Status codes that accompany a successful reply
_SUCCESS_STATUSES: Final[frozenset[int]] = frozenset(
    {Ev3ErrorCode.SUCCESS, Ev3ErrorCode.END_OF_FILE}
)


# =============================================================================
# Command and Reply
# =============================================================================

class Ev3Command(Command):
    """
    EV3 system command with sequence, type and opcode already written.

    Example:
        cmd = Ev3Command(Ev3SystemCommand.CREATE_DIR, Ev3Sequence.CREATE_DIR)
        cmd.append_string("/home/root/lms2012/prjs/Demo")
    """

    def __init__(
        self,
        opcode: int,
        sequence_number: int,
        reply_required: bool = True,
    ):
        super().__init__(reply_required)
        self.opcode = opcode
        self.sequence_number = sequence_number
        self.command_type = (
            Ev3CommandType.SYSTEM_REPLY if reply_required
            else Ev3CommandType.SYSTEM_NO_REPLY
        )
        self.append_uint16(sequence_number)
        self.append_byte(self.command_type)
        self.append_byte(opcode)


class Ev3Reply(Reply):
    """Reply in EV3 layout: [seq][seq][type][opcode][status][data...]."""

    error_family = Ev3BrickError

    @property
    def sequence_number(self) -> int:
        return self.get_uint16(0) if len(self) >= 2 else -1

    @property
    def command_type(self) -> int:
        return self.get_byte(2) if len(self) > 2 else 0

    @property
    def command_code(self) -> int:
        return self.get_byte(3) if len(self) > 3 else 0

    @property
    def status(self) -> int:
        if len(self) <= STATUS_OFFSET:
            return Ev3ErrorCode.SUCCESS
        return self.get_byte(STATUS_OFFSET)

    @property
    def has_error(self) -> bool:
        if self.command_type == Ev3ReplyType.DIRECT_ERROR:
            return True
        if self.command_type == Ev3ReplyType.DIRECT_REPLY:
            return False
        return self.status not in _SUCCESS_STATUSES

    @property
    def error_code(self) -> int:
        if self.command_type == Ev3ReplyType.DIRECT_ERROR:
            return Ev3ErrorCode.UNKNOWN_ERROR
        return self.status


# =============================================================================
# File System
# =============================================================================

class Ev3FileSystem:
    """
    File operations on an EV3 brick.

    Implements the begin/continue/close primitives used by
    TransferSession, directory listing for DirectoryWalker, directory and
    file management, and mailbox messages.

    Args:
        connection: Open connection built with Ev3Reply.
    """

    error_family = Ev3BrickError
    max_write_chunk = MAX_WRITE_CHUNK
    max_read_chunk = MAX_READ_CHUNK
    # Opening a file for reading returns the first chunk
    reads_on_open = True

    def __init__(self, connection: Connection):
        self.connection = connection

    def _exchange(self, command: Ev3Command) -> Ev3Reply:
        return self.connection.send_and_receive(command)

    # -------------------------------------------------------------------------
    # Transfer Primitives
    # -------------------------------------------------------------------------

    def begin_write(self, path: str, size: int) -> int:
        """
        Create a file and open it for writing.

        Returns:
            Handle of the open file.
        """
        command = Ev3Command(Ev3SystemCommand.BEGIN_DOWNLOAD, Ev3Sequence.BEGIN_WRITE)
        command.append_uint32(size)
        command.append_string(path)

        reply = self._exchange(command)
        check_for_error(reply, 6, Ev3Sequence.BEGIN_WRITE)
        handle = reply.get_byte(5)
        logger.debug("Opened %s for writing, handle %d", path, handle)
        return handle

    def continue_write(self, handle: int, chunk: bytes) -> int:
        """
        Write one chunk.

        The EV3 does not report a byte count; an accepted chunk is
        accepted whole.
        """
        command = Ev3Command(Ev3SystemCommand.CONTINUE_DOWNLOAD, Ev3Sequence.CONTINUE_WRITE)
        command.append_byte(handle)
        command.append_bytes(chunk)

        reply = self._exchange(command)
        check_for_error(reply, 6, Ev3Sequence.CONTINUE_WRITE)
        return len(chunk)

    def begin_read(self, path: str, max_chunk: int = MAX_READ_CHUNK) -> tuple[int, int, bytes]:
        """
        Open a file for reading.

        Returns:
            (handle, file size, first chunk of at most max_chunk bytes)
        """
        command = Ev3Command(Ev3SystemCommand.BEGIN_UPLOAD, Ev3Sequence.BEGIN_READ)
        command.append_uint16(max_chunk)
        command.append_string(path)

        reply = self._exchange(command)
        check_for_error(reply, 10, Ev3Sequence.BEGIN_READ, exact=False)
        size = reply.get_uint32(5)
        handle = reply.get_byte(9)
        logger.debug("Opened %s for reading, handle %d, %d bytes", path, handle, size)
        return handle, size, reply.get_bytes(10)

    def continue_read(self, handle: int, count: int) -> bytes:
        """
        Read up to count bytes from an open file.

        Raises:
            Ev3BrickError: UNKNOWN_HANDLE if the reply is for another handle.
        """
        command = Ev3Command(Ev3SystemCommand.CONTINUE_UPLOAD, Ev3Sequence.CONTINUE_READ)
        command.append_byte(handle)
        command.append_uint16(count)

        reply = self._exchange(command)
        check_for_error(reply, 6, Ev3Sequence.CONTINUE_READ, exact=False)
        if reply.get_byte(5) != handle:
            raise Ev3BrickError(
                Ev3ErrorCode.UNKNOWN_HANDLE,
                f"reply for handle {reply.get_byte(5)}, expected {handle}",
            )
        return reply.get_bytes(6)

    def close_handle(self, handle: int) -> None:
        """Close a handle. A handle the brick no longer knows is not an error."""
        command = Ev3Command(Ev3SystemCommand.CLOSE_FILE_HANDLE, Ev3Sequence.CLOSE_HANDLE)
        command.append_byte(handle)

        reply = self._exchange(command)
        try:
            check_for_error(reply, 6, Ev3Sequence.CLOSE_HANDLE, exact=False)
        except Ev3BrickError as e:
            if e.code != Ev3BrickError.HANDLE_ALREADY_CLOSED:
                raise
            logger.debug("Handle %d was already closed", handle)

    def _release(self, handle: int) -> None:
        """Close a handle after a failure without raising."""
        try:
            self.close_handle(handle)
        except BrickSdkError as e:
            logger.warning("Error closing handle %d after failed listing: %s", handle, e)

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def list_files(self, path: str) -> str:
        """
        Return the raw listing text of a directory.

        Large listings are fetched in several messages. The handle is
        closed afterwards; the brick usually releases it on its own once
        the end of the listing is reached. If the listing fails part way
        the handle is still closed before the error propagates.
        """
        command = Ev3Command(Ev3SystemCommand.LIST_FILES, Ev3Sequence.LIST_FILES)
        command.append_uint16(MAX_LIST_CHUNK)
        command.append_string(path)

        reply = self._exchange(command)
        check_for_error(reply, 10, Ev3Sequence.LIST_FILES, exact=False)
        total = reply.get_uint32(5)
        handle = reply.get_byte(9)
        text = bytearray(reply.get_bytes(10))

        try:
            while len(text) < total:
                count = min(total - len(text), MAX_LIST_CHUNK)
                more = Ev3Command(Ev3SystemCommand.CONTINUE_LIST_FILES, Ev3Sequence.CONTINUE_LIST)
                more.append_byte(handle)
                more.append_uint16(count)

                reply = self._exchange(more)
                check_for_error(reply, 6, Ev3Sequence.CONTINUE_LIST, exact=False)
                chunk = reply.get_bytes(6)
                if not chunk:
                    break
                text.extend(chunk)

            if len(text) < total:
                raise Ev3BrickError(
                    Ev3ErrorCode.WRONG_NUMBER_OF_BYTES,
                    f"listing of {path} ended after {len(text)} of {total} bytes",
                )
        except BaseException:
            self._release(handle)
            raise

        if reply.status != Ev3ErrorCode.END_OF_FILE:
            self.close_handle(handle)

        return text.decode("utf-8", "replace").rstrip("\x00")

    def open_handles(self) -> bytes:
        """Return the bitmap of open handles reported by the brick."""
        command = Ev3Command(Ev3SystemCommand.LIST_OPEN_HANDLES, Ev3Sequence.OPEN_HANDLES)
        reply = self._exchange(command)
        check_for_error(reply, 5, Ev3Sequence.OPEN_HANDLES, exact=False)
        return reply.get_bytes(5)

    # -------------------------------------------------------------------------
    # Directory and File Management
    # -------------------------------------------------------------------------

    def create_directory(self, path: str) -> None:
        command = Ev3Command(Ev3SystemCommand.CREATE_DIR, Ev3Sequence.CREATE_DIR)
        command.append_string(path)
        reply = self._exchange(command)
        check_for_error(reply, 5, Ev3Sequence.CREATE_DIR)
        logger.info("Created directory %s", path)

    def delete_file(self, path: str) -> None:
        """Delete a file or an empty directory."""
        command = Ev3Command(Ev3SystemCommand.DELETE_FILE, Ev3Sequence.DELETE_FILE)
        command.append_string(path)
        reply = self._exchange(command)
        check_for_error(reply, 5, Ev3Sequence.DELETE_FILE)
        logger.info("Deleted %s", path)

    # -------------------------------------------------------------------------
    # Mailbox
    # -------------------------------------------------------------------------

    def write_mailbox(
        self,
        name: str,
        payload: bytes,
        reply_required: bool = False,
    ) -> None:
        """
        Write a message to a named mailbox of the running program.

        Args:
            name: Mailbox name.
            payload: Message bytes (text messages include their NUL).
            reply_required: Wait for the brick to acknowledge.
        """
        command = Ev3Command(
            Ev3SystemCommand.WRITE_MAILBOX, MAILBOX_SEQUENCE, reply_required
        )
        command.append_byte(len(name) + 1)
        command.append_string(name)
        command.append_uint16(len(payload))
        command.append_bytes(payload)

        if not reply_required:
            self.connection.send(command)
            return

        reply = self._exchange(command)
        check_for_error(reply, 5, MAILBOX_SEQUENCE)
