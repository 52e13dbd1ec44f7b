"""
NXT Protocol
============

Command and reply layout of the NXT firmware, and the NXT file system
operations built on top of them.

Message Layout
--------------
    Command:  [type][opcode][parameters...]
    Reply:    [0x02][opcode][status][data...]

The type byte selects direct or system commands; setting bit 7 asks the
brick not to answer. A non-zero status byte is an NxtErrorCode.

File System
-----------
The NXT addresses files by name (at most 19 characters, always sent as
a zero padded 20 byte field) and by the handle an open call returns.
Writes and reads move at most 50 bytes per message. Files are written
in one of three modes:

- FRAGMENTED: ordinary files (sounds, data)
- NON_FRAGMENTED: linear files that the firmware executes or maps in
  place (.rxe programs, .ric graphics)
- DATA: datalog files that can be appended to later
"""

import logging
from enum import Enum, IntEnum
from typing import Final, Optional

from brick_sdk.comms.codec import Command, Reply
from brick_sdk.comms.connection import Connection
from brick_sdk.comms.files import RemoteFile, file_extension
from brick_sdk.errors import (
    NxtBrickError,
    NxtErrorCode,
    check_for_error,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

MAX_FILE_NAME_LENGTH: Final[int] = 19
MAX_WRITE_CHUNK: Final[int] = 50
MAX_READ_CHUNK: Final[int] = 50

REPLY_TYPE: Final[int] = 0x02

# Byte offset of the status in every reply
STATUS_OFFSET: Final[int] = 2

NO_REPLY_FLAG: Final[int] = 0x80

# Extensions the firmware requires to be stored linearly
LINEAR_EXTENSIONS: Final[frozenset[str]] = frozenset({".rxe", ".ric"})


class NxtCommandType(IntEnum):
    """First byte of an NXT command."""

    DIRECT = 0x00
    SYSTEM = 0x01
    DIRECT_NO_REPLY = 0x80
    SYSTEM_NO_REPLY = 0x81


class NxtSystemCommand(IntEnum):
    """NXT system command opcodes."""

    OPEN_READ = 0x80
    OPEN_WRITE = 0x81
    READ = 0x82
    WRITE = 0x83
    CLOSE = 0x84
    DELETE = 0x85
    FIND_FIRST = 0x86
    FIND_NEXT = 0x87
    GET_FIRMWARE_VERSION = 0x88
    OPEN_WRITE_LINEAR = 0x89
    OPEN_READ_LINEAR = 0x8A
    OPEN_WRITE_DATA = 0x8B
    OPEN_APPEND_DATA = 0x8C
    GET_DEVICE_INFO = 0x9B
    DELETE_USER_FLASH = 0xA0


class FileMode(Enum):
    """How a file is laid out in flash when written."""

    FRAGMENTED = NxtSystemCommand.OPEN_WRITE
    NON_FRAGMENTED = NxtSystemCommand.OPEN_WRITE_LINEAR
    DATA = NxtSystemCommand.OPEN_WRITE_DATA

    @classmethod
    def for_name(cls, name: str) -> "FileMode":
        """Pick the write mode the firmware expects for a file name."""
        if file_extension(name) in LINEAR_EXTENSIONS:
            return cls.NON_FRAGMENTED
        return cls.FRAGMENTED


# =============================================================================
# Command and Reply
# =============================================================================

class NxtCommand(Command):
    """
    NXT command with its type and opcode already written.

    Example:
        cmd = NxtCommand(NxtSystemCommand.CLOSE)
        cmd.append_byte(handle)
    """

    def __init__(
        self,
        opcode: int,
        command_type: NxtCommandType = NxtCommandType.SYSTEM,
        reply_required: bool = True,
    ):
        super().__init__(reply_required)
        type_byte = int(command_type)
        if reply_required:
            type_byte &= ~NO_REPLY_FLAG
        else:
            type_byte |= NO_REPLY_FLAG
        self.command_type = type_byte
        self.opcode = opcode
        self.append_byte(type_byte)
        self.append_byte(opcode)


class NxtReply(Reply):
    """Reply in NXT layout: [0x02][opcode][status][data...]."""

    error_family = NxtBrickError

    @property
    def command_type(self) -> int:
        return self.get_byte(0) if len(self) > 0 else 0

    @property
    def command_code(self) -> int:
        return self.get_byte(1) if len(self) > 1 else 0

    @property
    def error_code(self) -> int:
        if len(self) <= STATUS_OFFSET:
            return 0
        return self.get_byte(STATUS_OFFSET)

    @property
    def has_error(self) -> bool:
        return self.error_code != 0


# =============================================================================
# File System
# =============================================================================

class NxtFileSystem:
    """
    File operations on an NXT brick.

    Implements the begin/continue/close primitives used by
    TransferSession plus listing, deletion and flash management.

    Args:
        connection: Open connection built with NxtReply.
        check_free_space: Query free flash before opening a file for
                          writing and refuse files that cannot fit.
    """

    error_family = NxtBrickError
    max_write_chunk = MAX_WRITE_CHUNK
    max_read_chunk = MAX_READ_CHUNK
    # Opening a file for reading does not return data
    reads_on_open = False

    def __init__(self, connection: Connection, check_free_space: bool = True):
        self.connection = connection
        self.check_free_space = check_free_space

    def _exchange(self, command: NxtCommand) -> NxtReply:
        return self.connection.send_and_receive(command)

    @staticmethod
    def _named(opcode: NxtSystemCommand, name: str) -> NxtCommand:
        command = NxtCommand(opcode)
        command.append_string(name, MAX_FILE_NAME_LENGTH, pad=True)
        return command

    # -------------------------------------------------------------------------
    # Transfer Primitives
    # -------------------------------------------------------------------------

    def begin_write(
        self,
        name: str,
        size: int,
        mode: Optional[FileMode] = None,
    ) -> int:
        """
        Create a file and open it for writing.

        Args:
            name: File name (truncated to 19 characters).
            size: Final size of the file in bytes.
            mode: Flash layout; chosen from the extension if omitted.

        Returns:
            Handle of the open file.

        Raises:
            NxtBrickError: NO_SPACE if check_free_space is set and the
                           file does not fit, or any firmware error.
        """
        if self.check_free_space:
            free = self.get_free_flash()
            if size > free:
                raise NxtBrickError(
                    NxtErrorCode.NO_SPACE,
                    f"{name} needs {size} bytes, {free} free",
                )

        mode = mode or FileMode.for_name(name)
        command = self._named(mode.value, name)
        command.append_uint32(size)

        reply = self._exchange(command)
        check_for_error(reply, 4)
        handle = reply.get_byte(3)
        logger.debug("Opened %s for writing (%s), handle %d", name, mode.name, handle)
        return handle

    def continue_write(self, handle: int, chunk: bytes) -> int:
        """Write one chunk, returning the number of bytes the brick accepted."""
        command = NxtCommand(NxtSystemCommand.WRITE)
        command.append_byte(handle)
        command.append_bytes(chunk)

        reply = self._exchange(command)
        check_for_error(reply, 6)
        return reply.get_uint16(4)

    def begin_read(self, name: str, max_chunk: int = MAX_READ_CHUNK) -> tuple[int, int, bytes]:
        """
        Open a file for reading.

        Returns:
            (handle, file size, b"") - the NXT returns no data on open.
        """
        reply = self._exchange(self._named(NxtSystemCommand.OPEN_READ, name))
        check_for_error(reply, 8)
        handle = reply.get_byte(3)
        size = reply.get_uint32(4)
        logger.debug("Opened %s for reading, handle %d, %d bytes", name, handle, size)
        return handle, size, b""

    def continue_read(self, handle: int, count: int) -> bytes:
        """Read up to count bytes from an open file."""
        command = NxtCommand(NxtSystemCommand.READ)
        command.append_byte(handle)
        command.append_uint16(count)

        reply = self._exchange(command)
        check_for_error(reply, 6, exact=False)
        received = reply.get_uint16(4)
        check_for_error(reply, 6 + received)
        return reply.get_bytes(6, received)

    def close_handle(self, handle: int) -> None:
        """Close a handle. A handle that is already closed is not an error."""
        command = NxtCommand(NxtSystemCommand.CLOSE)
        command.append_byte(handle)

        reply = self._exchange(command)
        try:
            check_for_error(reply, 4)
        except NxtBrickError as e:
            if e.code != NxtErrorCode.HANDLE_ALREADY_CLOSED:
                raise
            logger.debug("Handle %d was already closed", handle)

    def open_append(self, name: str) -> tuple[int, int]:
        """
        Open a data file for appending.

        Returns:
            (handle, bytes still available in the file)
        """
        reply = self._exchange(self._named(NxtSystemCommand.OPEN_APPEND_DATA, name))
        check_for_error(reply, 8)
        return reply.get_byte(3), reply.get_uint32(4)

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def find_first(self, pattern: str = "*.*") -> Optional[RemoteFile]:
        """
        Start a file search.

        Args:
            pattern: Wildcard such as "*.*" or "*.rxe".

        Returns:
            The first matching file, or None if nothing matches.
        """
        reply = self._exchange(self._named(NxtSystemCommand.FIND_FIRST, pattern))
        return self._found_file(reply)

    def find_next(self, handle: int) -> Optional[RemoteFile]:
        """Continue a search started by find_first(); None when exhausted."""
        command = NxtCommand(NxtSystemCommand.FIND_NEXT)
        command.append_byte(handle)
        return self._found_file(self._exchange(command))

    @staticmethod
    def _found_file(reply: NxtReply) -> Optional[RemoteFile]:
        if reply.error_code == NxtErrorCode.FILE_NOT_FOUND:
            return None
        check_for_error(reply, 28)
        return RemoteFile.nxt(
            name=reply.get_string(4),
            handle=reply.get_byte(3),
            size=reply.get_uint32(24),
        )

    def file_list(self, pattern: str = "*.*") -> list[RemoteFile]:
        """Return every file matching pattern, in the order the brick reports."""
        files: list[RemoteFile] = []
        found = self.find_first(pattern)
        if found is None:
            return files

        handle = found.handle
        try:
            while found is not None:
                files.append(found)
                found = self.find_next(handle)
        finally:
            self.close_handle(handle)

        return files

    def list_files(self, path: str = "*.*") -> str:
        """Return a listing in the shared "<size> <name>" text format."""
        return "\n".join(f"{f.size} {f.name}" for f in self.file_list(path))

    # -------------------------------------------------------------------------
    # Deletion and Flash
    # -------------------------------------------------------------------------

    def delete_file(self, name: str) -> None:
        reply = self._exchange(self._named(NxtSystemCommand.DELETE, name))
        check_for_error(reply, 23)
        logger.info("Deleted %s", name)

    def delete_flash(self) -> None:
        """Erase all user files. Takes several seconds on the brick."""
        reply = self._exchange(NxtCommand(NxtSystemCommand.DELETE_USER_FLASH))
        check_for_error(reply, 3)
        logger.info("User flash deleted")

    def get_free_flash(self) -> int:
        """Return the free user flash in bytes."""
        reply = self._exchange(NxtCommand(NxtSystemCommand.GET_DEVICE_INFO))
        check_for_error(reply, 33)
        return reply.get_uint32(29)
