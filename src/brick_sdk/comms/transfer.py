"""
Chunked File Transfer
=====================

This module moves files of any size between the host and a brick. The
bricks accept only small messages (50 bytes per write on both
firmwares, 50 or 100 bytes per read), so every transfer runs the same
multi-round protocol against a remote handle:

Upload
------
```
HOST                                   BRICK
  | ── begin_write(name, size) ─────→ |
  | ←──────────────── handle ──────── |
  | ── continue_write(handle, ≤50) ─→ |  repeated until all bytes sent
  | ←──────────── bytes accepted ──── |
  | ── close_handle(handle) ────────→ |
```

Download
--------
```
HOST                                   BRICK
  | ── begin_read(name, max_chunk) ─→ |
  | ←── handle, size, first chunk ─── |  (first chunk empty on NXT)
  | ── continue_read(handle, n) ────→ |  repeated until size reached
  | ←──────────────────── n bytes ─── |
  | ── close_handle(handle) ────────→ |
```

Failure Policy
--------------
A chunk the brick accepts only partially, or a read that returns fewer
bytes than requested, abandons the transfer with the family
UNDEFINED_FILE_ERROR. There is no retry. Whatever the failure, the
session tries to close the handle before the error propagates; an error
from that close is logged and dropped so it cannot hide the first
one.

Progress
--------
Callers may pass progress(bytes_done, total), called after every
completed chunk.
"""

import logging
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from brick_sdk.errors import BrickError

# Configure module logger
logger = logging.getLogger(__name__)


# Progress callback type: (bytes_done, total) -> None
ProgressCallback = Callable[[int, int], None]


# =============================================================================
# File Protocol
# =============================================================================

class FileProtocol(Protocol):
    """
    Begin/continue/close primitives of one firmware family.

    Implemented by NxtFileSystem and Ev3FileSystem.
    """

    error_family: type[BrickError]
    max_write_chunk: int
    max_read_chunk: int
    reads_on_open: bool

    def begin_write(self, name: str, size: int) -> int:
        ...

    def continue_write(self, handle: int, chunk: bytes) -> int:
        ...

    def begin_read(self, name: str, max_chunk: int) -> tuple[int, int, bytes]:
        ...

    def continue_read(self, handle: int, count: int) -> bytes:
        ...

    def close_handle(self, handle: int) -> None:
        ...


# =============================================================================
# Transfer Session
# =============================================================================

class TransferSession:
    """
    Upload and download whole files through a FileProtocol.

    Args:
        protocol: File system of the connected brick.

    Example:
        session = TransferSession(NxtFileSystem(connection))
        session.upload_file("build/robot.rxe", progress=show_progress)
        data = session.download("log.rdt")
    """

    def __init__(self, protocol: FileProtocol):
        self.protocol = protocol

    def _short_transfer(self, message: str) -> BrickError:
        family = self.protocol.error_family
        return family(family.UNDEFINED_FILE_ERROR, message)

    def _abandon(self, handle: int) -> None:
        """Close a handle after a failure without raising."""
        try:
            self.protocol.close_handle(handle)
        except Exception as e:
            logger.warning("Error closing handle %d after failed transfer: %s", handle, e)

    # -------------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------------

    def upload(
        self,
        name: str,
        data: bytes,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Write data to a new file on the brick.

        Args:
            name: Remote file name or path.
            data: Complete file content.
            progress: Optional callback (bytes_done, total).

        Raises:
            BrickError: UNDEFINED_FILE_ERROR if the brick accepts fewer
                        bytes than sent, or any firmware error.
            ConnectionError: If the connection fails.
        """
        total = len(data)
        max_chunk = self.protocol.max_write_chunk
        handle = self.protocol.begin_write(name, total)
        logger.info("Uploading %s (%d bytes)", name, total)

        sent = 0
        try:
            while sent < total:
                chunk = data[sent:sent + max_chunk]
                accepted = self.protocol.continue_write(handle, chunk)
                if accepted != len(chunk):
                    raise self._short_transfer(
                        f"brick accepted {accepted} of {len(chunk)} bytes at offset {sent}"
                    )
                sent += accepted
                if progress:
                    progress(sent, total)
        except BaseException:
            self._abandon(handle)
            raise

        self.protocol.close_handle(handle)
        logger.info("Upload of %s complete", name)

    def upload_file(
        self,
        local_path: Union[str, Path],
        name: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Upload a local file.

        Args:
            local_path: File to read.
            name: Remote name (default: the local file name).

        Returns:
            The remote name used.
        """
        local_path = Path(local_path)
        remote_name = name or local_path.name
        self.upload(remote_name, local_path.read_bytes(), progress)
        return remote_name

    # -------------------------------------------------------------------------
    # Download
    # -------------------------------------------------------------------------

    def download(
        self,
        name: str,
        progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Read a whole file from the brick.

        Args:
            name: Remote file name or path.
            progress: Optional callback (bytes_done, total).

        Returns:
            File content.

        Raises:
            BrickError: UNDEFINED_FILE_ERROR on a short read, or any
                        firmware error.
            ConnectionError: If the connection fails.
        """
        max_chunk = self.protocol.max_read_chunk
        handle, total, first = self.protocol.begin_read(name, max_chunk)
        logger.info("Downloading %s (%d bytes)", name, total)

        data = bytearray()
        try:
            expected = min(total, max_chunk) if self.protocol.reads_on_open else 0
            if len(first) != expected:
                raise self._short_transfer(
                    f"open returned {len(first)} bytes, expected {expected}"
                )
            if first:
                data.extend(first)
                if progress:
                    progress(len(data), total)

            while len(data) < total:
                count = min(total - len(data), max_chunk)
                chunk = self.protocol.continue_read(handle, count)
                if len(chunk) != count:
                    raise self._short_transfer(
                        f"read returned {len(chunk)} of {count} bytes at offset {len(data)}"
                    )
                data.extend(chunk)
                if progress:
                    progress(len(data), total)
        except BaseException:
            self._abandon(handle)
            raise

        self.protocol.close_handle(handle)
        logger.info("Download of %s complete", name)
        return bytes(data)

    def download_file(
        self,
        name: str,
        local_path: Union[str, Path],
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Download a file and save it locally.

        Returns:
            Number of bytes written.
        """
        data = self.download(name, progress)
        Path(local_path).write_bytes(data)
        return len(data)
