"""
Remote Files and Directory Walking
==================================

This module holds the read-only models describing files on a brick and
the walker that builds a complete folder tree from an EV3 file system.

File Types
----------
Brick file types are derived from the file extension:

    NXT:  .rfw firmware  .rxe program  .rpg on-brick program
          .rtm try-me    .rso sound    .ric graphics  .rdt datalog
    EV3:  .rbf program   .rsf sound    .rgf graphics  .rdf datalog

Listing Format
--------------
The EV3 returns a directory listing as newline separated text:

    ../
    ./
    Demo/
    8D2B4B1A7A2C4E1B9F0A1B2C3D4E5F60 0000012A Program.rbf

Directories end with '/'. File lines carry an MD5 hash, the size in
hexadecimal and the name. The simpler "<size> <name>" form with a decimal
size is accepted as well. Lines that fit neither form are skipped.

Directory Walk
--------------
DirectoryWalker lists a directory, recurses into every sub-directory and
returns a FolderStructure whose children are fully built. A directory
that cannot be listed becomes a node marked not browsable; its siblings
are still walked.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from pathlib import PurePosixPath
from typing import Final, Iterator, Optional, Protocol

from brick_sdk.errors import BrickSdkError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# File Types
# =============================================================================

class FileType(Enum):
    """Kind of file, derived from its extension."""

    FIRMWARE = "firmware"
    PROGRAM = "program"
    ON_BRICK_PROGRAM = "on-brick program"
    TRY_ME_PROGRAM = "try-me program"
    SOUND = "sound"
    GRAPHICS = "graphics"
    DATALOG = "datalog"
    UNKNOWN = "unknown"


NXT_EXTENSIONS: Final[dict[str, FileType]] = {
    ".rfw": FileType.FIRMWARE,
    ".rxe": FileType.PROGRAM,
    ".rpg": FileType.ON_BRICK_PROGRAM,
    ".rtm": FileType.TRY_ME_PROGRAM,
    ".rso": FileType.SOUND,
    ".ric": FileType.GRAPHICS,
    ".rdt": FileType.DATALOG,
}

EV3_EXTENSIONS: Final[dict[str, FileType]] = {
    ".rbf": FileType.PROGRAM,
    ".rsf": FileType.SOUND,
    ".rgf": FileType.GRAPHICS,
    ".rdf": FileType.DATALOG,
}

PATH_SEPARATOR: Final[str] = "/"


def file_extension(name: str) -> str:
    """Return the lowercased extension of name, including the dot."""
    return PurePosixPath(name).suffix.lower()


def file_type_for(name: str, extensions: dict[str, FileType]) -> FileType:
    """Look up the file type of name in an extension table."""
    return extensions.get(file_extension(name), FileType.UNKNOWN)


def join_path(parent: str, name: str) -> str:
    """
    Join a remote directory and a name with exactly one separator.

    >>> join_path("/home/root/lms2012/prjs/", "Demo")
    '/home/root/lms2012/prjs/Demo'
    >>> join_path("/", "Demo/")
    '/Demo'
    """
    name = name.strip(PATH_SEPARATOR)
    if not parent:
        return name
    if parent.endswith(PATH_SEPARATOR):
        return parent + name
    return parent + PATH_SEPARATOR + name


# =============================================================================
# Remote File
# =============================================================================

@total_ordering
@dataclass(frozen=True, eq=False)
class RemoteFile:
    """
    Snapshot of one file on the brick.

    NXT files are identified by the handle the listing returned; EV3
    files by the directory they live in.

    Attributes:
        name: File name without directory.
        size: Size in bytes.
        file_type: Type derived from the extension.
        handle: NXT listing handle (None on EV3).
        path: EV3 parent directory (None on NXT).
    """

    name: str
    size: int
    file_type: FileType = FileType.UNKNOWN
    handle: Optional[int] = None
    path: Optional[str] = None

    @classmethod
    def nxt(cls, name: str, handle: int, size: int) -> "RemoteFile":
        return cls(name, size, file_type_for(name, NXT_EXTENSIONS), handle=handle)

    @classmethod
    def ev3(cls, path: str, name: str, size: int) -> "RemoteFile":
        return cls(name, size, file_type_for(name, EV3_EXTENSIONS), path=path)

    @property
    def extension(self) -> str:
        return file_extension(self.name)

    @property
    def full_name(self) -> str:
        """Path and name joined, or just the name for NXT files."""
        if self.path is None:
            return self.name
        return join_path(self.path, self.name)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RemoteFile):
            return NotImplemented
        return (self.full_name, self.size) == (other.full_name, other.size)

    def __hash__(self) -> int:
        return hash((self.full_name, self.size))

    def __lt__(self, other: "RemoteFile") -> bool:
        if not isinstance(other, RemoteFile):
            return NotImplemented
        return self.name < other.name

    def __str__(self) -> str:
        return f"{self.full_name} ({self.size} bytes, {self.file_type.value})"


# =============================================================================
# Folder Structure
# =============================================================================

@total_ordering
@dataclass(frozen=True, eq=False)
class FolderStructure:
    """
    One directory of a walked file system.

    Attributes:
        path: Full remote path of the directory.
        is_browsable: False if the directory could not be listed.
        files: Files directly in this directory, sorted by name.
        folders: Sub-directories, sorted by name.
    """

    path: str
    is_browsable: bool = True
    files: tuple[RemoteFile, ...] = ()
    folders: tuple["FolderStructure", ...] = ()

    @property
    def name(self) -> str:
        """Last component of the path ('/' for the root)."""
        stripped = self.path.rstrip(PATH_SEPARATOR)
        if not stripped:
            return PATH_SEPARATOR
        return stripped.rsplit(PATH_SEPARATOR, 1)[-1]

    def run_through_folders(self) -> Iterator["FolderStructure"]:
        """Yield this folder and every descendant, parents first."""
        yield self
        for folder in self.folders:
            yield from folder.run_through_folders()

    def all_files(self) -> Iterator[RemoteFile]:
        """Yield every file in the tree, folder by folder."""
        for folder in self.run_through_folders():
            yield from folder.files

    def tree_lines(self, indent: str = "  ") -> list[str]:
        """Render the tree as indented text lines."""
        lines: list[str] = []
        self._render(lines, 0, indent)
        return lines

    def _render(self, lines: list[str], depth: int, indent: str) -> None:
        marker = "" if self.is_browsable else "  [not browsable]"
        label = self.path if depth == 0 else self.name + PATH_SEPARATOR
        lines.append(f"{indent * depth}{label}{marker}")
        for folder in self.folders:
            folder._render(lines, depth + 1, indent)
        for remote_file in self.files:
            lines.append(f"{indent * (depth + 1)}{remote_file.name}  {remote_file.size}")

    def __eq__(self, other) -> bool:
        if not isinstance(other, FolderStructure):
            return NotImplemented
        return (self.path, self.is_browsable, self.files, self.folders) == (
            other.path, other.is_browsable, other.files, other.folders
        )

    def __hash__(self) -> int:
        return hash(self.path)

    def __lt__(self, other: "FolderStructure") -> bool:
        if not isinstance(other, FolderStructure):
            return NotImplemented
        return self.path < other.path

    def __str__(self) -> str:
        return self.path


# =============================================================================
# Listing Parser
# =============================================================================

# MD5 hash as sent by the EV3 firmware
_MD5_PATTERN = re.compile(r"^[0-9A-Fa-f]{32}$")

# Directory entries that refer to the directory itself or its parent
_SELF_REFERENCES: Final[frozenset[str]] = frozenset({".", ".."})


@dataclass(frozen=True)
class Listing:
    """Parsed content of one directory listing."""

    folders: tuple[str, ...]
    files: tuple[tuple[str, int], ...]


def parse_listing(text: str) -> Listing:
    """
    Parse the text of a directory listing.

    Args:
        text: Newline separated listing as returned by the brick.

    Returns:
        Listing with directory names (no trailing '/') and
        (name, size) pairs for files. Order follows the input.
    """
    folders: list[str] = []
    files: list[tuple[str, int]] = []

    for raw_line in text.split("\n"):
        line = raw_line.strip("\r\x00")
        if not line.strip():
            continue

        if line.endswith(PATH_SEPARATOR):
            name = line.strip(PATH_SEPARATOR)
            if name and name not in _SELF_REFERENCES:
                folders.append(name)
            continue

        entry = _parse_file_line(line)
        if entry is None:
            logger.debug("Skipping malformed listing line: %r", line)
            continue
        files.append(entry)

    return Listing(tuple(folders), tuple(files))


def _parse_file_line(line: str) -> Optional[tuple[str, int]]:
    parts = line.split(" ", 2)
    try:
        if len(parts) == 3 and _MD5_PATTERN.match(parts[0]):
            size, name = int(parts[1], 16), parts[2]
        elif len(parts) >= 2:
            size_text, name = line.split(" ", 1)
            size = int(size_text)
        else:
            return None
    except ValueError:
        return None

    if not name or size < 0:
        return None
    return name, size


# =============================================================================
# Directory Walker
# =============================================================================

class DirectoryLister(Protocol):
    """Anything that can return the listing text of a remote directory."""

    def list_files(self, path: str) -> str:
        ...


class DirectoryWalker:
    """
    Build a FolderStructure tree by listing directories recursively.

    Args:
        lister: Object providing list_files(path), normally an
                Ev3FileSystem.

    Example:
        walker = DirectoryWalker(Ev3FileSystem(connection))
        tree = walker.walk("/home/root/lms2012/prjs/")
        for folder in tree.run_through_folders():
            print(folder.path, len(folder.files))
    """

    def __init__(self, lister: DirectoryLister):
        self.lister = lister

    def walk(self, path: str = PATH_SEPARATOR) -> FolderStructure:
        """
        Walk the tree rooted at path.

        Failures while listing a directory never propagate; the affected
        node is returned with is_browsable=False.
        """
        try:
            text = self.lister.list_files(path)
        except BrickSdkError as e:
            logger.warning("Cannot list %s: %s", path, e)
            return FolderStructure(path, is_browsable=False)

        listing = parse_listing(text)

        folders = [
            self.walk(join_path(path, name))
            for name in sorted(listing.folders)
        ]
        files = sorted(
            RemoteFile.ev3(path, name, size) for name, size in listing.files
        )

        logger.debug(
            "Listed %s: %d file(s), %d folder(s)", path, len(files), len(folders)
        )
        return FolderStructure(path, True, tuple(files), tuple(folders))
