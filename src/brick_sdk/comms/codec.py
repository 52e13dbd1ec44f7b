"""
Message Codec
=============

This module encodes typed values into an outgoing Command and decodes
typed values out of an incoming Reply. It performs no I/O.

Encoding Rules
--------------
- All multi-byte numbers are little-endian
- Integers are fixed width (8, 16 or 32 bits); floats are IEEE 754 single
- Booleans are a single 0x01 / 0x00 byte
- Strings are ASCII followed by one 0x00 terminator

Strings can be limited to a maximum size. Longer strings are truncated
silently (the firmware expects fixed size name fields, not an error),
and with padding enabled shorter strings are filled with zeros so the
field is always max_size + 1 bytes including the terminator:

    >>> cmd = Command()
    >>> cmd.append_string("abc", max_size=5, pad=True)
    >>> cmd.data
    b'abc\\x00\\x00\\x00'

Element Kinds
-------------
Array style commands (EV3 memory arrays) need to know the wire width and
sub-code of their elements. ElementKind bundles those properties so the
choice is made once when the kind is selected, instead of inspecting the
element type at every call.
"""

import struct
from dataclasses import dataclass
from typing import Final, Iterable, Optional

# Struct formats for the fixed width values
_FORMATS: Final[dict[str, str]] = {
    "sbyte": "<b",
    "byte": "<B",
    "int16": "<h",
    "uint16": "<H",
    "int32": "<i",
    "uint32": "<I",
    "float": "<f",
}

STRING_TERMINATOR: Final[int] = 0x00


# =============================================================================
# Element Kinds
# =============================================================================

@dataclass(frozen=True)
class ElementKind:
    """
    One supported array element type.

    Attributes:
        name: Short name used in logs and repr.
        format: struct format of a single element.
        size: Encoded size of one element in bytes.
        create_subcode: Wire sub-code for creating an array of this kind.
        init_subcode: Wire sub-code for initialising an array of this kind.
    """

    name: str
    format: str
    size: int
    create_subcode: int
    init_subcode: int

    def encode(self, value) -> bytes:
        """Encode a single element."""
        return struct.pack(self.format, value)

    def decode(self, data: bytes, offset: int = 0):
        """Decode a single element at offset."""
        return struct.unpack_from(self.format, data, offset)[0]

    @classmethod
    def for_type(cls, python_type: type) -> "ElementKind":
        """
        Select the element kind for a Python element type.

        Args:
            python_type: float selects FLOAT, int selects INT.

        Raises:
            TypeError: If no kind matches.
        """
        if python_type is float:
            return FLOAT
        if python_type is int:
            return INT
        raise TypeError(f"No element kind for type {python_type.__name__}")

    def __repr__(self) -> str:
        return f"ElementKind({self.name})"


# EV3 array sub-codes: CREATE8=1, CREATE16=2, CREATE32=3, CREATEF=4,
# INIT8=10, INIT16=11, INIT32=12, INITF=13
BYTE: Final[ElementKind] = ElementKind("byte", "<b", 1, 0x01, 0x0A)
SHORT: Final[ElementKind] = ElementKind("short", "<h", 2, 0x02, 0x0B)
INT: Final[ElementKind] = ElementKind("int", "<i", 4, 0x03, 0x0C)
FLOAT: Final[ElementKind] = ElementKind("float", "<f", 4, 0x04, 0x0D)

ELEMENT_KINDS: Final[tuple[ElementKind, ...]] = (BYTE, SHORT, INT, FLOAT)


# =============================================================================
# Command
# =============================================================================

class Command:
    """
    An outgoing message being built.

    Values are appended in wire order. Once a Connection has sent the
    command it is marked as sent and further appends raise ValueError.

    Attributes:
        reply_required: True if the brick is expected to answer.

    Example:
        cmd = Command(reply_required=True)
        cmd.append_byte(0x84)
        cmd.append_uint16(500)
        connection.send(cmd)
    """

    def __init__(self, reply_required: bool = True):
        self.reply_required = reply_required
        self._buffer = bytearray()
        self._sent = False

    @property
    def data(self) -> bytes:
        """Bytes appended so far."""
        return bytes(self._buffer)

    @property
    def sent(self) -> bool:
        """True once a connection has sent this command."""
        return self._sent

    def mark_sent(self) -> None:
        """Freeze the command. Called by Connection.send()."""
        self._sent = True

    def length(self) -> int:
        """Number of bytes appended so far."""
        return len(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    # -------------------------------------------------------------------------
    # Appending
    # -------------------------------------------------------------------------

    def _extend(self, data: bytes) -> None:
        if self._sent:
            raise ValueError("Command has already been sent")
        self._buffer.extend(data)

    def _pack(self, kind: str, value) -> None:
        self._extend(struct.pack(_FORMATS[kind], value))

    def append_bool(self, value: bool) -> None:
        self._extend(b"\x01" if value else b"\x00")

    def append_byte(self, value: int) -> None:
        self._pack("byte", value)

    def append_sbyte(self, value: int) -> None:
        self._pack("sbyte", value)

    def append_uint16(self, value: int) -> None:
        self._pack("uint16", value)

    def append_int16(self, value: int) -> None:
        self._pack("int16", value)

    def append_uint32(self, value: int) -> None:
        self._pack("uint32", value)

    def append_int32(self, value: int) -> None:
        self._pack("int32", value)

    def append_float(self, value: float) -> None:
        self._pack("float", value)

    def append_bytes(
        self,
        data: bytes,
        offset: int = 0,
        length: Optional[int] = None,
    ) -> None:
        """
        Append raw bytes.

        Args:
            data: Source buffer.
            offset: First byte of data to copy.
            length: Number of bytes to copy (default: to the end).
        """
        end = len(data) if length is None else offset + length
        self._extend(bytes(data[offset:end]))

    def append_zeros(self, count: int) -> None:
        self._extend(bytes(count))

    def append_string(
        self,
        text: str,
        max_size: Optional[int] = None,
        pad: bool = False,
    ) -> None:
        """
        Append a NUL terminated ASCII string.

        Args:
            text: String to encode.
            max_size: Maximum number of characters. Longer strings are
                      truncated silently.
            pad: Zero-pad to exactly max_size characters before the
                 terminator. Ignored without max_size.

        Raises:
            UnicodeEncodeError: If text has non-ASCII characters.
        """
        encoded = text.encode("ascii")
        if max_size is not None:
            encoded = encoded[:max_size]
            if pad:
                encoded = encoded.ljust(max_size, b"\x00")
        self._extend(encoded + bytes([STRING_TERMINATOR]))

    def append_value(self, kind: ElementKind, value) -> None:
        """Append one element of the given kind."""
        self._extend(kind.encode(value))

    def append_values(self, kind: ElementKind, values: Iterable) -> None:
        """Append a sequence of elements of the given kind."""
        for value in values:
            self.append_value(kind, value)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(len={len(self._buffer)}, "
            f"reply_required={self.reply_required}, data={self._buffer.hex()})"
        )


# =============================================================================
# Reply
# =============================================================================

class Reply:
    """
    An incoming message from the brick.

    Reply is an immutable view over the received payload (length header
    already removed). Accessors read little-endian values at a caller
    supplied offset.

    The base class knows nothing about status bytes. Family subclasses
    (NxtReply, Ev3Reply) define has_error, error_code and error_family.
    """

    error_family = None

    def __init__(self, data: bytes):
        self._data = bytes(data)

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def has_error(self) -> bool:
        return False

    @property
    def error_code(self) -> int:
        return 0

    def length(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other) -> bool:
        if isinstance(other, Reply):
            return self._data == other._data
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._data)

    # -------------------------------------------------------------------------
    # Fixed width reads
    # -------------------------------------------------------------------------

    def _unpack(self, kind: str, offset: int):
        return struct.unpack_from(_FORMATS[kind], self._data, offset)[0]

    def get_bool(self, offset: int) -> bool:
        return self._unpack("byte", offset) != 0

    def get_byte(self, offset: int) -> int:
        return self._unpack("byte", offset)

    def get_sbyte(self, offset: int) -> int:
        return self._unpack("sbyte", offset)

    def get_uint16(self, offset: int) -> int:
        return self._unpack("uint16", offset)

    def get_int16(self, offset: int) -> int:
        return self._unpack("int16", offset)

    def get_uint32(self, offset: int) -> int:
        return self._unpack("uint32", offset)

    def get_int32(self, offset: int) -> int:
        return self._unpack("int32", offset)

    def get_float(self, offset: int) -> float:
        return self._unpack("float", offset)

    def get_value(self, kind: ElementKind, offset: int):
        return kind.decode(self._data, offset)

    def get_values(self, kind: ElementKind, offset: int, count: int) -> list:
        return [
            kind.decode(self._data, offset + i * kind.size)
            for i in range(count)
        ]

    # -------------------------------------------------------------------------
    # Variable length reads
    # -------------------------------------------------------------------------

    def get_bytes(
        self,
        offset: int,
        length: Optional[int] = None,
    ) -> Optional[bytes]:
        """
        Return raw bytes starting at offset.

        Args:
            offset: First byte to return.
            length: Number of bytes (default: to the end of the reply).

        Returns:
            The bytes, or None if offset lies past the end of the reply.
        """
        if offset > len(self._data):
            return None
        if length is None:
            return self._data[offset:]
        return self._data[offset:offset + length]

    def get_string(self, offset: int, length: Optional[int] = None) -> str:
        """
        Read an ASCII string.

        Without length the string runs up to the next NUL byte. If no
        terminator exists before the end of the reply, an empty string
        is returned.

        With length exactly that many bytes are decoded (NUL bytes
        included).
        """
        if length is not None:
            return self._data[offset:offset + length].decode("ascii", "replace")

        end = self._data.find(bytes([STRING_TERMINATOR]), offset)
        if end < 0:
            return ""
        return self._data[offset:end].decode("ascii", "replace")

    def __repr__(self) -> str:
        data_repr = (
            self._data[:20].hex() + "..."
            if len(self._data) > 20
            else self._data.hex()
        )
        return f"{type(self).__name__}(data[{len(self._data)}]={data_repr})"
