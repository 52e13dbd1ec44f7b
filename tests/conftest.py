"""
Shared fixtures: scripted brick simulators.

Each simulator is a LoopbackTransport that answers every framed command
with a framed reply computed from an in-memory file system, so the full
stack (codec, connection, file system, transfer session) runs without
hardware.
"""

import struct

import pytest

from brick_sdk.comms.connection import Connection, encode_length
from brick_sdk.comms.ev3 import Ev3Reply
from brick_sdk.comms.nxt import NxtReply
from brick_sdk.comms.transport import LoopbackTransport


def _cstring(data: bytes, start: int) -> str:
    end = data.index(0, start)
    return data[start:end].decode("ascii")


class ScriptedBrick(LoopbackTransport):
    """Loopback transport that computes a reply for every command."""

    def __init__(self):
        super().__init__(echo=False)
        self.commands: list[bytes] = []

    def write(self, data: bytes) -> None:
        super().write(data)
        payload = bytes(data[2:])
        self.commands.append(payload)
        reply = self.handle(payload)
        if reply is not None:
            self.feed(encode_length(len(reply)) + reply)

    def handle(self, payload: bytes):
        raise NotImplementedError


# =============================================================================
# NXT Simulator
# =============================================================================

class NxtBrickSim(ScriptedBrick):
    """
    Minimal NXT firmware file system.

    Attributes:
        files: Stored files by name.
        free_flash: Value reported by GET_DEVICE_INFO.
        accept_limit: If set, WRITE accepts at most this many bytes.
    """

    def __init__(self):
        super().__init__()
        self.files: dict[str, bytes] = {}
        self.free_flash = 100_000
        self.accept_limit = None
        self._handles: dict[int, dict] = {}
        self._next_handle = 1

    def _new_handle(self, **state) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._handles[handle] = state
        return handle

    @staticmethod
    def _reply(opcode: int, status: int = 0, body: bytes = b"") -> bytes:
        return bytes([0x02, opcode, status]) + body

    def handle(self, payload: bytes):
        if payload[0] & 0x80:
            return None
        opcode = payload[1]

        if opcode in (0x81, 0x89, 0x8B):  # open write
            name = _cstring(payload, 2)
            size = struct.unpack_from("<I", payload, 22)[0]
            if name in self.files:
                return self._reply(opcode, 0x8F, b"\x00")
            handle = self._new_handle(mode="w", name=name, size=size, data=bytearray())
            return self._reply(opcode, 0, bytes([handle]))

        if opcode == 0x83:  # write
            handle = payload[2]
            chunk = payload[3:]
            if self.accept_limit is not None:
                chunk = chunk[:self.accept_limit]
            self._handles[handle]["data"].extend(chunk)
            return self._reply(opcode, 0, bytes([handle]) + struct.pack("<H", len(chunk)))

        if opcode == 0x80:  # open read
            name = _cstring(payload, 2)
            if name not in self.files:
                return self._reply(opcode, 0x87, bytes(5))
            handle = self._new_handle(mode="r", name=name, pos=0)
            return self._reply(
                opcode, 0, bytes([handle]) + struct.pack("<I", len(self.files[name]))
            )

        if opcode == 0x82:  # read
            handle = payload[2]
            count = struct.unpack_from("<H", payload, 3)[0]
            state = self._handles[handle]
            content = self.files[state["name"]]
            data = content[state["pos"]:state["pos"] + count]
            state["pos"] += len(data)
            return self._reply(
                opcode, 0, bytes([handle]) + struct.pack("<H", len(data)) + data
            )

        if opcode == 0x84:  # close
            handle = payload[2]
            state = self._handles.pop(handle, None)
            if state is None:
                return self._reply(opcode, 0x88, bytes([handle]))
            if state["mode"] == "w":
                self.files[state["name"]] = bytes(state["data"])
            return self._reply(opcode, 0, bytes([handle]))

        if opcode == 0x86:  # find first
            names = sorted(self.files)
            if not names:
                return self._reply(opcode, 0x87, bytes(25))
            handle = self._new_handle(mode="f", names=names, pos=0)
            return self._found(opcode, handle)

        if opcode == 0x87:  # find next
            return self._found(opcode, payload[2])

        if opcode == 0x85:  # delete
            name = _cstring(payload, 2)
            status = 0 if self.files.pop(name, None) is not None else 0x87
            return self._reply(opcode, status, payload[2:22])

        if opcode == 0x9B:  # device info
            body = b"NXT".ljust(15, b"\x00") + bytes(7) + bytes(4)
            return self._reply(opcode, 0, body + struct.pack("<I", self.free_flash))

        if opcode == 0xA0:  # delete user flash
            self.files.clear()
            return self._reply(opcode)

        return self._reply(opcode, 0xBE)

    def _found(self, opcode: int, handle: int) -> bytes:
        state = self._handles[handle]
        if state["pos"] >= len(state["names"]):
            return self._reply(opcode, 0x87, bytes([handle]) + bytes(24))
        name = state["names"][state["pos"]]
        state["pos"] += 1
        body = (
            bytes([handle])
            + name.encode("ascii").ljust(20, b"\x00")
            + struct.pack("<I", len(self.files[name]))
        )
        return self._reply(opcode, 0, body)


# =============================================================================
# EV3 Simulator
# =============================================================================

class Ev3BrickSim(ScriptedBrick):
    """
    Minimal EV3 firmware file system.

    Attributes:
        files: Stored files by absolute path.
        listings: Listing text returned for a directory path.
        mailbox: (name, payload) pairs written to mailboxes.
        sequence_offset: Added to echoed sequence numbers.
        failures: Status to answer instead, by opcode.
    """

    def __init__(self):
        super().__init__()
        self.files: dict[str, bytes] = {}
        self.listings: dict[str, str] = {}
        self.directories: set[str] = set()
        self.mailbox: list[tuple[str, bytes]] = []
        self.sequence_offset = 0
        self.failures: dict[int, int] = {}
        self._handles: dict[int, dict] = {}
        self._next_handle = 0

    def _new_handle(self, **state) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._handles[handle] = state
        return handle

    def _reply(self, payload: bytes, status: int = 0, body: bytes = b"") -> bytes:
        sequence = struct.unpack_from("<H", payload, 0)[0] + self.sequence_offset
        reply_type = 0x03 if status in (0x00, 0x08) else 0x05
        return struct.pack("<H", sequence) + bytes([reply_type, payload[3], status]) + body

    def handle(self, payload: bytes):
        opcode = payload[3]

        if opcode in self.failures:
            return self._reply(payload, self.failures[opcode])

        if opcode == 0x9E:  # write mailbox
            name_length = payload[4]
            name = payload[5:5 + name_length - 1].decode("ascii")
            offset = 5 + name_length
            size = struct.unpack_from("<H", payload, offset)[0]
            self.mailbox.append((name, payload[offset + 2:offset + 2 + size]))
            if payload[2] & 0x80:
                return None
            return self._reply(payload)

        if opcode == 0x92:  # begin download
            size = struct.unpack_from("<I", payload, 4)[0]
            path = _cstring(payload, 8)
            handle = self._new_handle(mode="w", path=path, size=size, data=bytearray())
            return self._reply(payload, 0, bytes([handle]))

        if opcode == 0x93:  # continue download
            handle = payload[4]
            self._handles[handle]["data"].extend(payload[5:])
            return self._reply(payload, 0, bytes([handle]))

        if opcode == 0x94:  # begin upload
            max_chunk = struct.unpack_from("<H", payload, 4)[0]
            path = _cstring(payload, 6)
            if path not in self.files:
                return self._reply(payload, 0x06, bytes(5))
            content = self.files[path]
            first = content[:max_chunk]
            handle = self._new_handle(mode="r", path=path, pos=len(first))
            status = 0x08 if len(first) == len(content) else 0x00
            if status == 0x08:
                self._handles.pop(handle)
            return self._reply(
                payload, status,
                struct.pack("<I", len(content)) + bytes([handle]) + first,
            )

        if opcode == 0x95:  # continue upload
            handle = payload[4]
            count = struct.unpack_from("<H", payload, 5)[0]
            state = self._handles[handle]
            content = self.files[state["path"]]
            data = content[state["pos"]:state["pos"] + count]
            state["pos"] += len(data)
            status = 0x08 if state["pos"] >= len(content) else 0x00
            if status == 0x08:
                self._handles.pop(handle)
            return self._reply(payload, status, bytes([handle]) + data)

        if opcode == 0x98:  # close handle
            handle = payload[4]
            state = self._handles.pop(handle, None)
            if state is None:
                return self._reply(payload, 0x01, bytes([handle]))
            if state["mode"] == "w":
                self.files[state["path"]] = bytes(state["data"])
            return self._reply(payload, 0, bytes([handle]))

        if opcode == 0x99:  # list files
            max_chunk = struct.unpack_from("<H", payload, 4)[0]
            path = _cstring(payload, 6)
            if path not in self.listings:
                return self._reply(payload, 0x06, bytes(5))
            text = self.listings[path].encode("utf-8")
            first = text[:max_chunk]
            handle = self._new_handle(mode="l", text=text, pos=len(first))
            status = 0x08 if len(first) == len(text) else 0x00
            if status == 0x08:
                self._handles.pop(handle)
            return self._reply(
                payload, status, struct.pack("<I", len(text)) + bytes([handle]) + first
            )

        if opcode == 0x9A:  # continue list
            handle = payload[4]
            count = struct.unpack_from("<H", payload, 5)[0]
            state = self._handles[handle]
            data = state["text"][state["pos"]:state["pos"] + count]
            state["pos"] += len(data)
            status = 0x08 if state["pos"] >= len(state["text"]) else 0x00
            if status == 0x08:
                self._handles.pop(handle)
            return self._reply(payload, status, bytes([handle]) + data)

        if opcode == 0x9B:  # create dir
            path = _cstring(payload, 4)
            if path in self.directories:
                return self._reply(payload, 0x07)
            self.directories.add(path)
            return self._reply(payload)

        if opcode == 0x9C:  # delete file
            path = _cstring(payload, 4)
            if self.files.pop(path, None) is None:
                return self._reply(payload, 0x06)
            return self._reply(payload)

        if opcode == 0x9D:  # list open handles
            bitmap = 0
            for handle in self._handles:
                bitmap |= 1 << handle
            return self._reply(payload, 0, struct.pack("<I", bitmap))

        return self._reply(payload, 0x0A)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def nxt_sim():
    return NxtBrickSim()


@pytest.fixture
def nxt_connection(nxt_sim):
    connection = Connection(nxt_sim, NxtReply, settle_delay=0)
    connection.open()
    yield connection
    connection.close()


@pytest.fixture
def ev3_sim():
    return Ev3BrickSim()


@pytest.fixture
def ev3_connection(ev3_sim):
    connection = Connection(ev3_sim, Ev3Reply, settle_delay=0)
    connection.open()
    yield connection
    connection.close()
