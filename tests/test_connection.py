"""
Tests for the Brick Connection
==============================

Runs Connection over LoopbackTransport and mocked transports to verify:
- Length framing on the wire
- The open/close state machine and settle delay
- Classification of transport failures
"""

import pytest
from unittest.mock import Mock, patch

from brick_sdk.comms.codec import Command, Reply
from brick_sdk.comms.connection import (
    MAX_PAYLOAD_SIZE,
    SETTLE_DELAY,
    Connection,
    decode_length,
    encode_length,
)
from brick_sdk.comms.ev3 import Ev3Reply
from brick_sdk.comms.nxt import NxtReply
from brick_sdk.comms.transport import LoopbackTransport, Transport
from brick_sdk.errors import (
    ConnectionError,
    ConnectionErrorCode,
    Ev3BrickError,
    Ev3ErrorCode,
    NxtBrickError,
    NxtErrorCode,
    TransportError,
)


def make_command(*values: int) -> Command:
    cmd = Command()
    for value in values:
        cmd.append_byte(value)
    return cmd


def open_connection(transport, reply_type=NxtReply) -> Connection:
    conn = Connection(transport, reply_type, settle_delay=0)
    conn.open()
    return conn


def mock_transport(length_prefixed: bool = True) -> Mock:
    transport = Mock(spec=Transport)
    transport.length_prefixed = length_prefixed
    return transport


# =============================================================================
# Length Header Tests
# =============================================================================

class TestLengthHeader:
    """Tests for the 2-byte length header."""

    def test_encode_little_endian(self):
        """The header is the payload length, low byte first."""
        assert encode_length(3) == b"\x03\x00"
        assert encode_length(0x1234) == b"\x34\x12"

    def test_decode_little_endian(self):
        """decode_length reads the same layout."""
        assert decode_length(b"\x34\x12") == 0x1234

    def test_payload_too_large(self):
        """Payloads longer than 0xFFFF bytes cannot be framed."""
        assert encode_length(MAX_PAYLOAD_SIZE) == b"\xFF\xFF"
        with pytest.raises(ValueError, match="too large"):
            encode_length(MAX_PAYLOAD_SIZE + 1)


# =============================================================================
# Loopback Exchange Tests
# =============================================================================

class TestLoopbackExchange:
    """Tests for complete exchanges over an echoing loopback."""

    def test_echo_round_trip(self):
        """A framed command comes back as a reply with the same payload."""
        transport = LoopbackTransport()
        conn = open_connection(transport)

        reply = conn.send_and_receive(make_command(0x01, 0x02, 0x03))

        assert isinstance(reply, NxtReply)
        assert reply.data == b"\x01\x02\x03"
        assert transport.written == [b"\x03\x00\x01\x02\x03"]
        assert transport.pending == 0

    def test_send_marks_command_sent(self):
        """A command cannot be extended after it was sent."""
        conn = open_connection(LoopbackTransport())
        cmd = make_command(0x01)
        conn.send(cmd)
        assert cmd.sent
        with pytest.raises(ValueError):
            cmd.append_byte(0x02)

    def test_empty_payload(self):
        """A zero length message is just a header."""
        transport = LoopbackTransport()
        conn = open_connection(transport)
        reply = conn.send_and_receive(Command())
        assert reply.data == b""
        assert transport.written == [b"\x00\x00"]

    def test_reply_type_selects_family(self):
        """The family follows the reply type given at construction."""
        assert Connection(LoopbackTransport(), NxtReply).error_family is NxtBrickError
        assert Connection(LoopbackTransport(), Ev3Reply).error_family is Ev3BrickError

    def test_reply_type_without_family_rejected(self):
        """The plain Reply class has no error family."""
        with pytest.raises(TypeError):
            Connection(LoopbackTransport(), Reply)

    def test_context_manager(self):
        """The with statement opens and closes the connection."""
        transport = LoopbackTransport()
        with Connection(transport, NxtReply, settle_delay=0) as conn:
            assert conn.is_open
            assert transport.is_open
        assert not conn.is_open
        assert not transport.is_open


# =============================================================================
# State Tests
# =============================================================================

class TestConnectionState:
    """Tests for opening and closing."""

    def test_send_when_closed(self):
        """Sending on a closed connection raises NOT_OPEN."""
        conn = Connection(LoopbackTransport(), NxtReply, settle_delay=0)
        with pytest.raises(ConnectionError) as exc_info:
            conn.send(make_command(0x01))
        assert exc_info.value.code is ConnectionErrorCode.NOT_OPEN

    def test_receive_when_closed(self):
        """Receiving on a closed connection raises NOT_OPEN."""
        conn = Connection(LoopbackTransport(), NxtReply, settle_delay=0)
        with pytest.raises(ConnectionError) as exc_info:
            conn.receive()
        assert exc_info.value.code is ConnectionErrorCode.NOT_OPEN

    def test_open_failure(self):
        """A transport that cannot open gives OPEN_ERROR."""
        transport = mock_transport()
        transport.open.side_effect = TransportError("no such port")
        conn = Connection(transport, NxtReply, settle_delay=0)

        with pytest.raises(ConnectionError) as exc_info:
            conn.open()

        assert exc_info.value.code is ConnectionErrorCode.OPEN_ERROR
        assert "no such port" in str(exc_info.value)
        assert not conn.is_open

    def test_close_swallows_transport_error(self):
        """A failing close is logged and the connection ends up closed."""
        transport = mock_transport()
        transport.close.side_effect = TransportError("device gone")
        conn = open_connection(transport)

        conn.close()

        assert not conn.is_open
        transport.close.assert_called_once()

    def test_settle_delay(self):
        """open() waits for the settle delay."""
        with patch("brick_sdk.comms.connection.time.sleep") as sleep:
            conn = Connection(LoopbackTransport(), NxtReply)
            conn.open()
        sleep.assert_called_once_with(SETTLE_DELAY)
        assert SETTLE_DELAY == 1.0

    def test_no_settle_delay(self):
        """A zero settle delay does not sleep."""
        with patch("brick_sdk.comms.connection.time.sleep") as sleep:
            open_connection(LoopbackTransport())
        sleep.assert_not_called()

    def test_open_twice(self):
        """Opening an open connection does nothing."""
        transport = mock_transport()
        conn = open_connection(transport)
        conn.open()
        transport.open.assert_called_once()


# =============================================================================
# Failure Classification Tests
# =============================================================================

class TestFailureClassification:
    """Tests for mapping transport failures to typed errors."""

    def test_write_failure(self):
        """A failing write is a WRITE_ERROR and the command stays unsent."""
        transport = mock_transport()
        transport.write.side_effect = TransportError("write timeout")
        conn = open_connection(transport)
        cmd = make_command(0x01)

        with pytest.raises(ConnectionError) as exc_info:
            conn.send(cmd)

        assert exc_info.value.code is ConnectionErrorCode.WRITE_ERROR
        assert not cmd.sent

    def test_no_reply(self):
        """Nothing received before the timeout is NO_REPLY."""
        conn = open_connection(LoopbackTransport(echo=False))
        with pytest.raises(ConnectionError) as exc_info:
            conn.receive()
        assert exc_info.value.code is ConnectionErrorCode.NO_REPLY

    def test_read_failure_before_any_byte(self):
        """A read error with no bytes read is NO_REPLY."""
        transport = mock_transport()
        transport.read.side_effect = TransportError("timeout", bytes_read=0)
        conn = open_connection(transport)
        with pytest.raises(ConnectionError) as exc_info:
            conn.receive()
        assert exc_info.value.code is ConnectionErrorCode.NO_REPLY

    def test_read_failure_after_some_bytes(self):
        """A read error after part of the header is READ_ERROR."""
        transport = mock_transport()
        transport.read.side_effect = TransportError("pipe", bytes_read=1)
        conn = open_connection(transport)
        with pytest.raises(ConnectionError) as exc_info:
            conn.receive()
        assert exc_info.value.code is ConnectionErrorCode.READ_ERROR

    def test_one_byte_header(self):
        """Half a length header is READ_ERROR."""
        transport = LoopbackTransport(echo=False)
        conn = open_connection(transport)
        transport.feed(b"\x05")
        with pytest.raises(ConnectionError) as exc_info:
            conn.receive()
        assert exc_info.value.code is ConnectionErrorCode.READ_ERROR

    def test_payload_read_failure(self):
        """A read error inside the payload is READ_ERROR."""
        transport = mock_transport()
        transport.read.side_effect = [b"\x04\x00", TransportError("pipe")]
        conn = open_connection(transport)
        with pytest.raises(ConnectionError) as exc_info:
            conn.receive()
        assert exc_info.value.code is ConnectionErrorCode.READ_ERROR

    def test_short_payload_nxt(self):
        """A payload shorter than announced is an NXT length error."""
        transport = LoopbackTransport(echo=False)
        conn = open_connection(transport, NxtReply)
        transport.feed(b"\x05\x00\x02\x84")
        with pytest.raises(NxtBrickError) as exc_info:
            conn.receive()
        assert exc_info.value.code is NxtErrorCode.WRONG_NUMBER_OF_BYTES

    def test_short_payload_ev3(self):
        """A payload shorter than announced is an EV3 length error."""
        transport = LoopbackTransport(echo=False)
        conn = open_connection(transport, Ev3Reply)
        transport.feed(b"\x06\x00\x64\x00\x03")
        with pytest.raises(Ev3BrickError) as exc_info:
            conn.receive()
        assert exc_info.value.code is Ev3ErrorCode.WRONG_NUMBER_OF_BYTES

    def test_end_of_message_called(self):
        """The transport is told when a complete reply was taken."""
        transport = mock_transport()
        transport.read.side_effect = [b"\x01\x00", b"\x02"]
        conn = open_connection(transport)
        reply = conn.receive()
        assert reply.data == b"\x02"
        transport.end_of_message.assert_called_once()


# =============================================================================
# Pass-through Transport Tests
# =============================================================================

class TestUnframedTransport:
    """Tests for transports that carry payloads without a header."""

    def test_payload_written_raw(self):
        """No length header is added."""
        transport = mock_transport(length_prefixed=False)
        conn = open_connection(transport)
        conn.send(make_command(0x01, 0x9B))
        transport.write.assert_called_once_with(b"\x01\x9B")

    def test_one_read_is_one_reply(self):
        """The next received segment is the reply."""
        transport = mock_transport(length_prefixed=False)
        transport.read.return_value = b"\x02\x9B\x00"
        conn = open_connection(transport)
        reply = conn.receive()
        assert reply.data == b"\x02\x9B\x00"

    def test_nothing_received(self):
        """An empty read is NO_REPLY."""
        transport = mock_transport(length_prefixed=False)
        transport.read.return_value = b""
        conn = open_connection(transport)
        with pytest.raises(ConnectionError) as exc_info:
            conn.receive()
        assert exc_info.value.code is ConnectionErrorCode.NO_REPLY
