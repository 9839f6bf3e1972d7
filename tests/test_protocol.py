"""Tests for the wire codec."""

from __future__ import annotations

import asyncio
import json

import pytest

from mc_gateway.protocol import (
    NEXT_LOGIN,
    Handshake,
    LoginStart,
    PacketReader,
    ProtocolError,
    build_disconnect,
    build_packet,
    build_pong,
    build_status_response,
    encode_string,
    encode_varint,
    read_packet,
)


def stream_of(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class TestVarInt:
    """Tests for VarInt encoding."""

    @pytest.mark.parametrize(
        "value,encoded",
        [
            (0, b"\x00"),
            (1, b"\x01"),
            (127, b"\x7f"),
            (128, b"\x80\x01"),
            (255, b"\xff\x01"),
            (25565, b"\xdd\xc7\x01"),
            (2147483647, b"\xff\xff\xff\xff\x07"),
            (-1, b"\xff\xff\xff\xff\x0f"),
        ],
    )
    def test_known_encodings(self, value, encoded):
        """Test values against the reference encodings."""
        assert encode_varint(value) == encoded
        assert PacketReader(encoded).read_varint() == value

    def test_too_long(self):
        """Test a VarInt longer than five bytes is rejected."""
        with pytest.raises(ProtocolError, match="too long"):
            PacketReader(b"\xff\xff\xff\xff\xff\x01").read_varint()

    def test_truncated(self):
        """Test reading past the payload is rejected."""
        with pytest.raises(ProtocolError, match="truncated"):
            PacketReader(b"\x80").read_varint()


class TestReadPacket:
    """Tests for frame reading."""

    @pytest.mark.asyncio
    async def test_reads_id_and_payload(self):
        """Test a frame is split into id and payload."""
        packet_id, packet = await read_packet(stream_of(build_packet(0x01, b"abcdefgh")))
        assert packet_id == 0x01
        assert packet.read(8) == b"abcdefgh"
        assert packet.remaining == 0

    @pytest.mark.asyncio
    async def test_first_byte_already_read(self):
        """Test continuing a frame whose first byte was consumed."""
        frame = build_packet(0x00, b"xyz")
        packet_id, packet = await read_packet(stream_of(frame[1:]), frame[:1])
        assert packet_id == 0x00
        assert packet.read(3) == b"xyz"

    @pytest.mark.asyncio
    async def test_invalid_length(self):
        """Test zero-length frames are rejected."""
        with pytest.raises(ProtocolError):
            await read_packet(stream_of(b"\x00"))

    @pytest.mark.asyncio
    async def test_oversized_length(self):
        """Test frames beyond the protocol limit are rejected."""
        with pytest.raises(ProtocolError):
            await read_packet(stream_of(encode_varint(2**22)))

    @pytest.mark.asyncio
    async def test_peer_closed_mid_frame(self):
        """Test an incomplete frame surfaces as IncompleteReadError."""
        with pytest.raises(asyncio.IncompleteReadError):
            await read_packet(stream_of(b"\x05\x00\x01"))


class TestPackets:
    """Tests for the individual packets."""

    def test_handshake_parse(self):
        """Test parsing a handshake."""
        frame = Handshake(765, "play.example.com", 25565, NEXT_LOGIN).encode()
        packet = PacketReader(frame)
        packet.read_varint()  # length
        assert packet.read_varint() == 0x00

        handshake = Handshake.parse(packet)

        assert handshake.protocol_version == 765
        assert handshake.server_address == "play.example.com"
        assert handshake.server_port == 25565
        assert handshake.next_state == NEXT_LOGIN

    def test_login_start_ignores_trailing_fields(self):
        """Test newer login start packets with a UUID still parse."""
        packet = PacketReader(encode_string("Steve") + bytes(16))
        assert LoginStart.parse(packet).player_name == "Steve"

    def test_status_response(self):
        """Test the status JSON is framed as a string."""
        payload = {"description": {"text": "Server inactive. Connect to start"}}
        packet = PacketReader(build_status_response(payload))
        packet.read_varint()
        assert packet.read_varint() == 0x00
        assert json.loads(packet.read_string()) == payload

    def test_pong_echoes_payload(self):
        """Test the pong carries the ping payload back."""
        assert build_pong(b"\x00" * 7 + b"\x2a") == build_packet(0x01, b"\x00" * 7 + b"\x2a")

    def test_disconnect_reason(self):
        """Test the disconnect reason is a JSON text component."""
        packet = PacketReader(build_disconnect("go away"))
        packet.read_varint()
        assert packet.read_varint() == 0x00
        assert json.loads(packet.read_string()) == {"text": "go away"}
