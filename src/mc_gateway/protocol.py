"""
Minimal Minecraft wire codec.

Only the packets the gateway has to understand while the backend is down:
the handshake, the status exchange (request/response, ping/pong) and the
login start / login disconnect pair. Everything else is spliced as raw bytes
and never decoded here.

Frame layout: ``VarInt length | VarInt packet id | payload``.
"""

from __future__ import annotations

import asyncio
import json
import struct
from dataclasses import dataclass
from typing import Any

# Packet ids
HANDSHAKE = 0x00
STATUS_REQUEST = 0x00
STATUS_RESPONSE = 0x00
PING = 0x01
PONG = 0x01
LOGIN_START = 0x00
LOGIN_DISCONNECT = 0x00

# Handshake next states
NEXT_STATUS = 1
NEXT_LOGIN = 2
NEXT_TRANSFER = 3

# First byte of a pre-1.7 server list ping
LEGACY_PING = 0xFE

MAX_PACKET_LENGTH = 2**21 - 1
MAX_VARINT_BYTES = 5


class ProtocolError(Exception):
    """Malformed or unexpected data from a client."""


def encode_varint(value: int) -> bytes:
    """Encode a signed 32-bit int as a VarInt."""
    value &= 0xFFFFFFFF
    out = bytearray()
    while True:
        b = value & 0x7F
        value >>= 7
        if value:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def encode_string(value: str) -> bytes:
    """Encode a UTF-8 string prefixed with its VarInt length."""
    data = value.encode("utf-8")
    return encode_varint(len(data)) + data


def _signed(value: int) -> int:
    return value - (1 << 32) if value & 0x80000000 else value


class PacketReader:
    """Cursor over a packet payload."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def read(self, n: int) -> bytes:
        if n > self.remaining:
            raise ProtocolError(f"Packet truncated: wanted {n} bytes, have {self.remaining}")
        chunk = self.data[self.pos : self.pos + n]
        self.pos += n
        return chunk

    def read_varint(self) -> int:
        result = 0
        for i in range(MAX_VARINT_BYTES):
            b = self.read(1)[0]
            result |= (b & 0x7F) << (7 * i)
            if not b & 0x80:
                return _signed(result)
        raise ProtocolError("VarInt too long")

    def read_string(self, max_length: int = 32767) -> str:
        length = self.read_varint()
        if length < 0 or length > max_length * 4:
            raise ProtocolError(f"String length {length} out of range")
        return self.read(length).decode("utf-8", errors="replace")

    def read_ushort(self) -> int:
        value: int = struct.unpack(">H", self.read(2))[0]
        return value


async def read_varint(reader: asyncio.StreamReader, first: bytes | None = None) -> int:
    """Read a VarInt from a stream, optionally starting from an already read byte."""
    result = 0
    for i in range(MAX_VARINT_BYTES):
        if i == 0 and first is not None:
            b = first[0]
        else:
            b = (await reader.readexactly(1))[0]
        result |= (b & 0x7F) << (7 * i)
        if not b & 0x80:
            return _signed(result)
    raise ProtocolError("VarInt too long")


async def read_packet(
    reader: asyncio.StreamReader, first: bytes | None = None
) -> tuple[int, PacketReader]:
    """Read one frame and return ``(packet_id, payload)``.

    Raises:
        ProtocolError: If the frame length is out of range
        asyncio.IncompleteReadError: If the peer closed mid-frame
    """
    length = await read_varint(reader, first)
    if length <= 0 or length > MAX_PACKET_LENGTH:
        raise ProtocolError(f"Invalid packet length {length}")
    packet = PacketReader(await reader.readexactly(length))
    return packet.read_varint(), packet


def build_packet(packet_id: int, payload: bytes = b"") -> bytes:
    """Frame *payload* under *packet_id*."""
    body = encode_varint(packet_id) + payload
    return encode_varint(len(body)) + body


@dataclass(frozen=True)
class Handshake:
    """Serverbound handshake."""

    protocol_version: int
    server_address: str
    server_port: int
    next_state: int

    @classmethod
    def parse(cls, packet: PacketReader) -> Handshake:
        return cls(
            protocol_version=packet.read_varint(),
            server_address=packet.read_string(255),
            server_port=packet.read_ushort(),
            next_state=packet.read_varint(),
        )

    def encode(self) -> bytes:
        payload = (
            encode_varint(self.protocol_version)
            + encode_string(self.server_address)
            + struct.pack(">H", self.server_port)
            + encode_varint(self.next_state)
        )
        return build_packet(HANDSHAKE, payload)


@dataclass(frozen=True)
class LoginStart:
    """Serverbound login start. Trailing fields (UUID, signature) are ignored."""

    player_name: str

    @classmethod
    def parse(cls, packet: PacketReader) -> LoginStart:
        return cls(player_name=packet.read_string(16))


def build_status_response(payload: dict[str, Any]) -> bytes:
    """Encode a status response carrying *payload* as JSON."""
    return build_packet(STATUS_RESPONSE, encode_string(json.dumps(payload, ensure_ascii=False)))


def build_pong(payload: bytes) -> bytes:
    """Echo a ping payload back."""
    return build_packet(PONG, payload)


def build_disconnect(message: str) -> bytes:
    """Encode a login-state disconnect with a plain text reason."""
    return build_packet(LOGIN_DISCONNECT, encode_string(json.dumps({"text": message})))
