"""Frame builder and parser for the TCP transport.

Frame layout::

    +-------------+----------------+---------+----------+---------+----------+----------+
    |    Magic    | Payload length | Command | Checksum | Session | Sequence |   Body   |
    |   4 bytes   |  4 bytes (LE)  | 2 bytes |  2 bytes | 2 bytes |  2 bytes | variable |
    +-------------+----------------+---------+----------+---------+----------+----------+
                                   |<------------------ payload (inner packet) -------->|

- Magic: 0x50 0x50 0x82 0x7D
- Payload length: little-endian byte count of the inner packet
- Checksum: ones'-complement word sum over the inner packet with the
  checksum slot zeroed (see :func:`~zkclock_mcp.utils.checksum.checksum16`)
- Session / Sequence: little-endian, assigned by the device and the client

Replies are accepted without checking their checksum; some firmware gets
it wrong.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from ..errors import BadMagicError, PacketTooShortError
from ..utils.checksum import checksum16

MAGIC = b"\x50\x50\x82\x7D"
HEADER_SIZE = 8
INNER_HEADER_SIZE = 8  # cmd(2) + checksum(2) + session(2) + sequence(2)

_HEADER = struct.Struct("<4sI")
_INNER = struct.Struct("<HHHH")


@dataclass
class Frame:
    """A parsed inner packet."""

    command: int
    session_id: int
    sequence: int
    body: bytes = b""
    checksum: int = 0

    def __repr__(self) -> str:
        return (
            f"Frame(command={self.command}, session=0x{self.session_id:04X}, "
            f"sequence={self.sequence}, "
            f"body={self.body[:16].hex(' ') if self.body else '(empty)'}"
            f"{' ...' if len(self.body) > 16 else ''})"
        )


def packet_checksum(command: int, session_id: int, sequence: int, body: bytes = b"") -> int:
    """Checksum of an inner packet built from these fields."""
    return checksum16(_INNER.pack(command, 0, session_id, sequence) + body)


def encode(command: int, session_id: int, sequence: int, body: bytes = b"") -> bytes:
    """Build a complete wire frame.

    Args:
        command: 16-bit command code.
        session_id: Session id assigned by the device (0 before CONNECT).
        sequence: Per-request sequence number.
        body: Command-specific body bytes.

    Returns:
        ``magic + payload_length + inner packet`` ready for ``sendall``.
    """
    inner = bytearray(_INNER.pack(command, 0, session_id, sequence))
    inner += body
    struct.pack_into("<H", inner, 2, checksum16(bytes(inner)))
    return _HEADER.pack(MAGIC, len(inner)) + bytes(inner)


def decode_header(data: bytes) -> int:
    """Validate an 8-byte frame header and return the payload length.

    Raises:
        BadMagicError: If the magic bytes are wrong.
        PacketTooShortError: If fewer than 8 bytes were given.
    """
    if len(data) < HEADER_SIZE:
        raise PacketTooShortError(f"Frame header needs {HEADER_SIZE} bytes, got {len(data)}")
    magic, length = _HEADER.unpack_from(data)
    if magic != MAGIC:
        raise BadMagicError(f"Invalid frame magic: {magic.hex(' ')}")
    return length


def decode_inner(data: bytes) -> Frame:
    """Parse an inner packet into a :class:`Frame`.

    Raises:
        PacketTooShortError: If ``data`` is shorter than the inner header.
    """
    if len(data) < INNER_HEADER_SIZE:
        raise PacketTooShortError(f"Payload too small: {len(data)} bytes")
    command, checksum, session_id, sequence = _INNER.unpack_from(data)
    return Frame(
        command=command,
        session_id=session_id,
        sequence=sequence,
        body=bytes(data[INNER_HEADER_SIZE:]),
        checksum=checksum,
    )


def decode(data: bytes) -> Frame:
    """Parse a complete wire frame (header + payload)."""
    length = decode_header(data[:HEADER_SIZE])
    payload = data[HEADER_SIZE : HEADER_SIZE + length]
    if len(payload) != length:
        raise PacketTooShortError(
            f"Incomplete frame: expected {length} payload bytes, got {len(payload)}"
        )
    return decode_inner(payload)
