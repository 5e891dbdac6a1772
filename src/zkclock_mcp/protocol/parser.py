"""Reply parsing for device frames."""

from __future__ import annotations

import struct

from ..errors import NoDataError, ProtocolError
from .commands import Command, command_name
from .framing import Frame


def parse_session_id(frame: Frame) -> int:
    """Session id from a CONNECT reply.

    The device assigns it in the session field of the reply header
    (bytes 4-5 of the payload).
    """
    return frame.session_id


def parse_prepare_size(frame: Frame) -> int:
    """Total table size announced by a PREPARE_BUFFER acknowledgement.

    The size is a little-endian u32 at body offset 1.

    Raises:
        ProtocolError: If the reply is not an acknowledgement.
        NoDataError: If the body is too short to hold the size.
    """
    if frame.command not in (Command.PREPARE_DATA, Command.ACK_OK):
        raise ProtocolError(
            f"Unexpected reply to PREPARE_BUFFER: {command_name(frame.command)}"
        )
    if len(frame.body) < 5:
        raise NoDataError(
            f"PREPARE_BUFFER reply too small: {len(frame.body)} bytes"
        )
    return struct.unpack_from("<I", frame.body, 1)[0]


def parse_chunk_size(frame: Frame) -> int:
    """Byte count announced by a PREPARE_DATA reply to READ_BUFFER."""
    if len(frame.body) < 4:
        raise NoDataError(f"PREPARE_DATA reply too small: {len(frame.body)} bytes")
    return struct.unpack_from("<I", frame.body, 0)[0]


def is_ack(frame: Frame) -> bool:
    """True for the generic ACK_OK reply."""
    return frame.command == Command.ACK_OK


def expect_ack(frame: Frame, request: Command) -> Frame:
    """Return ``frame`` if it is ACK_OK, else raise ``ProtocolError``."""
    if not is_ack(frame):
        raise ProtocolError(
            f"Expected ACK_OK after {request.name}, got {command_name(frame.command)}"
        )
    return frame
