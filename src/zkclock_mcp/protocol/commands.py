"""Command codes and request body builders.

Request and reply codes share one 16-bit space; replies use the ``ACK_*``
and data-transfer codes.
"""

from __future__ import annotations

import struct
from enum import IntEnum

from .framing import encode

DEFAULT_PORT = 4370
MAX_CHUNK = 0xFFC0  # 65472 bytes per READ_BUFFER request


class Command(IntEnum):
    """Command and reply codes."""

    CONNECT = 1000
    EXIT = 1001
    DISABLE_DEVICE = 1003
    ENABLE_DEVICE = 1004
    GET_FREE_SIZES = 50
    ATTLOG_READ_REQUEST = 13
    CLEAR_ATTLOG = 15

    PREPARE_DATA = 1500
    DATA = 1501
    FREE_DATA = 1502
    PREPARE_BUFFER = 1503
    READ_BUFFER = 1504

    ACK_OK = 2000
    ACK_ERROR = 2001
    ACK_DATA = 2002
    ACK_RETRY = 2003
    ACK_REPEAT = 2004
    ACK_UNAUTH = 2005
    ACK_UNKNOWN = 0xFFFF


def command_name(code: int) -> str:
    """Readable name for a code, falling back to the number."""
    try:
        return Command(code).name
    except ValueError:
        return str(code)


def build_command(
    command: Command,
    session_id: int = 0,
    sequence: int = 0,
    body: bytes = b"",
) -> bytes:
    """Build a wire frame for a command."""
    return encode(command.value, session_id, sequence, body)


def build_prepare_buffer_body(target: Command | int, fct: int = 0, ext: int = 0) -> bytes:
    """Body of a PREPARE_BUFFER request for the table read by ``target``.

    Layout is ``<bhii``: marker byte (always 1), target command, fct, ext.
    """
    return struct.pack("<bhii", 1, int(target), fct, ext)


def build_read_buffer_body(start: int, length: int) -> bytes:
    """Body of a READ_BUFFER request: signed LE start offset and length."""
    if start < 0 or length <= 0:
        raise ValueError(f"Invalid chunk request: start={start}, length={length}")
    return struct.pack("<ii", start, length)
