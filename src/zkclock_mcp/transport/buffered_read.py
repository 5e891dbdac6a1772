"""Chunked bulk transfer for tables larger than one frame.

The device stages the table in a buffer on PREPARE_BUFFER and answers with
either the whole table inline (DATA) or its total size. The client then
pulls fixed-size slices with READ_BUFFER and finally releases the buffer
with FREE_DATA::

    PREPARE_BUFFER {1, table, 0, 0}  ->  DATA <table>          (done)
                                     ->  PREPARE_DATA <size>
    READ_BUFFER {start, length}      ->  DATA <slice>
                                     ->  PREPARE_DATA <n>, DATA..., ACK_OK
    FREE_DATA                        ->  ACK_OK
"""

from __future__ import annotations

import logging

from ..errors import ChunkReadError, ClockError
from ..protocol.commands import (
    MAX_CHUNK,
    Command,
    build_prepare_buffer_body,
    build_read_buffer_body,
    command_name,
)
from ..protocol.framing import Frame
from ..protocol.parser import parse_chunk_size, parse_prepare_size
from .tcp_connection import TCPConnection

logger = logging.getLogger(__name__)

CHUNK_ATTEMPTS = 3


def chunk_plan(total_size: int, max_chunk: int = MAX_CHUNK) -> list[tuple[int, int]]:
    """Split ``total_size`` into ``(start, length)`` READ_BUFFER requests.

    Full chunks come first; a trailing partial chunk is added only when
    ``total_size`` is not a multiple of ``max_chunk``.
    """
    full_chunks, remainder = divmod(total_size, max_chunk)
    plan = [(i * max_chunk, max_chunk) for i in range(full_chunks)]
    if remainder:
        plan.append((full_chunks * max_chunk, remainder))
    return plan


def read_with_buffer(
    conn: TCPConnection,
    command: Command,
    fct: int = 0,
    ext: int = 0,
    max_chunk: int = MAX_CHUNK,
) -> bytes:
    """Read a whole device table through the buffered transfer.

    Args:
        conn: An open session.
        command: The table-read command to stage, e.g. ATTLOG_READ_REQUEST.
        fct: Table function selector (0 for attendance).
        ext: Extra selector (0 for attendance).
        max_chunk: Largest slice requested per READ_BUFFER.

    Returns:
        The raw table bytes, in device order.

    Raises:
        ChunkReadError: If a chunk keeps getting unexpected replies.
        ProtocolError, NoDataError: If the prepare reply is unusable.
        ConnectionFailedError, DeviceTimeoutError: On transport failures.

    FREE_DATA is sent on every exit path.
    """
    try:
        reply = conn.send_command(
            Command.PREPARE_BUFFER, build_prepare_buffer_body(command, fct, ext)
        )
        if reply.command == Command.DATA:
            logger.debug("Table returned inline: %d bytes", len(reply.body))
            return reply.body

        total_size = parse_prepare_size(reply)
        plan = chunk_plan(total_size, max_chunk)
        logger.debug("Table size %d bytes in %d chunk(s)", total_size, len(plan))

        buffer = bytearray()
        for start, length in plan:
            chunk = read_chunk(conn, start, length)
            if len(chunk) != length:
                logger.debug(
                    "Chunk at %d: requested %d bytes, got %d", start, length, len(chunk)
                )
            buffer += chunk
        return bytes(buffer)
    finally:
        free_buffer(conn)


def read_chunk(
    conn: TCPConnection,
    start: int,
    length: int,
    attempts: int = CHUNK_ATTEMPTS,
) -> bytes:
    """Read one slice of the staged buffer.

    An unexpected reply code replays the READ_BUFFER command, up to
    ``attempts`` times in total. Transport errors are not retried.
    """
    body = build_read_buffer_body(start, length)
    for attempt in range(1, attempts + 1):
        reply = conn.send_command(Command.READ_BUFFER, body)
        data = _receive_chunk(conn, reply)
        if data is not None:
            return data
        logger.warning(
            "Chunk at %d: unexpected reply %s (attempt %d/%d)",
            start, command_name(reply.command), attempt, attempts,
        )
    raise ChunkReadError(start, length, attempts)


def free_buffer(conn: TCPConnection) -> None:
    """Release the device-side buffer; failures are logged, not raised."""
    try:
        conn.send_command(Command.FREE_DATA)
    except ClockError as e:
        logger.warning("FREE_DATA failed: %s", e)


def _receive_chunk(conn: TCPConnection, reply: Frame) -> bytes | None:
    if reply.command == Command.DATA:
        return reply.body

    if reply.command == Command.PREPARE_DATA:
        size = parse_chunk_size(reply)
        data = bytearray()
        while len(data) < size:
            frame = conn.read_frame()
            if frame.command != Command.DATA or not frame.body:
                logger.warning(
                    "Split chunk interrupted by %s after %d of %d bytes",
                    command_name(frame.command), len(data), size,
                )
                return None
            data += frame.body

        ack = conn.read_frame()
        if ack.command != Command.ACK_OK:
            logger.debug("Expected ACK_OK after chunk data, got %s", command_name(ack.command))
        return bytes(data)

    return None
