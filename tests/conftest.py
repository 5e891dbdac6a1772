"""Shared fixtures: a scripted fake time clock behind the socket API."""

from __future__ import annotations

import socket
import struct
from datetime import datetime, timezone

import pytest

from zkclock_mcp.models.attendance import pack_timestamp
from zkclock_mcp.models.layouts import FLAT_V1, RecordLayout
from zkclock_mcp.protocol.commands import Command
from zkclock_mcp.protocol.framing import HEADER_SIZE, Frame, decode_header, decode_inner, encode
from zkclock_mcp.transport.tcp_connection import TCPConnection

DEVICE_HOST = "10.0.0.50"


class FakeDeviceSocket:
    """Socket stand-in that answers like a time clock.

    Every frame passed to ``sendall`` is decoded with the real framer and
    recorded in ``requests``; replies are queued for ``recv``.

    Args:
        attlog: Raw ATTLOG table served by the buffered transfer.
        session_id: Session id assigned on CONNECT.
        free_sizes: 20 counters returned for GET_FREE_SIZES.
        inline: Answer PREPARE_BUFFER with the whole table as DATA.
        split: Answer READ_BUFFER with PREPARE_DATA + DATA frames + ACK_OK.
        chunk_failures: Number of READ_BUFFER requests answered ACK_ERROR.
        timeout_on: Commands whose reply never arrives (once each).
        silent: Commands that get no reply; the peer looks closed.
        replies: Command -> reply code override (empty body).
        raw_replies: Command -> raw bytes written instead of a frame.
        fail_send_on: Commands whose ``sendall`` raises ``OSError``.
    """

    def __init__(
        self,
        attlog: bytes = b"",
        session_id: int = 0x3A51,
        free_sizes: list[int] | None = None,
        inline: bool = False,
        split: bool = False,
        chunk_failures: int = 0,
        timeout_on=(),
        silent=(),
        replies: dict | None = None,
        raw_replies: dict | None = None,
        fail_send_on=(),
    ) -> None:
        self.attlog = attlog
        self.session_id = session_id
        self.free_sizes = free_sizes or [0] * 20
        self.inline = inline
        self.split = split
        self.chunk_failures = chunk_failures
        self.timeout_on = set(timeout_on)
        self.silent = set(silent)
        self.replies = dict(replies or {})
        self.raw_replies = dict(raw_replies or {})
        self.fail_send_on = set(fail_send_on)

        self.requests: list[Frame] = []
        self.timeouts: list[float] = []
        self.address = None
        self.closed = False
        self._outbox = bytearray()
        self._pending_timeout = False

    # ─── test helpers ────────────────────────────────────────────────

    def factory(self, address, timeout=None):
        """``socket.create_connection`` replacement returning this fake."""
        self.address = address
        return self

    @property
    def commands(self) -> list[int]:
        return [f.command for f in self.requests]

    def count(self, command: Command) -> int:
        return self.commands.count(command)

    # ─── socket surface ──────────────────────────────────────────────

    def settimeout(self, value):
        self.timeouts.append(value)

    def sendall(self, data: bytes) -> None:
        if self.closed:
            raise OSError("socket is closed")
        length = decode_header(data[:HEADER_SIZE])
        assert len(data) == HEADER_SIZE + length
        request = decode_inner(data[HEADER_SIZE:])
        self.requests.append(request)
        if request.command in self.fail_send_on:
            raise OSError("connection reset by peer")
        self._handle(request)

    def recv(self, size: int) -> bytes:
        if self._pending_timeout:
            self._pending_timeout = False
            raise socket.timeout("timed out")
        chunk = bytes(self._outbox[:size])
        del self._outbox[:size]
        return chunk

    def close(self) -> None:
        self.closed = True

    # ─── device behaviour ────────────────────────────────────────────

    def _reply(self, request: Frame, command: int, body: bytes = b"") -> None:
        self._outbox += encode(command, self.session_id, request.sequence, body)

    def _handle(self, request: Frame) -> None:
        command = request.command
        if command in self.timeout_on:
            self.timeout_on.discard(command)
            self._pending_timeout = True
            return
        if command in self.silent:
            return
        if command in self.raw_replies:
            self._outbox += self.raw_replies[command]
            return
        if command in self.replies:
            self._reply(request, self.replies[command])
            return

        if command == Command.GET_FREE_SIZES:
            self._reply(request, Command.ACK_OK, struct.pack("<20I", *self.free_sizes))
        elif command == Command.PREPARE_BUFFER:
            if self.inline:
                self._reply(request, Command.DATA, self.attlog)
            else:
                body = b"\x00" + struct.pack("<I", len(self.attlog)) + bytes(4)
                self._reply(request, Command.PREPARE_DATA, body)
        elif command == Command.READ_BUFFER:
            self._read_buffer(request)
        else:
            self._reply(request, Command.ACK_OK)

    def _read_buffer(self, request: Frame) -> None:
        if self.chunk_failures:
            self.chunk_failures -= 1
            self._reply(request, Command.ACK_ERROR)
            return

        start, length = struct.unpack("<ii", request.body)
        data = self.attlog[start : start + length]
        if not self.split:
            self._reply(request, Command.DATA, data)
            return

        self._reply(request, Command.PREPARE_DATA, struct.pack("<I", len(data)) + bytes(4))
        step = max(len(data) // 2, 1)
        for i in range(0, len(data), step):
            self._reply(request, Command.DATA, data[i : i + step])
        self._reply(request, Command.ACK_OK)


def build_record(
    user_id: str | bytes,
    when: datetime | int,
    layout: RecordLayout = FLAT_V1,
    verify: int = 1,
    status: int = 0,
) -> bytes:
    """Build one binary attendance record."""
    raw = bytearray(layout.record_size)
    uid = user_id.encode("ascii") if isinstance(user_id, str) else user_id
    raw[layout.user_id_offset : layout.user_id_offset + len(uid)] = uid
    packed = when if isinstance(when, int) else pack_timestamp(when)
    struct.pack_into("<I", raw, layout.timestamp_offset, packed)
    if layout.verify_offset is not None:
        raw[layout.verify_offset] = verify
    if layout.status_offset is not None:
        raw[layout.status_offset] = status
    return bytes(raw)


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def fake_device():
    """Factory for :class:`FakeDeviceSocket` instances."""
    return FakeDeviceSocket


@pytest.fixture
def open_connection():
    """Open a TCPConnection against a fake device."""
    connections = []

    def _open(device: FakeDeviceSocket, **kwargs) -> TCPConnection:
        conn = TCPConnection(DEVICE_HOST, socket_factory=device.factory, **kwargs)
        conn.open()
        connections.append(conn)
        return conn

    yield _open
    for conn in connections:
        conn.close()


@pytest.fixture
def utc():
    return timezone.utc
