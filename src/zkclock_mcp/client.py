"""High-level client for the time clock.

Sequences the session transport, the buffered transfer and the record
decoder into the operations the rest of the application uses::

    with TimeClockClient("192.168.1.201") as clock:
        records = clock.download_attendance()
        capacity = clock.get_capacity()

Every call blocks until the device answers or a timeout fires. Run the
client on a worker thread, and never call one instance from two threads.
"""

from __future__ import annotations

import logging
import socket
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import tzinfo
from enum import IntEnum
from typing import Iterator

from .config import DeviceConfig
from .errors import (
    ClockError,
    ConnectionFailedError,
    DeviceBusyError,
    DeviceTimeoutError,
    NotConnectedError,
)
from .models.attendance import AttendanceRecord, decode_attendance
from .models.capacity import DeviceCapacity
from .models.layouts import DEFAULT_LAYOUT, RecordLayout, get_layout
from .protocol.commands import DEFAULT_PORT, Command, command_name
from .protocol.parser import expect_ack, is_ack
from .transport.buffered_read import read_with_buffer
from .transport.tcp_connection import (
    READ_TIMEOUT,
    WRITE_TIMEOUT,
    SocketFactory,
    TCPConnection,
)

logger = logging.getLogger(__name__)


class ClientState(IntEnum):
    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2
    BUSY = 3


class TimeClockClient:
    """Blocking client for one time-clock device.

    Args:
        host: Device IP address or hostname.
        port: TCP port (4370 on all known firmware).
        timeout: Read timeout in seconds.
        write_timeout: Write timeout in seconds.
        layout: Attendance record layout name or instance.
        tz: Zone of the device clock; ``None`` uses the host's local zone.
        socket_factory: ``socket.create_connection``-compatible callable.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        timeout: float = READ_TIMEOUT,
        write_timeout: float = WRITE_TIMEOUT,
        layout: str | RecordLayout = DEFAULT_LAYOUT,
        tz: tzinfo | None = None,
        socket_factory: SocketFactory = socket.create_connection,
    ) -> None:
        self._conn = TCPConnection(
            host,
            port,
            timeout=timeout,
            write_timeout=write_timeout,
            socket_factory=socket_factory,
        )
        self._layout = get_layout(layout)
        self._tz = tz
        self._state = ClientState.DISCONNECTED

    @classmethod
    def from_config(cls, config: DeviceConfig, **kwargs) -> TimeClockClient:
        return cls(
            config.host,
            config.port,
            timeout=config.timeout,
            write_timeout=config.write_timeout,
            layout=config.record_layout,
            **kwargs,
        )

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state in (ClientState.CONNECTED, ClientState.BUSY)

    @property
    def address(self) -> tuple[str, int]:
        return self._conn.address

    @property
    def session_id(self) -> int:
        return self._conn.session_id

    @property
    def sequence(self) -> int:
        return self._conn.sequence

    @property
    def layout(self) -> RecordLayout:
        return self._layout

    def __enter__(self) -> TimeClockClient:
        if not self.connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    # ─── SESSION ─────────────────────────────────────────────────────

    def connect(self) -> None:
        """Open a session with the device.

        Raises:
            ConnectionFailedError, DeviceTimeoutError, ProtocolError:
                The client is left disconnected.
        """
        if self.connected:
            logger.debug("Already connected to %s:%d", *self.address)
            return

        self._state = ClientState.CONNECTING
        try:
            self._conn.open()
        except BaseException:
            self._state = ClientState.DISCONNECTED
            raise
        self._state = ClientState.CONNECTED

    def disconnect(self) -> None:
        """Close the session. Safe to call in any state, any number of times."""
        try:
            self._conn.close()
        finally:
            self._state = ClientState.DISCONNECTED

    # ─── OPERATIONS ──────────────────────────────────────────────────

    def download_raw(self) -> bytes:
        """Read the raw ATTLOG table with the device locked."""
        self._require_connected()
        with self._busy(), self._device_disabled():
            raw = read_with_buffer(self._conn, Command.ATTLOG_READ_REQUEST)
        logger.info("Downloaded %d bytes of attendance data", len(raw))
        return raw

    def download_attendance(self) -> list[AttendanceRecord]:
        """Download and decode every punch stored on the device.

        The device is disabled for the duration of the transfer and
        re-enabled afterwards, including when the transfer fails.
        """
        return self.decode(self.download_raw())

    def decode(self, raw: bytes) -> list[AttendanceRecord]:
        """Decode a raw ATTLOG buffer with this client's layout and zone."""
        records = decode_attendance(raw, self._layout, self._tz)
        logger.info("Decoded %d attendance records", len(records))
        return records

    def get_capacity(self) -> DeviceCapacity:
        """Read the device's storage counters."""
        self._require_connected()
        reply = self._conn.send_command(Command.GET_FREE_SIZES)
        capacity = DeviceCapacity.from_bytes(reply.body)
        logger.info(
            "Device capacity: %d / %d records (%d available)",
            capacity.record_count, capacity.record_capacity, capacity.records_available,
        )
        return capacity

    def clear_attendance(self) -> None:
        """Delete every attendance record on the device.

        Raises:
            ProtocolError: If the device does not answer ACK_OK.
        """
        self._require_connected()
        logger.info("Clearing attendance records on device")
        expect_ack(self._conn.send_command(Command.CLEAR_ATTLOG), Command.CLEAR_ATTLOG)
        logger.info("Attendance records cleared")

    # ─── HELPERS ─────────────────────────────────────────────────────

    def _require_connected(self) -> None:
        if self._state != ClientState.CONNECTED or not self._conn.connected:
            raise NotConnectedError(
                f"Operation requires a connected client (state={self._state.name})"
            )

    @contextmanager
    def _busy(self) -> Iterator[None]:
        self._state = ClientState.BUSY
        try:
            yield
        except (ConnectionFailedError, DeviceTimeoutError) as e:
            # the stream may hold a late reply; drop the session
            logger.warning("Transport error during transfer, closing session: %s", e)
            self._conn.close()
            raise
        finally:
            if self._conn.connected:
                self._state = ClientState.CONNECTED
            else:
                self._state = ClientState.DISCONNECTED

    @contextmanager
    def _device_disabled(self) -> Iterator[None]:
        reply = self._conn.send_command(Command.DISABLE_DEVICE)
        if not is_ack(reply):
            raise DeviceBusyError(
                f"Device refused DISABLE_DEVICE: {command_name(reply.command)}"
            )
        try:
            yield
        finally:
            self._enable_device()

    def _enable_device(self) -> None:
        try:
            reply = self._conn.send_command(Command.ENABLE_DEVICE)
        except ClockError as e:
            logger.warning("Failed to re-enable device: %s", e)
            return
        if not is_ack(reply):
            logger.warning("ENABLE_DEVICE answered with %s", command_name(reply.command))


@dataclass
class ConnectionDiagnosis:
    """Outcome of a step-by-step connection check."""

    tcp_reachable: bool = False
    tcp_connect_ms: int = 0
    tcp_error: str | None = None
    protocol_ok: bool = False
    protocol_error: str | None = None
    session_id: int | None = None
    device_response_code: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    def __str__(self) -> str:
        lines = [
            "=== Connection Diagnosis ===",
            f"TCP Reachable: {self.tcp_reachable}",
            f"TCP Connect Time: {self.tcp_connect_ms}ms",
        ]
        if self.tcp_error:
            lines.append(f"TCP Error: {self.tcp_error}")
        if self.tcp_reachable:
            lines.append(f"Protocol OK: {self.protocol_ok}")
            if self.protocol_error:
                lines.append(f"Protocol Error: {self.protocol_error}")
            if self.device_response_code is not None:
                lines.append(f"Device Response Code: {self.device_response_code}")
            if self.session_id is not None:
                lines.append(f"Session ID: 0x{self.session_id:04X}")
        return "\n".join(lines)


def diagnose_connection(
    host: str,
    port: int = DEFAULT_PORT,
    timeout: float = READ_TIMEOUT,
    socket_factory: SocketFactory = socket.create_connection,
) -> ConnectionDiagnosis:
    """Check TCP reachability, then the CONNECT handshake.

    Device-side failures are reported in the result, never raised.
    """
    diagnosis = ConnectionDiagnosis()

    def timed_factory(address, connect_timeout):
        start = time.monotonic()
        try:
            sock = socket_factory(address, connect_timeout)
        finally:
            diagnosis.tcp_connect_ms = int((time.monotonic() - start) * 1000)
        diagnosis.tcp_reachable = True
        return sock

    conn = TCPConnection(host, port, timeout=timeout, socket_factory=timed_factory)
    try:
        reply = conn.open()
    except ClockError as e:
        if diagnosis.tcp_reachable:
            diagnosis.protocol_error = str(e)
        else:
            diagnosis.tcp_error = str(e)
        return diagnosis

    diagnosis.protocol_ok = True
    diagnosis.session_id = conn.session_id
    diagnosis.device_response_code = reply.command
    conn.close()
    return diagnosis
