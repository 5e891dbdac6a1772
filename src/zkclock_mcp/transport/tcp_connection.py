"""TCP session transport to the time clock.

One :class:`TCPConnection` owns one socket and one device session. It
sends a single command frame and reads exactly one reply frame per call;
there is no pipelining and no internal locking, so callers must not share
an instance between threads.
"""

from __future__ import annotations

import logging
import socket
from typing import Any, Callable

from ..errors import (
    ClockError,
    ConfigError,
    ConnectionFailedError,
    DeviceTimeoutError,
    NotConnectedError,
    ProtocolError,
)
from ..protocol.commands import DEFAULT_PORT, Command, build_command, command_name
from ..protocol.framing import HEADER_SIZE, Frame, decode_header, decode_inner
from ..protocol.parser import parse_session_id

logger = logging.getLogger(__name__)

READ_TIMEOUT = 30.0
WRITE_TIMEOUT = 10.0
EXIT_TIMEOUT = 2.0
MAX_PAYLOAD = 1_000_000
SEQUENCE_MODULO = 0x10000

SocketFactory = Callable[..., Any]


class TCPConnection:
    """Manages the TCP session with the device.

    Usage::

        conn = TCPConnection("192.168.1.201")
        conn.open()
        reply = conn.send_command(Command.GET_FREE_SIZES)
        conn.close()

    or as a context manager, which always closes the session on exit.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        timeout: float = READ_TIMEOUT,
        write_timeout: float = WRITE_TIMEOUT,
        socket_factory: SocketFactory = socket.create_connection,
    ) -> None:
        if timeout <= 0 or write_timeout <= 0:
            raise ConfigError(
                f"Timeouts must be positive, got timeout={timeout}, write_timeout={write_timeout}"
            )
        self._host = host
        self._port = port
        self._timeout = timeout
        self._write_timeout = write_timeout
        self._socket_factory = socket_factory
        self._sock = None
        self._session_id = 0
        self._sequence = 0

    @property
    def address(self) -> tuple[str, int]:
        return (self._host, self._port)

    @property
    def connected(self) -> bool:
        return self._sock is not None

    @property
    def session_id(self) -> int:
        return self._session_id

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def timeout(self) -> float:
        return self._timeout

    def __enter__(self) -> TCPConnection:
        if not self.connected:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> Frame:
        """Open the socket and perform the CONNECT handshake.

        Returns:
            The CONNECT reply frame.

        Raises:
            ConnectionFailedError: If the TCP connection cannot be made.
            DeviceTimeoutError: If the device does not answer in time.
            ProtocolError: If the reply is malformed.
        """
        if self.connected:
            raise ConnectionFailedError("Session already open; close it first")

        host, port = self.address
        logger.info("Connecting to %s:%d (timeout=%ss)", host, port, self._timeout)
        try:
            self._sock = self._socket_factory((host, port), self._timeout)
        except socket.timeout as e:
            raise ConnectionFailedError(f"Connection timeout to {host}:{port}") from e
        except OSError as e:
            raise ConnectionFailedError(f"Failed to connect to {host}:{port}: {e}") from e

        self._session_id = 0
        self._sequence = 0
        try:
            reply = self.send_command(Command.CONNECT)
        except ClockError:
            self._release()
            raise

        if reply.command != Command.ACK_OK:
            logger.warning("CONNECT answered with %s", command_name(reply.command))
        self._session_id = parse_session_id(reply)
        logger.info("Connected, session_id=0x%04X", self._session_id)
        return reply

    def close(self) -> None:
        """Send EXIT and release the socket.

        The device may not acknowledge EXIT, so any failure here is only
        logged. Session state is always reset and the socket always closed.
        """
        if not self.connected:
            return

        try:
            self._write(build_command(
                Command.EXIT, self._session_id, self._sequence
            ), EXIT_TIMEOUT)
            self._advance()
            self._read_frame(EXIT_TIMEOUT)
        except ClockError as e:
            logger.debug("EXIT not acknowledged: %s", e)
        finally:
            self._release()
            logger.info("Disconnected")

    def send_command(self, command: Command, body: bytes = b"") -> Frame:
        """Send one command and read exactly one reply frame.

        The sequence number advances once the frame has been written.

        Raises:
            NotConnectedError: If no socket is open.
            ConnectionFailedError: If the socket fails or closes.
            DeviceTimeoutError: If the write or the reply read times out.
            ProtocolError: If the reply frame is malformed.
        """
        if not self.connected:
            raise NotConnectedError()

        packet = build_command(command, self._session_id, self._sequence, body)
        logger.debug(
            "TX %s seq=%d body=%d bytes", command.name, self._sequence, len(body)
        )
        self._write(packet, self._write_timeout)
        self._advance()
        return self.read_frame()

    def read_frame(self) -> Frame:
        """Read one reply frame without sending anything first.

        Used for follow-up frames of a split data transfer.
        """
        if not self.connected:
            raise NotConnectedError()
        return self._read_frame(self._timeout)

    def _advance(self) -> None:
        self._sequence = (self._sequence + 1) % SEQUENCE_MODULO

    def _write(self, data: bytes, timeout: float) -> None:
        try:
            self._sock.settimeout(timeout)
            self._sock.sendall(data)
        except socket.timeout as e:
            raise DeviceTimeoutError("Write timeout") from e
        except OSError as e:
            raise ConnectionFailedError(f"Write failed: {e}") from e

    def _read_frame(self, timeout: float) -> Frame:
        header = self._read_exact(HEADER_SIZE, timeout)
        length = decode_header(header)
        if length > MAX_PAYLOAD:
            raise ProtocolError(f"Payload too large: {length} bytes")

        frame = decode_inner(self._read_exact(length, timeout))
        logger.debug(
            "RX %s seq=%d body=%d bytes",
            command_name(frame.command), frame.sequence, len(frame.body),
        )
        return frame

    def _read_exact(self, size: int, timeout: float) -> bytes:
        buf = bytearray()
        try:
            self._sock.settimeout(timeout)
            while len(buf) < size:
                chunk = self._sock.recv(min(size - len(buf), 65536))
                if not chunk:
                    raise ConnectionFailedError(
                        f"Connection closed after {len(buf)} of {size} bytes"
                    )
                buf += chunk
        except ClockError:
            raise
        except socket.timeout as e:
            raise DeviceTimeoutError(
                f"Read timeout after {len(buf)} of {size} bytes"
            ) from e
        except OSError as e:
            raise ConnectionFailedError(f"Read failed: {e}") from e
        return bytes(buf)

    def _release(self) -> None:
        sock, self._sock = self._sock, None
        self._session_id = 0
        self._sequence = 0
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            logger.warning("Error closing socket: %s", e)
