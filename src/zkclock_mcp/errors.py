"""Exception hierarchy for the time-clock client.

Every error raised by the protocol layers derives from :class:`ClockError`,
so callers can catch one type at the seam and still branch on the kind.
"""

from __future__ import annotations


class ClockError(Exception):
    """Base class for all time-clock client errors."""


class ConnectionFailedError(ClockError, ConnectionError):
    """TCP connect, write or read failed, or the peer closed mid-frame."""


class NotConnectedError(ConnectionFailedError):
    """The operation requires an open session."""

    def __init__(self, message: str = "Not connected to device") -> None:
        super().__init__(message)


class DeviceTimeoutError(ClockError, TimeoutError):
    """A socket read or write exceeded its configured timeout."""


class ProtocolError(ClockError):
    """The device sent something the protocol does not allow."""


class BadMagicError(ProtocolError):
    """Frame header did not start with the fixed magic bytes."""


class PacketTooShortError(ProtocolError):
    """Inner packet shorter than its 8-byte header."""


class ChunkReadError(ProtocolError):
    """A bulk-transfer chunk could not be read within the retry budget."""

    def __init__(self, offset: int, length: int, attempts: int) -> None:
        super().__init__(
            f"Failed to read chunk at offset {offset} ({length} bytes) "
            f"after {attempts} attempts"
        )
        self.offset = offset
        self.length = length
        self.attempts = attempts


class NoDataError(ClockError):
    """A size or counter field was missing from a reply."""


class DeviceBusyError(ClockError):
    """The device refused to lock itself for a transfer."""


class ConfigError(ValueError):
    """Invalid configuration value."""
