"""Attendance records and the ATTLOG decoder.

The device packs a local date-time into one 32-bit integer::

    ((((((year - 2000) * 12 + month - 1) * 31 + day - 1) * 24 + hour) * 60
        + minute) * 60 + second)

Every month is treated as 31 days, so some values do not name a real date.
Records that cannot be decoded are skipped; decoding a buffer never fails
as a whole.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from datetime import datetime, tzinfo

from .layouts import DEFAULT_LAYOUT, RecordLayout, get_layout

logger = logging.getLogger(__name__)

EPOCH_YEAR = 2000
SIZE_HEADER = 4
TEXT_SNIFF_BYTES = 100
TEXT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_USER_ID = 0xFFFFFFFF


@dataclass(frozen=True)
class AttendanceRecord:
    """One punch as stored on the device."""

    user_id: int
    timestamp: datetime
    verify_type: int | None = None
    status: int | None = None

    @property
    def key(self) -> tuple[int, datetime]:
        """Identity used by stores to deduplicate punches."""
        return (self.user_id, self.timestamp)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "verify_type": self.verify_type,
            "status": self.status,
        }


def unpack_timestamp_fields(value: int) -> tuple[int, int, int, int, int, int]:
    """Split a packed value into (year, month, day, hour, minute, second)."""
    value, second = divmod(value, 60)
    value, minute = divmod(value, 60)
    value, hour = divmod(value, 24)
    value, day = divmod(value, 31)
    value, month = divmod(value, 12)
    return (value + EPOCH_YEAR, month + 1, day + 1, hour, minute, second)


def unpack_timestamp(value: int) -> datetime:
    """Decode a packed timestamp into a naive device-local datetime.

    Raises:
        ValueError: If the fields do not form a real calendar date.
    """
    return datetime(*unpack_timestamp_fields(value))


def pack_timestamp(dt: datetime) -> int:
    """Encode a datetime with the device's packed format."""
    return (
        ((((dt.year - EPOCH_YEAR) * 12 + dt.month - 1) * 31 + dt.day - 1) * 24
         + dt.hour) * 60 + dt.minute
    ) * 60 + dt.second


def localize(naive: datetime, tz: tzinfo | None = None) -> datetime | None:
    """Attach ``tz`` (or the host's local zone) to a device-local time.

    Returns ``None`` when the wall time is ambiguous or does not exist in
    that zone because of a DST transition.
    """
    if tz is None:
        early = naive.replace(fold=0).astimezone()
        late = naive.replace(fold=1).astimezone()
    else:
        early = naive.replace(tzinfo=tz, fold=0)
        late = naive.replace(tzinfo=tz, fold=1)
    if early.utcoffset() != late.utcoffset():
        return None
    return early


def strip_size_header(data: bytes) -> bytes:
    """Drop a leading u32 size prefix when it matches the remaining length."""
    if len(data) > SIZE_HEADER:
        (size,) = struct.unpack_from("<I", data)
        if size == len(data) - SIZE_HEADER:
            return data[SIZE_HEADER:]
    return data


def is_text_format(data: bytes) -> bool:
    """Some firmware returns the table as tab-separated text lines."""
    sample = data[:TEXT_SNIFF_BYTES]
    return sum(sample.count(c) for c in (b"\t", b"\n", b"\r")) > 2


def decode_attendance(
    data: bytes,
    layout: str | RecordLayout = DEFAULT_LAYOUT,
    tz: tzinfo | None = None,
) -> list[AttendanceRecord]:
    """Decode a raw ATTLOG buffer into records, in buffer order.

    Args:
        data: Bytes returned by the bulk transfer.
        layout: Record layout name or instance (binary tables only).
        tz: Zone of the device clock; ``None`` uses the host's local zone.
    """
    data = strip_size_header(data)
    if not data:
        return []
    if is_text_format(data):
        return _decode_text(data, tz)

    layout = get_layout(layout)
    size = layout.record_size
    usable = len(data) - len(data) % size
    if usable != len(data):
        logger.warning(
            "Ignoring %d trailing bytes (not a whole %d-byte record)",
            len(data) - usable, size,
        )

    records = []
    for offset in range(0, usable, size):
        record = decode_record(data[offset : offset + size], layout, tz)
        if record is not None:
            records.append(record)
    return records


def decode_record(
    raw: bytes,
    layout: RecordLayout,
    tz: tzinfo | None = None,
) -> AttendanceRecord | None:
    """Decode one binary record, or return ``None`` if it must be skipped."""
    (packed,) = struct.unpack_from("<I", raw, layout.timestamp_offset)
    if packed == 0:
        return None

    field = raw[layout.user_id_offset : layout.user_id_offset + layout.user_id_size]
    user_id = _parse_user_id(field.split(b"\x00", 1)[0])
    if user_id is None:
        logger.warning("Skipping record with invalid user id %r", field)
        return None

    try:
        naive = unpack_timestamp(packed)
    except ValueError:
        logger.warning("Skipping user %d: invalid packed timestamp 0x%08X", user_id, packed)
        return None

    timestamp = localize(naive, tz)
    if timestamp is None:
        logger.warning("Skipping user %d: ambiguous local time %s", user_id, naive)
        return None

    return AttendanceRecord(
        user_id=user_id,
        timestamp=timestamp,
        verify_type=raw[layout.verify_offset] if layout.verify_offset is not None else None,
        status=raw[layout.status_offset] if layout.status_offset is not None else None,
    )


def _parse_user_id(raw: bytes) -> int | None:
    try:
        text = raw.decode("ascii").strip()
    except UnicodeDecodeError:
        return None
    if not text.isdigit():
        return None
    value = int(text)
    return value if value <= MAX_USER_ID else None


def _parse_optional_int(text: str) -> int | None:
    text = text.strip()
    return int(text) if text.isdigit() else None


def _decode_text(data: bytes, tz: tzinfo | None) -> list[AttendanceRecord]:
    # uid \t (empty) \t YYYY-MM-DD HH:MM:SS \t verify \t status
    records = []
    for line in data.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) < 5:
            logger.warning("Skipping short attendance line: %r", line)
            continue

        user_id = _parse_user_id(parts[0].encode("ascii", errors="replace"))
        if user_id is None:
            logger.warning("Skipping line with invalid user id: %r", line)
            continue

        try:
            naive = datetime.strptime(parts[2].strip(), TEXT_TIME_FORMAT)
        except ValueError:
            logger.warning("Skipping line with invalid timestamp: %r", line)
            continue

        timestamp = localize(naive, tz)
        if timestamp is None:
            logger.warning("Skipping line with ambiguous local time: %r", line)
            continue

        records.append(AttendanceRecord(
            user_id=user_id,
            timestamp=timestamp,
            verify_type=_parse_optional_int(parts[3]),
            status=_parse_optional_int(parts[4]),
        ))
    return records
