"""File handlers for attendance exports and raw ATTLOG captures.

.csv: one row per punch: user_id, timestamp (ISO 8601), verify_type, status
.bin: raw ATTLOG buffer as returned by the bulk transfer, prefixed with a
      small header so captures can be told apart from arbitrary files
"""

from __future__ import annotations

import csv
import struct
from pathlib import Path
from typing import Iterable

from .attendance import AttendanceRecord

CSV_HEADER = ["user_id", "timestamp", "verify_type", "status"]

CAPTURE_MAGIC = b"ZKATTLOG"
CAPTURE_VERSION = 1
_CAPTURE_HEADER = struct.Struct("<8sHI")  # magic, version, payload length


def export_csv(records: Iterable[AttendanceRecord], path: str | Path) -> Path:
    """Write records to a CSV file.

    Args:
        records: Decoded attendance records.
        path: Output file path.

    Returns:
        The path written to.
    """
    path = Path(path)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for record in records:
            writer.writerow([
                record.user_id,
                record.timestamp.isoformat(),
                "" if record.verify_type is None else record.verify_type,
                "" if record.status is None else record.status,
            ])
    return path


def save_capture(raw: bytes, path: str | Path) -> Path:
    """Save a raw ATTLOG buffer for offline decoding."""
    path = Path(path)
    path.write_bytes(_CAPTURE_HEADER.pack(CAPTURE_MAGIC, CAPTURE_VERSION, len(raw)) + raw)
    return path


def load_capture(path: str | Path) -> bytes:
    """Load a raw ATTLOG buffer saved by :func:`save_capture`.

    Files without the capture header are returned as-is, so plain binary
    dumps taken with other tools can be decoded too.

    Raises:
        ValueError: If the header announces more bytes than the file holds.
    """
    data = Path(path).read_bytes()
    if not data.startswith(CAPTURE_MAGIC):
        return data

    if len(data) < _CAPTURE_HEADER.size:
        raise ValueError(
            f"Truncated capture header: {len(data)} of {_CAPTURE_HEADER.size} bytes"
        )
    _, version, length = _CAPTURE_HEADER.unpack_from(data)
    if version != CAPTURE_VERSION:
        raise ValueError(f"Unsupported capture version {version}")
    payload = data[_CAPTURE_HEADER.size :]
    if len(payload) < length:
        raise ValueError(
            f"Truncated capture: header says {length} bytes, file has {len(payload)}"
        )
    return payload[:length]
