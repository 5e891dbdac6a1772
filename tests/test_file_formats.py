"""Tests for CSV export and raw capture files."""

import csv
import struct
from datetime import datetime, timezone

import pytest

from zkclock_mcp.models.attendance import AttendanceRecord
from zkclock_mcp.models.file_formats import (
    CAPTURE_MAGIC,
    CSV_HEADER,
    export_csv,
    load_capture,
    save_capture,
)

UTC = timezone.utc


def test_export_csv(tmp_path):
    records = [
        AttendanceRecord(20, datetime(2000, 1, 2, tzinfo=UTC), 1, 0),
        AttendanceRecord(65, datetime(2000, 1, 3, 8, 15, tzinfo=UTC)),
    ]
    path = export_csv(records, tmp_path / "punches.csv")

    with path.open(newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == CSV_HEADER
    assert rows[1] == ["20", "2000-01-02T00:00:00+00:00", "1", "0"]
    assert rows[2] == ["65", "2000-01-03T08:15:00+00:00", "", ""]


def test_export_csv_empty(tmp_path):
    path = export_csv([], tmp_path / "empty.csv")
    assert path.read_text(encoding="utf-8").splitlines() == [",".join(CSV_HEADER)]


def test_capture_has_header(tmp_path):
    raw = b"\x01" * 80
    path = save_capture(raw, tmp_path / "attlog.bin")
    data = path.read_bytes()
    assert data.startswith(CAPTURE_MAGIC)
    assert struct.unpack_from("<HI", data, 8) == (1, 80)
    assert load_capture(path) == raw


def test_load_plain_dump(tmp_path):
    path = tmp_path / "dump.bin"
    path.write_bytes(b"\x00" * 40)
    assert load_capture(path) == b"\x00" * 40


def test_load_truncated_capture(tmp_path):
    path = save_capture(b"\x02" * 80, tmp_path / "attlog.bin")
    path.write_bytes(path.read_bytes()[:-10])
    with pytest.raises(ValueError, match="Truncated"):
        load_capture(path)


def test_load_truncated_header(tmp_path):
    path = tmp_path / "short.bin"
    path.write_bytes(CAPTURE_MAGIC + b"\x01")
    with pytest.raises(ValueError, match="Truncated capture header"):
        load_capture(path)


def test_load_unknown_version(tmp_path):
    path = tmp_path / "future.bin"
    path.write_bytes(CAPTURE_MAGIC + struct.pack("<HI", 9, 0))
    with pytest.raises(ValueError, match="version"):
        load_capture(path)
