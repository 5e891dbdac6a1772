"""Sync orchestration: download, hand off to storage, optionally clear.

The auto-clear policy runs right after a download in the same session:
when enabled and the device holds at least ``threshold`` records, the log
is cleared so the device never fills up. Records are passed to the store
before any clear is issued.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable

from .client import TimeClockClient
from .config import AppConfig
from .models.attendance import AttendanceRecord

logger = logging.getLogger(__name__)

RecordStore = Callable[[list[AttendanceRecord]], int]
ProgressCallback = Callable[[float, str], None]


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    downloaded: int
    inserted: int
    skipped: int
    record_count: int | None
    device_cleared: bool
    duration_secs: float

    def summary(self) -> str:
        base = (
            f"Downloaded: {self.downloaded}, Inserted: {self.inserted}, "
            f"Skipped: {self.skipped} (took {self.duration_secs:.1f}s)"
        )
        if self.device_cleared:
            return f"{base} - Device cleared"
        return base

    def to_dict(self) -> dict:
        d = asdict(self)
        d["summary"] = self.summary()
        return d


def sync_attendance(
    client: TimeClockClient,
    auto_clear: bool = False,
    threshold: int = 50000,
    store: RecordStore | None = None,
    on_progress: ProgressCallback | None = None,
) -> tuple[list[AttendanceRecord], SyncResult]:
    """Download attendance and apply the auto-clear policy.

    Args:
        client: A connected client.
        auto_clear: Clear the device log when it reaches ``threshold``.
        threshold: Record count at which the log is cleared.
        store: Persists records and returns how many were new. Without a
            store every downloaded record counts as inserted.
        on_progress: Called with (fraction, message) between steps.

    Returns:
        The downloaded records and a :class:`SyncResult`.
    """
    report = on_progress or (lambda fraction, message: None)
    start = time.monotonic()

    report(0.1, "Downloading attendance data...")
    records = client.download_attendance()
    downloaded = len(records)
    report(0.6, f"Downloaded {downloaded} records")

    if store is not None:
        report(0.7, "Saving records...")
        inserted = store(records)
    else:
        inserted = downloaded

    record_count = None
    cleared = False
    if auto_clear:
        report(0.8, "Checking device capacity...")
        record_count = client.get_capacity().record_count
        if record_count >= threshold:
            logger.info(
                "Records %d >= threshold %d, clearing device", record_count, threshold
            )
            client.clear_attendance()
            cleared = True

    result = SyncResult(
        downloaded=downloaded,
        inserted=inserted,
        skipped=max(downloaded - inserted, 0),
        record_count=record_count,
        device_cleared=cleared,
        duration_secs=time.monotonic() - start,
    )
    logger.info("Sync complete: %s", result.summary())
    report(1.0, "Done! " + result.summary())
    return records, result


def run_sync(
    config: AppConfig,
    store: RecordStore | None = None,
    on_progress: ProgressCallback | None = None,
    **client_kwargs,
) -> tuple[list[AttendanceRecord], SyncResult]:
    """Connect with ``config``, sync once, and always disconnect."""
    if on_progress is not None:
        on_progress(0.0, "Connecting to device...")
    with TimeClockClient.from_config(config.device, **client_kwargs) as client:
        return sync_attendance(
            client,
            auto_clear=config.sync.auto_clear_enabled,
            threshold=config.sync.auto_clear_threshold,
            store=store,
            on_progress=on_progress,
        )
