"""Device storage capacity model."""

from __future__ import annotations

import struct
from dataclasses import asdict, dataclass
from typing import ClassVar

from ..errors import NoDataError

FREE_SIZES_COUNT = 20
FREE_SIZES_SIZE = FREE_SIZES_COUNT * 4  # 80 bytes

# Indices into the 20-counter GET_FREE_SIZES reply
IDX_USERS = 4
IDX_FINGERS = 6
IDX_RECORDS = 8
IDX_CARDS = 12
IDX_FINGERS_CAP = 14
IDX_USERS_CAP = 15
IDX_RECORDS_CAP = 16
IDX_FINGERS_AV = 17
IDX_USERS_AV = 18
IDX_RECORDS_AV = 19


@dataclass(frozen=True)
class DeviceCapacity:
    """Snapshot of the device's storage counters."""

    SIZE: ClassVar[int] = FREE_SIZES_SIZE

    record_count: int
    record_capacity: int
    records_available: int
    users: int = 0
    fingers: int = 0
    cards: int = 0
    users_capacity: int = 0
    fingers_capacity: int = 0
    users_available: int = 0
    fingers_available: int = 0

    @property
    def usage_percent(self) -> float:
        if not self.record_capacity:
            return 0.0
        return 100.0 * self.record_count / self.record_capacity

    def to_dict(self) -> dict:
        d = asdict(self)
        d["usage_percent"] = round(self.usage_percent, 1)
        return d

    @classmethod
    def from_bytes(cls, data: bytes) -> DeviceCapacity:
        """Parse the 80-byte GET_FREE_SIZES reply body.

        Raises:
            NoDataError: If fewer than 80 bytes are available.
        """
        if len(data) < cls.SIZE:
            raise NoDataError(
                f"Expected {cls.SIZE} bytes for capacity info, got {len(data)}"
            )
        fields = struct.unpack_from(f"<{FREE_SIZES_COUNT}I", data)
        return cls(
            record_count=fields[IDX_RECORDS],
            record_capacity=fields[IDX_RECORDS_CAP],
            records_available=fields[IDX_RECORDS_AV],
            users=fields[IDX_USERS],
            fingers=fields[IDX_FINGERS],
            cards=fields[IDX_CARDS],
            users_capacity=fields[IDX_USERS_CAP],
            fingers_capacity=fields[IDX_FINGERS_CAP],
            users_available=fields[IDX_USERS_AV],
            fingers_available=fields[IDX_FINGERS_AV],
        )
