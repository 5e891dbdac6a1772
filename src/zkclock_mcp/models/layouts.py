"""Named layouts for the 40-byte attendance record.

Firmware variants disagree on where the user id and the packed timestamp
sit inside a record, so each known arrangement is registered under a
versioned name and selected by configuration.

flat-v1::

    +----------+----------+-----------+--------+--------+----------+
    | User ID  | Reserved | Timestamp | Verify | Status | Reserved |
    | 9 bytes  | 15 bytes | 4 (LE)    | 1      | 1      | 10 bytes |
    +----------+----------+-----------+--------+--------+----------+

indexed-v2::

    +--------+----------+--------+-----------+-------+----------+
    | Index  | User ID  | Status | Timestamp | Punch | Reserved |
    | 2 (LE) | 24 bytes | 1      | 4 (LE)    | 1     | 8 bytes  |
    +--------+----------+--------+-----------+-------+----------+
"""

from __future__ import annotations

from dataclasses import dataclass

RECORD_SIZE = 40


@dataclass(frozen=True)
class RecordLayout:
    """Byte offsets of the fields inside one record."""

    name: str
    user_id_offset: int
    user_id_size: int
    timestamp_offset: int
    verify_offset: int | None = None
    status_offset: int | None = None
    record_size: int = RECORD_SIZE
    description: str = ""

    def __post_init__(self) -> None:
        spans = [
            (self.user_id_offset, self.user_id_size),
            (self.timestamp_offset, 4),
        ]
        for offset in (self.verify_offset, self.status_offset):
            if offset is not None:
                spans.append((offset, 1))
        for offset, size in spans:
            if offset < 0 or offset + size > self.record_size:
                raise ValueError(
                    f"Layout '{self.name}': field at {offset}+{size} "
                    f"exceeds {self.record_size}-byte record"
                )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "record_size": self.record_size,
            "user_id": {"offset": self.user_id_offset, "size": self.user_id_size},
            "timestamp_offset": self.timestamp_offset,
            "verify_offset": self.verify_offset,
            "status_offset": self.status_offset,
            "description": self.description,
        }


FLAT_V1 = RecordLayout(
    name="flat-v1",
    user_id_offset=0,
    user_id_size=9,
    timestamp_offset=24,
    verify_offset=28,
    status_offset=29,
    description="User id first, timestamp at 24 (buffered ATTLOG reads)",
)

INDEXED_V2 = RecordLayout(
    name="indexed-v2",
    user_id_offset=2,
    user_id_size=24,
    timestamp_offset=27,
    status_offset=26,
    verify_offset=31,
    description="u16 slot index first, timestamp at 27",
)

DEFAULT_LAYOUT = FLAT_V1.name

_LAYOUTS: dict[str, RecordLayout] = {
    FLAT_V1.name: FLAT_V1,
    INDEXED_V2.name: INDEXED_V2,
}


def register_layout(layout: RecordLayout, replace: bool = False) -> RecordLayout:
    """Add a layout to the registry so it can be selected by name."""
    if layout.name in _LAYOUTS and not replace:
        raise ValueError(f"Layout '{layout.name}' is already registered")
    _LAYOUTS[layout.name] = layout
    return layout


def get_layout(name: str | RecordLayout) -> RecordLayout:
    """Look up a layout by name (layouts pass through unchanged)."""
    if isinstance(name, RecordLayout):
        return name
    try:
        return _LAYOUTS[name]
    except KeyError:
        raise ValueError(
            f"Unknown record layout '{name}'. Valid: {list(_LAYOUTS)}"
        ) from None


def list_layouts() -> list[RecordLayout]:
    return list(_LAYOUTS.values())
