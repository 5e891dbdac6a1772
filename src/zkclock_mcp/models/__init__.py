"""Data models for attendance records, record layouts, and device capacity."""

from .attendance import AttendanceRecord, decode_attendance
from .capacity import DeviceCapacity
from .layouts import RecordLayout, get_layout, list_layouts, register_layout
