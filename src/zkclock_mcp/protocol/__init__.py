"""Protocol layer: framing, checksum, command codes, and reply parsing."""

from .framing import Frame, encode, decode_header, decode_inner
from .commands import Command, build_command
