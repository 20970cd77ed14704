"""Protocol layer: framing, checksum, command table and reply decoding."""

from .framing import Frame, build_frame, parse_frame, validate_frame
from .commands import BROADCAST_ADDRESS, CATALOG, Command, build_command
