"""Data models for values read from and written to a servo."""

from .servo import (
    Mode,
    LoadMode,
    PowerLed,
    MoveTime,
    Limit,
    ModeRead,
    LedError,
)
