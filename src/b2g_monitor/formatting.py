"""Formatting utilities shared by the report and the live display."""

import math

from b2g_monitor.parser import MemoryValue


def split_elapsed(seconds: float) -> tuple[int, int, int]:
    """Split a duration into (hours, minutes, seconds).

    Hours wrap at 24 and minutes at 60. Seconds are rounded half-up,
    so 59.5s reads as 60.
    """
    remaining = abs(seconds)
    hours = math.floor(remaining / 3600) % 24
    remaining -= hours * 3600
    minutes = math.floor(remaining / 60) % 60
    remaining -= minutes * 60
    secs = math.floor(remaining % 60 + 0.5)
    return hours, minutes, secs


def format_elapsed(started_at: float, finished_at: float) -> str:
    """Format session wall time as "1H:2M:3S"."""
    hours, minutes, secs = split_elapsed(finished_at - started_at)
    return f"{hours}H:{minutes}M:{secs}S"


def format_memory(value: MemoryValue | None) -> str:
    """Format a memory stat for display ("175.9 MB", or "-" if missing)."""
    if value is None or value.value is None:
        return "-"
    if value.unit:
        return f"{value.value} {value.unit}"
    return value.value
