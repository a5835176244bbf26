"""Timestamp Normalizer: shifts inline [MM:SS] / [HH:MM:SS] markers onto the global timeline."""

import re
from typing import Optional

# [MM:SS] or [HH:MM:SS]; minutes may run past 59 in long single-chunk output
TIMESTAMP_PATTERN = re.compile(r"\[(\d{1,3}):(\d{2})(?::(\d{2}))?\]")


def format_timestamp(seconds: float) -> str:
    """
    Format seconds as a marker.

    Uses [MM:SS] for times under 1 hour and [HH:MM:SS] from 1 hour on.

    Examples:
        format_timestamp(65.5) -> "[01:05]"
        format_timestamp(3661) -> "[01:01:01]"
    """
    total_seconds = max(0, int(seconds))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    secs = total_seconds % 60
    if total_seconds < 3600:
        return f"[{minutes:02d}:{secs:02d}]"
    return f"[{hours:02d}:{minutes:02d}:{secs:02d}]"


def parse_timestamp(marker: str) -> Optional[int]:
    """Seconds for a marker like "[01:05]" or "[01:01:01]", or None if it isn't one."""
    match = TIMESTAMP_PATTERN.fullmatch(marker.strip())
    if not match:
        return None
    return _match_seconds(match)


def _match_seconds(match: re.Match) -> int:
    first, second, third = match.groups()
    if third is None:
        return int(first) * 60 + int(second)
    return int(first) * 3600 + int(second) * 60 + int(third)


def normalize_timestamps(text: str, offset_minutes: float) -> str:
    """
    Add an offset to every timestamp marker in a fragment's text.

    Non-matching text passes through unchanged. A zero offset returns the
    text as-is, so markers are not reformatted.

    Args:
        text: Fragment text with inline markers
        offset_minutes: The chunk's start time in minutes

    Returns:
        Text with shifted markers
    """
    offset_seconds = int(round(offset_minutes * 60))
    if offset_seconds == 0:
        return text

    def shift(match: re.Match) -> str:
        return format_timestamp(_match_seconds(match) + offset_seconds)

    return TIMESTAMP_PATTERN.sub(shift, text)
