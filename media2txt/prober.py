"""Media Prober: duration and container classification."""

import math
from pathlib import Path
from typing import Optional

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError
from pydub.utils import mediainfo

from media2txt.config import MB
from media2txt.models import MediaSource, ProbeResult

# Extensions whose framing does not survive arbitrary byte cuts
CONTAINER_EXTENSIONS = {
    "m4a", "mp4", "mov",    # MPEG-4 family
    "webm", "mkv",          # WebM/Matroska
    "ogg", "opus",          # Ogg family
    "flac",
}

CONTAINER_MIME_TYPES = {
    "audio/mp4", "audio/x-m4a", "audio/m4a",
    "video/mp4", "video/quicktime",
    "audio/webm", "video/webm", "video/x-matroska",
    "audio/ogg", "audio/opus",
    "audio/flac", "audio/x-flac",
}

# Full PCM decode is only attempted for files this small
FULL_DECODE_LIMIT_BYTES = 50 * MB


def is_container_format(file_name: str, mime_type: str) -> bool:
    """Classify by extension first, MIME type second."""
    suffix = Path(file_name).suffix.lower().lstrip(".")
    if suffix and suffix in CONTAINER_EXTENSIONS:
        return True
    return (mime_type or "").lower() in CONTAINER_MIME_TYPES


def _metadata_duration(path: Path) -> Optional[float]:
    """Duration reported by container metadata (ffprobe via pydub), or None."""
    try:
        info = mediainfo(str(path))
    except Exception as e:
        print(f"  ⚠ Could not read media metadata: {e}")
        return None

    raw = info.get("duration") if info else None
    try:
        return float(raw)
    except (TypeError, ValueError):
        # ffprobe prints "N/A" for some live-recorded streams
        return float("inf") if raw else None


def _decoded_duration(path: Path) -> Optional[float]:
    """Exact duration from a full PCM decode."""
    try:
        audio = AudioSegment.from_file(str(path))
    except (CouldntDecodeError, OSError, IndexError) as e:
        print(f"  ⚠ Full decode for duration failed: {e}")
        return None
    return len(audio) / 1000.0


def probe(source: MediaSource) -> ProbeResult:
    """
    Determine duration and container class of a media source.

    If metadata reports a non-finite duration and the file is small, the
    whole file is decoded to measure it. When nothing works the duration
    is 0, which the Strategy Selector treats as a direct pass.

    Args:
        source: Media source to probe

    Returns:
        ProbeResult with duration in seconds and container classification
    """
    container = is_container_format(source.file_name, source.mime_type)

    duration = _metadata_duration(source.path)
    if duration is None or not math.isfinite(duration) or duration <= 0:
        if source.size_bytes <= FULL_DECODE_LIMIT_BYTES:
            print("  Metadata duration unavailable, decoding to measure...")
            duration = _decoded_duration(source.path)

    if duration is None or not math.isfinite(duration) or duration <= 0:
        print(f"⚠ Could not determine duration of {source.file_name}, sending as-is")
        duration = 0.0

    return ProbeResult(duration_seconds=duration, is_container_format=container)
