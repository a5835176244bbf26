"""Strategy Selector: picks how a source is prepared for its provider.

Pure decision table. Container formats (MPEG-4, WebM/Matroska, Ogg, FLAC)
cannot be safely byte-split because of their headers and interleaved frames,
so they are either split by time or fully converted first. Simple formats
(MP3, WAV) tolerate byte cuts.
"""

from media2txt.config import ProviderProfile, get_profile
from media2txt.models import PlanKind, ProcessingPlan


def estimated_compressed_size(duration_minutes: float, bitrate_kbps: int) -> float:
    """Bytes produced by a constant-bitrate encode of the given duration."""
    return duration_minutes * 60 * bitrate_kbps * 1000 / 8


def estimated_chunk_size(profile: ProviderProfile, size_bytes: int, duration_minutes: float) -> float:
    """Bytes in one temporal window (chunk plus overlap) at the source's average bitrate."""
    if duration_minutes <= 0:
        return float(size_bytes)
    bytes_per_second = size_bytes / (duration_minutes * 60)
    window_seconds = min(profile.chunk_minutes * 60 + profile.overlap_seconds, duration_minutes * 60)
    return bytes_per_second * window_seconds


def _is_direct(profile: ProviderProfile, size_bytes: int, duration_minutes: float) -> bool:
    if size_bytes > profile.direct_size_bytes:
        return False
    if profile.direct_duration_minutes is not None and duration_minutes > profile.direct_duration_minutes:
        return False
    return True


def _compress_plan(profile: ProviderProfile, duration_minutes: float, reason: str,
                   extract_audio: bool = False) -> ProcessingPlan:
    quality = profile.video_profile if extract_audio else profile.audio_profile
    expected = estimated_compressed_size(duration_minutes, quality.bitrate_kbps)
    kind = PlanKind.COMPRESS
    if expected > profile.direct_size_bytes:
        kind = PlanKind.COMPRESS_AND_CHUNK
    return ProcessingPlan(
        kind=kind,
        provider=profile.name,
        reason=reason,
        quality=quality,
        max_chunk_bytes=profile.max_chunk_bytes,
        extract_audio=extract_audio,
    )


def select_plan(
    provider: str,
    size_bytes: int,
    duration_minutes: float,
    is_container: bool,
    is_video: bool = False,
) -> ProcessingPlan:
    """
    Decide how to prepare a source for transcription.

    Args:
        provider: Destination provider name ("groq" or "gemini")
        size_bytes: Size of the original file
        duration_minutes: Measured duration (0 when unknown)
        is_container: True for container formats that need time-aware splitting
        is_video: True for video input

    Returns:
        A ProcessingPlan; the same inputs always give the same plan
    """
    profile = get_profile(provider)

    # Video always gets its audio track extracted, whatever the size
    if is_video:
        return _compress_plan(profile, duration_minutes, "video input: extract audio", extract_audio=True)

    # Unknown duration: never block the user, send as-is
    if duration_minutes <= 0:
        return ProcessingPlan(PlanKind.DIRECT, profile.name, "duration unknown")

    if _is_direct(profile, size_bytes, duration_minutes):
        return ProcessingPlan(PlanKind.DIRECT, profile.name, "within direct limits")

    if not is_container:
        return _compress_plan(profile, duration_minutes, "simple format above direct limits")

    if duration_minutes < profile.chunk_threshold_minutes:
        if size_bytes > profile.upload_limit_bytes:
            return _compress_plan(profile, duration_minutes, "short container above upload limit")
        return ProcessingPlan(PlanKind.DIRECT, profile.name, "short container below chunking threshold")

    # Time windows keep the source bitrate; dense sources would exceed the upload limit
    if estimated_chunk_size(profile, size_bytes, duration_minutes) > profile.upload_limit_bytes:
        return _compress_plan(profile, duration_minutes, "long container too dense to split by time")

    return ProcessingPlan(
        kind=PlanKind.TEMPORAL_CHUNK,
        provider=profile.name,
        reason="long container: split by time",
        chunk_minutes=profile.chunk_minutes,
        overlap_seconds=profile.overlap_seconds,
    )


def fallback_plan(plan: ProcessingPlan) -> ProcessingPlan:
    """Plan used when temporal chunking fails: full re-encode to MP3, then byte split."""
    profile = get_profile(plan.provider)
    return ProcessingPlan(
        kind=PlanKind.TEMPORAL_FALLBACK,
        provider=profile.name,
        reason="temporal chunking failed: re-encode then split by bytes",
        quality=profile.audio_profile,
        max_chunk_bytes=profile.max_chunk_bytes,
    )
