"""Temporal (time-based) and binary (byte-based) chunking."""

import math
from pathlib import Path
from typing import Optional

from media2txt.errors import TranscodeError
from media2txt.job import JobContext
from media2txt.models import Chunk, MediaSource
from media2txt.transcode import TranscodeEngine

MAX_CHUNKS = 100

# Codecs whose frames survive arbitrary cut points under "-c copy"
STREAM_COPY_SAFE = {"m4a", "mp4", "mov", "webm", "mkv", "ogg", "flac", "wav", "mp3"}
# Codecs that produce invalid segments under stream copy; re-encoded to AAC/M4A
STREAM_COPY_UNSAFE = {"opus", "avi"}

REENCODE_CODEC = "aac"
REENCODE_BITRATE = "128k"
REENCODE_EXTENSION = "m4a"
REENCODE_MIME = "audio/mp4"

MIME_EXTENSIONS = {
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/m4a": "m4a",
    "audio/aac": "m4a",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/webm": "webm",
    "audio/opus": "opus",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/x-matroska": "mkv",
    "video/x-msvideo": "avi",
}

STAGE = "chunking"


def output_extension(file_name: str, mime_type: str) -> str:
    """Container extension for a source, from its file name first, then its MIME type."""
    suffix = Path(file_name).suffix.lower().lstrip(".")
    if suffix in STREAM_COPY_SAFE or suffix in STREAM_COPY_UNSAFE:
        return suffix
    return MIME_EXTENSIONS.get((mime_type or "").lower(), "m4a")


def needs_reencoding(extension: str) -> bool:
    """True unless the codec is known to stream-copy cleanly."""
    if extension in STREAM_COPY_UNSAFE:
        return True
    return extension not in STREAM_COPY_SAFE


def plan_windows(
    duration: float,
    chunk_minutes: float,
    overlap_seconds: float,
    max_chunks: int = MAX_CHUNKS,
) -> list[tuple[float, float]]:
    """
    Compute [start, end] windows (seconds) that tile [0, duration].

    Window i starts at i*C and ends C + O later (clamped to the duration),
    so consecutive windows overlap by exactly O seconds.

    Args:
        duration: Total duration in seconds
        chunk_minutes: Chunk length C in minutes
        overlap_seconds: Overlap O in seconds
        max_chunks: Hard cap on the number of windows

    Returns:
        List of (start, end) tuples; empty for an invalid duration
    """
    if not math.isfinite(duration) or duration <= 0:
        return []

    chunk_seconds = chunk_minutes * 60
    count = min(math.ceil(duration / chunk_seconds), max_chunks)

    windows = []
    for i in range(count):
        start = i * chunk_seconds
        end = min(start + chunk_seconds + overlap_seconds, duration)
        windows.append((start, end))

    # Pathological durations hit the cap; stretch the last window to the end
    if windows and windows[-1][1] < duration:
        windows[-1] = (windows[-1][0], duration)
    return windows


def _format_seconds_arg(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def chunk_temporally(
    source: MediaSource,
    duration: float,
    engine: TranscodeEngine,
    chunk_minutes: float = 20,
    overlap_seconds: float = 30,
    ctx: Optional[JobContext] = None,
) -> list[Chunk]:
    """
    Split a source by playback time using the transcoding engine.

    Stream-copies when the codec allows it, otherwise lightly re-encodes each
    segment to AAC. An invalid or non-finite duration yields a single
    whole-file chunk.

    Args:
        source: Original media source
        duration: Total duration in seconds
        engine: Transcoding engine handle
        chunk_minutes: Chunk length in minutes
        overlap_seconds: Overlap between consecutive chunks in seconds
        ctx: Job context for progress and cancellation

    Returns:
        Ordered list of timed chunks

    Raises:
        TranscodeError: If any engine run exits non-zero (no partial results)
    """
    extension = output_extension(source.file_name, source.mime_type)

    windows = plan_windows(duration, chunk_minutes, overlap_seconds)
    if not windows:
        print("⚠ Invalid duration, sending the whole file as one chunk")
        return [Chunk(
            index=0,
            data=source.path.read_bytes(),
            file_name=source.file_name,
            mime_type=source.mime_type,
            format=extension,
        )]

    reencode = needs_reencoding(extension)
    final_extension = REENCODE_EXTENSION if reencode else extension
    final_mime = REENCODE_MIME if reencode else source.mime_type
    stem = source.path.stem

    print(f"Splitting {source.file_name} into {len(windows)} chunks "
          f"({chunk_minutes:g} min, {overlap_seconds:g}s overlap, "
          f"{'re-encode AAC' if reencode else 'stream copy'})...")

    if ctx is not None:
        ctx.check()
        ctx.report(STAGE, 0.05)

    input_name = f"input.{extension}"
    chunks: list[Chunk] = []

    with engine.session():
        engine.copy_in(input_name, source.path)
        try:
            for index, (start, end) in enumerate(windows):
                if ctx is not None:
                    ctx.check()

                output_name = f"chunk_{index}.{final_extension}"
                if reencode:
                    codec_args = ["-c:a", REENCODE_CODEC, "-b:a", REENCODE_BITRATE]
                else:
                    codec_args = ["-c", "copy"]

                args = [
                    "-i", input_name,
                    "-ss", _format_seconds_arg(start),
                    "-t", _format_seconds_arg(end - start),
                    *codec_args,
                    "-y",
                    output_name,
                ]
                returncode = engine.exec(args)
                if returncode != 0:
                    engine.delete_file(output_name)
                    raise TranscodeError(
                        f"ffmpeg failed with exit code {returncode} while processing chunk {index}",
                        returncode=returncode,
                        stderr=engine.last_stderr,
                    )

                data = engine.read_file(output_name)
                engine.delete_file(output_name)

                chunks.append(Chunk(
                    index=index,
                    data=data,
                    file_name=f"{stem}_part{index}.{final_extension}",
                    mime_type=final_mime,
                    format=final_extension,
                    start_time=start,
                    end_time=end,
                ))
                print(f"    Chunk {index + 1}/{len(windows)}: "
                      f"{start / 60:.1f}-{end / 60:.1f} min, {len(data) / (1024 * 1024):.1f} MB")

                if ctx is not None:
                    ctx.report(STAGE, 0.05 + 0.95 * (index + 1) / len(windows))
        finally:
            engine.delete_file(input_name)

    print(f"  ✓ Split into {len(chunks)} chunks")
    return chunks


def chunk_bytes(
    data: bytes,
    file_name: str,
    mime_type: str,
    max_chunk_bytes: int,
    bitrate_kbps: Optional[int] = None,
    duration: Optional[float] = None,
) -> list[Chunk]:
    """
    Split a byte stream into consecutive chunks of at most ``max_chunk_bytes``.

    Only for formats whose framing tolerates arbitrary byte cuts (MP3/WAV).
    Chunks carry 0/0 start/end times; the start offset is estimated from the
    bitrate (or the byte share of ``duration``) and is approximate.

    Args:
        data: Encoded audio bytes
        file_name: Name used to derive chunk file names
        mime_type: MIME type of every chunk
        max_chunk_bytes: Maximum size per chunk
        bitrate_kbps: Constant bitrate used to estimate offsets
        duration: Total duration, used when no bitrate is known

    Returns:
        List of chunks with no overlap
    """
    if max_chunk_bytes <= 0:
        raise ValueError("max_chunk_bytes must be positive")

    path = Path(file_name)
    extension = path.suffix.lower().lstrip(".") or "mp3"
    total = len(data)
    num_chunks = max(1, (total + max_chunk_bytes - 1) // max_chunk_bytes)

    if num_chunks > 1:
        print(f"  Splitting audio into {num_chunks} chunks...")

    chunks = []
    for i in range(num_chunks):
        offset = i * max_chunk_bytes
        piece = data[offset:offset + max_chunk_bytes]

        if bitrate_kbps:
            estimated = offset * 8 / (bitrate_kbps * 1000)
        elif duration and total:
            estimated = duration * offset / total
        else:
            estimated = 0.0

        chunks.append(Chunk(
            index=i,
            data=piece,
            file_name=f"{path.stem}_part{i + 1}.{extension}" if num_chunks > 1 else path.name,
            mime_type=mime_type,
            format=extension,
            estimated_offset=estimated,
        ))
        if num_chunks > 1:
            print(f"    Chunk {i + 1}/{num_chunks}: {len(piece) / (1024 * 1024):.1f} MB")

    return chunks
