"""Compression Engine: decode, downmix to mono, resample and re-encode to MP3."""

import subprocess
import tempfile
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Optional

import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from media2txt.config import Config, QualityProfile
from media2txt.errors import DecodeError, JobCancelled, TranscodeError
from media2txt.job import JobContext
from media2txt.models import CompressionResult, MediaSource

# Samples per MP3 frame; progress is reported every FRAMES_PER_BLOCK frames
MP3_FRAME_SAMPLES = 1152
FRAMES_PER_BLOCK = 100

STAGE = "compressing"


def _report(ctx: Optional[JobContext], fraction: float) -> None:
    if ctx is not None:
        ctx.report(STAGE, fraction)


def _check(ctx: Optional[JobContext]) -> None:
    if ctx is not None:
        ctx.check()


def decode_audio(path: Path, sample_rate: int) -> AudioSegment:
    """Decode any supported file to PCM at the target sample rate."""
    try:
        audio = AudioSegment.from_file(str(path))
    except CouldntDecodeError as e:
        raise DecodeError(f"Could not decode {path.name}: {e}") from e
    except (OSError, IndexError) as e:
        raise DecodeError(f"Could not read audio from {path.name}: {e}") from e
    return audio.set_frame_rate(sample_rate)


def to_mono_int16(samples: np.ndarray, channels: int, sample_width: int) -> np.ndarray:
    """
    Average channels down to mono and quantize to 16-bit signed integers.

    Args:
        samples: Interleaved integer PCM samples
        channels: Number of interleaved channels
        sample_width: Bytes per sample of the input

    Returns:
        int16 array with one sample per frame
    """
    full_scale = float(2 ** (8 * sample_width - 1))
    data = samples.astype(np.float64) / full_scale

    if channels > 1:
        usable = len(data) - (len(data) % channels)
        data = data[:usable].reshape(-1, channels).mean(axis=1)

    data = np.clip(data, -1.0, 1.0)
    return np.clip(np.round(data * 32767), -32768, 32767).astype(np.int16)


def encode_mp3(
    pcm: np.ndarray,
    sample_rate: int,
    bitrate_kbps: int,
    ctx: Optional[JobContext] = None,
    progress_start: float = 0.4,
    progress_end: float = 0.95,
) -> bytes:
    """
    Encode mono int16 PCM to MP3, feeding the encoder in fixed-size frame blocks.

    Args:
        pcm: Mono int16 samples
        sample_rate: Sample rate of ``pcm``
        bitrate_kbps: Target constant bitrate
        ctx: Job context for progress and cancellation
        progress_start: Fraction reported before the first block
        progress_end: Fraction reported after the last block

    Returns:
        Encoded MP3 bytes
    """
    with tempfile.TemporaryDirectory(prefix="media2txt-enc-") as tmp:
        out_path = Path(tmp) / "out.mp3"
        cmd = [
            Config.FFMPEG_BINARY, "-hide_banner", "-loglevel", "error",
            "-f", "s16le", "-ar", str(sample_rate), "-ac", "1", "-i", "pipe:0",
            "-c:a", "libmp3lame", "-b:a", f"{bitrate_kbps}k",
            "-y", str(out_path),
        ]
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscodeError(f"ffmpeg not found ({Config.FFMPEG_BINARY})") from e

        block = MP3_FRAME_SAMPLES * FRAMES_PER_BLOCK
        total = max(1, len(pcm))
        try:
            for offset in range(0, len(pcm), block):
                if ctx is not None and ctx.cancelled:
                    proc.kill()
                    proc.wait()
                    raise JobCancelled()
                proc.stdin.write(pcm[offset:offset + block].tobytes())
                done = min(offset + block, total) / total
                _report(ctx, progress_start + done * (progress_end - progress_start))
        except BrokenPipeError:
            # Encoder died early; its exit status and stderr explain why
            pass

        _, stderr = proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise TranscodeError(
                f"MP3 encode failed with exit code {proc.returncode}",
                returncode=proc.returncode,
                stderr=message,
            )
        return out_path.read_bytes()


def compress_audio(
    source: MediaSource,
    profile: QualityProfile,
    ctx: Optional[JobContext] = None,
) -> CompressionResult:
    """
    Re-encode a source to mono MP3 at the profile's sample rate and bitrate.

    Args:
        source: Media source (audio or video) to compress
        profile: Target sample rate and bitrate
        ctx: Job context for progress and cancellation

    Returns:
        CompressionResult with the encoded bytes, duration and ratio

    Raises:
        DecodeError: If the source cannot be decoded (not retried)
        TranscodeError: If the encoder fails
    """
    _check(ctx)
    _report(ctx, 0.1)

    audio = decode_audio(source.path, profile.sample_rate)
    _check(ctx)
    _report(ctx, 0.3)

    samples = np.array(audio.get_array_of_samples())
    pcm = to_mono_int16(samples, audio.channels, audio.sample_width)
    duration_seconds = len(pcm) / float(profile.sample_rate)
    del samples, audio
    _check(ctx)
    _report(ctx, 0.4)

    data = encode_mp3(pcm, profile.sample_rate, profile.bitrate_kbps, ctx)
    _report(ctx, 1.0)

    result = CompressionResult(
        data=data,
        file_name=f"{source.path.stem}_compressed.mp3",
        mime_type="audio/mpeg",
        duration_seconds=duration_seconds,
        original_size=source.size_bytes,
        sample_rate=profile.sample_rate,
        bitrate_kbps=profile.bitrate_kbps,
    )
    print(
        f"  ✓ Compressed: {source.size_bytes / (1024 * 1024):.1f} MB -> "
        f"{result.compressed_size / (1024 * 1024):.1f} MB ({result.ratio:.0%})"
    )
    return result


def compress_in_background(
    source: MediaSource,
    profile: QualityProfile,
    ctx: JobContext,
    poll_interval: float = 0.25,
) -> CompressionResult:
    """
    Run compress_audio on a worker thread while the caller watches for cancellation.

    Only one compression runs per job; this keeps the coordinating thread
    free, it does not add parallelism.
    """
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="media2txt-compress") as executor:
        future = executor.submit(compress_audio, source, profile, ctx)
        while True:
            try:
                return future.result(timeout=poll_interval)
            except FutureTimeout:
                # The worker checks the token between blocks and raises JobCancelled
                continue
