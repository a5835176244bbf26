"""Configuration management, environment variable loading and provider profiles."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file (don't override existing env vars)
load_dotenv(override=False)

MB = 1024 * 1024


class Config:
    """Application configuration."""

    PROVIDER: str = os.getenv("PROVIDER", "groq").lower()
    GROQ_API_KEY: str = os.getenv("GROQ_API_KEY", "")
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GROQ_MODEL: str = os.getenv("GROQ_MODEL", "whisper-large-v3-turbo")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

    # Language hint sent to the recognizer, empty means auto-detect
    LANGUAGE: str = os.getenv("LANGUAGE", "")

    # Job store root (chunks, fragments and final transcripts live here)
    OUT_DIR: Path = Path(os.getenv("OUT_DIR", "./out")).resolve()

    FFMPEG_BINARY: str = os.getenv("FFMPEG_BINARY", "ffmpeg")

    # Fixed wait before the single retry of a rate-limited chunk
    RATE_LIMIT_DELAY: float = float(os.getenv("RATE_LIMIT_DELAY", "10"))
    MAX_PARALLEL_REQUESTS: int = int(os.getenv("MAX_PARALLEL_REQUESTS", "3"))

    @classmethod
    def api_key_for(cls, provider: str) -> str:
        """Return the configured API key for a provider."""
        if provider == "gemini":
            return cls.GEMINI_API_KEY
        return cls.GROQ_API_KEY

    @classmethod
    def validate(cls, provider: Optional[str] = None) -> None:
        """Validate that required configuration is present."""
        provider = provider or cls.PROVIDER
        if provider not in PROVIDERS:
            raise ValueError(
                f"Unknown provider '{provider}'. Choose one of: {', '.join(sorted(PROVIDERS))}."
            )
        if not cls.api_key_for(provider):
            env_name = "GEMINI_API_KEY" if provider == "gemini" else "GROQ_API_KEY"
            raise ValueError(
                f"{env_name} is required. Please set it in your .env file or environment variables."
            )


@dataclass(frozen=True)
class QualityProfile:
    """Target format for the Compression Engine."""
    sample_rate: int     # Hz
    bitrate_kbps: int


@dataclass(frozen=True)
class ProviderProfile:
    """Every size, duration and dispatch constant for one transcription provider."""
    name: str

    # Files at or below both thresholds are sent as-is
    direct_size_bytes: int
    direct_duration_minutes: Optional[float]

    # Largest single payload the endpoint accepts at all
    upload_limit_bytes: int

    # Container files at/above this duration are split by time
    chunk_threshold_minutes: float
    chunk_minutes: float
    overlap_seconds: float

    # Binary chunk size for simple (byte-chunkable) formats
    max_chunk_bytes: int

    audio_profile: QualityProfile
    video_profile: QualityProfile

    # "sequential" (rate-limited providers) or "parallel"
    dispatch_mode: str
    max_workers: int
    request_delay: float  # pause between sequential requests

    # Timeout = base + increment for every step above the baseline size
    timeout_base: float
    timeout_step_mb: float
    timeout_increment: float


PROVIDERS = {
    "groq": ProviderProfile(
        name="groq",
        direct_size_bytes=25 * MB,
        direct_duration_minutes=None,
        upload_limit_bytes=25 * MB,
        chunk_threshold_minutes=15,
        chunk_minutes=10,
        overlap_seconds=30,
        max_chunk_bytes=20 * MB,
        audio_profile=QualityProfile(sample_rate=16000, bitrate_kbps=64),
        video_profile=QualityProfile(sample_rate=16000, bitrate_kbps=64),
        dispatch_mode="sequential",
        max_workers=1,
        request_delay=3.0,
        timeout_base=120.0,
        timeout_step_mb=5,
        timeout_increment=30.0,
    ),
    "gemini": ProviderProfile(
        name="gemini",
        direct_size_bytes=20 * MB,
        direct_duration_minutes=30,
        upload_limit_bytes=2048 * MB,
        chunk_threshold_minutes=30,
        chunk_minutes=20,
        overlap_seconds=30,
        max_chunk_bytes=20 * MB,
        audio_profile=QualityProfile(sample_rate=16000, bitrate_kbps=64),
        video_profile=QualityProfile(sample_rate=44100, bitrate_kbps=128),
        dispatch_mode="parallel",
        max_workers=Config.MAX_PARALLEL_REQUESTS,
        request_delay=0.0,
        timeout_base=300.0,
        timeout_step_mb=10,
        timeout_increment=60.0,
    ),
}


def get_profile(provider: str) -> ProviderProfile:
    """Look up a provider profile by name."""
    try:
        return PROVIDERS[provider.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown provider '{provider}'. Choose one of: {', '.join(sorted(PROVIDERS))}."
        ) from None
