"""Data models for media sources, chunks, fragments and transcripts."""

import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from media2txt.config import QualityProfile


@dataclass(frozen=True)
class MediaSource:
    """Immutable handle to the original upload."""
    path: Path
    file_name: str
    mime_type: str
    size_bytes: int
    duration_seconds: Optional[float] = None  # None until probed; may be inf

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "MediaSource":
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(
            path=path,
            file_name=path.name,
            mime_type=mime_type,
            size_bytes=path.stat().st_size,
        )

    @property
    def extension(self) -> str:
        return self.path.suffix.lower().lstrip(".")

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/") or self.extension in VIDEO_EXTENSIONS


VIDEO_EXTENSIONS = {"mov", "mp4", "mkv", "avi"}


@dataclass(frozen=True)
class ProbeResult:
    duration_seconds: float  # 0 when it could not be determined
    is_container_format: bool


class PlanKind(str, Enum):
    """The five ways a source can be prepared for transcription."""

    DIRECT = "direct"
    COMPRESS = "compress"
    COMPRESS_AND_CHUNK = "compress_and_chunk"
    TEMPORAL_CHUNK = "temporal_chunk"
    TEMPORAL_FALLBACK = "temporal_fallback"  # temporal chunking failed, full re-encode + byte split


@dataclass(frozen=True)
class ProcessingPlan:
    """The Strategy Selector's decision for one source."""
    kind: PlanKind
    provider: str
    reason: str
    quality: Optional[QualityProfile] = None
    chunk_minutes: float = 0
    overlap_seconds: float = 0
    max_chunk_bytes: int = 0
    extract_audio: bool = False

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "provider": self.provider,
            "reason": self.reason,
            "quality": (
                {"sample_rate": self.quality.sample_rate, "bitrate_kbps": self.quality.bitrate_kbps}
                if self.quality else None
            ),
            "chunk_minutes": self.chunk_minutes,
            "overlap_seconds": self.overlap_seconds,
            "max_chunk_bytes": self.max_chunk_bytes,
            "extract_audio": self.extract_audio,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessingPlan":
        quality = data.get("quality")
        return cls(
            kind=PlanKind(data["kind"]),
            provider=data["provider"],
            reason=data.get("reason", ""),
            quality=QualityProfile(**quality) if quality else None,
            chunk_minutes=data.get("chunk_minutes", 0),
            overlap_seconds=data.get("overlap_seconds", 0),
            max_chunk_bytes=data.get("max_chunk_bytes", 0),
            extract_audio=data.get("extract_audio", False),
        )


@dataclass
class CompressionResult:
    """Re-encoded audio from the Compression Engine."""
    data: bytes
    file_name: str
    mime_type: str
    duration_seconds: float
    original_size: int
    sample_rate: int
    bitrate_kbps: int

    @property
    def compressed_size(self) -> int:
        return len(self.data)

    @property
    def ratio(self) -> float:
        return self.compressed_size / self.original_size if self.original_size else 0.0


@dataclass
class Chunk:
    """A unit of media to transcribe.

    Temporal chunks carry true start/end times relative to the original
    recording. Binary chunks carry 0/0 and an ``estimated_offset`` instead,
    because byte positions do not map linearly to time.
    """
    index: int
    data: bytes
    file_name: str
    mime_type: str
    format: str
    start_time: float = 0.0
    end_time: float = 0.0
    estimated_offset: Optional[float] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def is_timed(self) -> bool:
        return self.estimated_offset is None

    @property
    def offset_seconds(self) -> float:
        """Start of this chunk on the global timeline (approximate for binary chunks)."""
        if self.estimated_offset is not None:
            return self.estimated_offset
        return self.start_time


@dataclass
class TranscriptFragment:
    """Transcription result for one chunk."""
    index: int
    text: str
    segments: list[dict] = field(default_factory=list)  # {start, end, text} when the provider returns them
    tokens: Optional[int] = None
    audio_seconds: Optional[float] = None


@dataclass
class Segment:
    """A timestamp marker and the text that follows it up to the next marker."""
    timestamp: str
    content: str
    start: int = 0   # character span in the fragment text
    end: int = 0


@dataclass
class OverlapTrim:
    """Audit record for one accepted overlap trim."""
    fragment_index: int
    previous_segment: str
    matched_segment: str
    score: float
    removed_chars: int


@dataclass(frozen=True)
class FinalTranscript:
    """Ordered, deduplicated transcript on one global timeline."""
    text: str
    provider: str
    plan: ProcessingPlan
    fragments: tuple = ()
    trims: tuple = ()
    approximate_timestamps: bool = False
