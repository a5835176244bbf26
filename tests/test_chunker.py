"""Tests for temporal and binary chunking."""

import math

import pytest

from media2txt.chunker import (
    MAX_CHUNKS,
    chunk_bytes,
    chunk_temporally,
    needs_reencoding,
    output_extension,
    plan_windows,
)
from media2txt.errors import JobCancelled, TranscodeError
from media2txt.job import CancellationToken, JobContext
from media2txt.models import MediaSource


class TestPlanWindows:
    @pytest.mark.parametrize("duration", [60, 1199, 1200, 1201, 1210, 2430, 5400, 7321.5])
    def test_windows_tile_duration_with_exact_overlap(self, duration) -> None:
        chunk_minutes, overlap = 20, 30
        windows = plan_windows(duration, chunk_minutes, overlap)

        assert len(windows) == math.ceil(duration / (chunk_minutes * 60))
        assert windows[0][0] == 0
        assert windows[-1][1] == duration
        for (start, end), (next_start, _) in zip(windows, windows[1:]):
            assert next_start <= end
            assert end - next_start <= overlap
        # Every boundary but the last overlaps by exactly O
        for (start, end), (next_start, _) in zip(windows[:-2], windows[1:-1]):
            assert end - next_start == overlap

    def test_ninety_minutes_in_twenty_minute_chunks(self) -> None:
        windows = plan_windows(5400, 20, 30)
        assert windows == [
            (0, 1230),
            (1200, 2430),
            (2400, 3630),
            (3600, 4830),
            (4800, 5400),
        ]

    def test_chunk_count_is_capped(self) -> None:
        windows = plan_windows(1_000_000, 1, 5)
        assert len(windows) == MAX_CHUNKS
        assert windows[-1][1] == 1_000_000

    @pytest.mark.parametrize("duration", [0, -5, float("inf"), float("nan")])
    def test_invalid_duration(self, duration) -> None:
        assert plan_windows(duration, 20, 30) == []


class TestCodecTable:
    def test_safe_codecs_stream_copy(self) -> None:
        for ext in ("m4a", "mp4", "webm", "mkv", "ogg", "flac", "mp3"):
            assert not needs_reencoding(ext)

    def test_unsafe_and_unknown_codecs_reencode(self) -> None:
        assert needs_reencoding("opus")
        assert needs_reencoding("avi")
        assert needs_reencoding("xyz")

    def test_output_extension_falls_back_to_mime(self) -> None:
        assert output_extension("recording", "audio/webm") == "webm"
        assert output_extension("talk.M4A", "application/octet-stream") == "m4a"


class TestChunkTemporally:
    def test_stream_copy_chunks(self, engine, media_file) -> None:
        source = MediaSource.from_path(media_file("lecture.m4a"))
        chunks = chunk_temporally(source, 2500, engine, chunk_minutes=20, overlap_seconds=30)

        assert [c.index for c in chunks] == [0, 1, 2]
        assert [(c.start_time, c.end_time) for c in chunks] == [(0, 1230), (1200, 2430), (2400, 2500)]
        assert chunks[1].file_name == "lecture_part1.m4a"
        assert all(c.is_timed for c in chunks)
        assert engine.calls[1] == [
            "-i", "input.m4a", "-ss", "1200", "-t", "1230", "-c", "copy", "-y", "chunk_1.m4a",
        ]
        assert chunks[1].data == b"1200+1230"
        assert engine.files == {}

    def test_opus_is_reencoded_to_aac(self, engine, media_file) -> None:
        source = MediaSource.from_path(media_file("voice.opus"), mime_type="audio/opus")
        chunks = chunk_temporally(source, 1500, engine, chunk_minutes=10, overlap_seconds=30)

        assert "-c:a" in engine.calls[0]
        assert engine.calls[0][engine.calls[0].index("-b:a") + 1] == "128k"
        assert all(c.format == "m4a" and c.mime_type == "audio/mp4" for c in chunks)

    def test_nonzero_exit_aborts_everything(self, make_engine, media_file) -> None:
        engine = make_engine(fail_on_chunk=1)
        source = MediaSource.from_path(media_file("lecture.webm"))
        with pytest.raises(TranscodeError) as excinfo:
            chunk_temporally(source, 2500, engine)
        assert excinfo.value.returncode == 1
        assert "Invalid data" in excinfo.value.stderr
        assert engine.files == {}

    def test_invalid_duration_gives_single_chunk(self, engine, media_file) -> None:
        path = media_file("stream.webm", b"webm-bytes")
        chunks = chunk_temporally(MediaSource.from_path(path), float("inf"), engine)
        assert len(chunks) == 1
        assert chunks[0].data == b"webm-bytes"
        assert engine.calls == []

    def test_cancelled_before_start(self, engine, media_file) -> None:
        token = CancellationToken()
        token.cancel()
        source = MediaSource.from_path(media_file("lecture.m4a"))
        with pytest.raises(JobCancelled):
            chunk_temporally(source, 2500, engine, ctx=JobContext(token=token))
        assert engine.calls == []


class TestChunkBytes:
    def test_chunks_respect_max_size_and_cover_input(self) -> None:
        data = bytes(range(256)) * 200
        chunks = chunk_bytes(data, "talk_compressed.mp3", "audio/mpeg", 16000, bitrate_kbps=64)

        assert all(c.size_bytes <= 16000 for c in chunks)
        assert b"".join(c.data for c in chunks) == data
        assert [c.index for c in chunks] == [0, 1, 2, 3]
        assert chunks[1].file_name == "talk_compressed_part2.mp3"

    def test_offsets_are_estimates(self) -> None:
        # 64 kbps = 8000 bytes per second
        chunks = chunk_bytes(b"x" * 40000, "a.mp3", "audio/mpeg", 16000, bitrate_kbps=64)
        assert [c.estimated_offset for c in chunks] == [0.0, 2.0, 4.0]
        assert all(c.start_time == 0 and c.end_time == 0 for c in chunks)
        assert not any(c.is_timed for c in chunks)

    def test_offsets_from_duration_share(self) -> None:
        chunks = chunk_bytes(b"x" * 300, "a.wav", "audio/wav", 100, duration=60)
        assert [c.offset_seconds for c in chunks] == [0.0, 20.0, 40.0]

    def test_small_input_is_one_chunk(self) -> None:
        chunks = chunk_bytes(b"abc", "a.mp3", "audio/mpeg", 100)
        assert len(chunks) == 1
        assert chunks[0].file_name == "a.mp3"

    def test_invalid_max_size(self) -> None:
        with pytest.raises(ValueError):
            chunk_bytes(b"abc", "a.mp3", "audio/mpeg", 0)
