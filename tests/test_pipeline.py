"""End-to-end tests for the job coordinator with fake engine and providers."""

import json
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from media2txt.config import PROVIDERS
from media2txt.errors import EmptyResult, TranscriptionError
from media2txt.job import JobContext, JobState
from media2txt.models import Chunk, CompressionResult, MediaSource, PlanKind, ProbeResult, ProcessingPlan, TranscriptFragment
from media2txt.overlap import extract_segments
from media2txt.pipeline import assemble, run_job
from media2txt.store import JobStore, job_id_for
from media2txt.timestamps import format_timestamp, parse_timestamp


def compressed(data, duration, name="lecture_compressed.mp3"):
    return CompressionResult(data=data, file_name=name, mime_type="audio/mpeg", duration_seconds=duration,
                             original_size=10_000, sample_rate=16000, bitrate_kbps=64)


class TestTemporalJob:
    def test_ninety_minute_lecture_on_gemini(self, tmp_path, engine, media_file, speech) -> None:
        path = media_file("lecture.m4a")
        transcriber = speech()
        updates = []

        with patch("media2txt.pipeline.probe", return_value=ProbeResult(5400, True)):
            outcome = run_job(path, "gemini", on_progress=lambda s, f: updates.append((s, f)),
                              transcriber=transcriber, engine=engine, out_dir=tmp_path / "out")

        assert outcome.status is JobState.DONE
        final = outcome.transcript
        assert final.plan.kind is PlanKind.TEMPORAL_CHUNK
        assert len(final.fragments) == 5
        assert len(final.trims) == 4
        assert not final.approximate_timestamps

        segments = extract_segments(final.text)
        seconds = [parse_timestamp(s.timestamp) for s in segments]
        assert seconds == sorted(set(seconds))
        assert [s.content for s in segments] == [speech.sentence(n) for n in range(90)]
        assert segments[60].timestamp == format_timestamp(3600) == "[01:00:00]"

        for stage in ("probing", "chunking", "transcribing", "merging"):
            fractions = [f for s, f in updates if s == stage]
            assert fractions == sorted(fractions)
            assert fractions[-1] == 1.0

        assert (outcome.job_dir / "transcript.txt").read_text(encoding="utf-8").strip() == final.text
        data = json.loads((outcome.job_dir / "transcript.json").read_text(encoding="utf-8"))
        assert data["plan"]["kind"] == "temporal_chunk"
        assert len(data["overlap_trims"]) == 4
        assert not (outcome.job_dir / "chunks").exists()

    def test_transcode_failure_falls_back_to_reencode(self, tmp_path, make_engine, media_file, speech) -> None:
        path = media_file("lecture.m4a")
        transcriber = speech()
        compress = MagicMock(return_value=compressed(b"m" * 500, 5400))

        with patch("media2txt.pipeline.probe", return_value=ProbeResult(5400, True)), \
                patch("media2txt.pipeline.compress_in_background", compress):
            outcome = run_job(path, "gemini", transcriber=transcriber, engine=make_engine(fail_on_chunk=1),
                              out_dir=tmp_path / "out")

        assert outcome.transcript.plan.kind is PlanKind.TEMPORAL_FALLBACK
        assert compress.call_args.args[1] == PROVIDERS["gemini"].audio_profile
        assert transcriber.calls == [0]
        assert len(extract_segments(outcome.transcript.text)) == 90

    def test_chunks_above_upload_limit_fall_back_to_reencode(self, tmp_path, engine, media_file, speech) -> None:
        path = media_file("concert.flac")
        profile = replace(PROVIDERS["groq"], upload_limit_bytes=4, request_delay=0.0)
        transcriber = speech()
        compress = MagicMock(return_value=compressed(b"m" * 500, 3600))

        with patch("media2txt.pipeline.probe", return_value=ProbeResult(3600, True)), \
                patch("media2txt.pipeline.compress_in_background", compress), \
                patch("media2txt.pipeline.get_profile", return_value=profile):
            outcome = run_job(path, "groq", transcriber=transcriber, engine=engine, out_dir=tmp_path / "out")

        assert engine.calls
        assert outcome.transcript.plan.kind is PlanKind.TEMPORAL_FALLBACK
        assert compress.call_args.args[1] == PROVIDERS["groq"].audio_profile
        assert transcriber.calls == [0]
        assert len(extract_segments(outcome.transcript.text)) == 60

    def test_interrupted_job_resumes(self, tmp_path, engine, media_file, speech) -> None:
        path = media_file("lecture.m4a")
        out_dir = tmp_path / "out"
        ctx = JobContext()
        probe = MagicMock(return_value=ProbeResult(5400, True))

        with patch("media2txt.pipeline.probe", probe):
            with pytest.raises(TranscriptionError):
                run_job(path, "gemini", transcriber=speech(fail_on={2}), engine=engine, out_dir=out_dir, ctx=ctx)

            assert ctx.state is JobState.NOT_STARTED
            assert ctx.error == TranscriptionError.user_message

            store = JobStore(out_dir, job_id_for(MediaSource.from_path(path), "gemini"))
            stored = set(store.load_fragments())
            assert 2 not in stored
            engine_runs = len(engine.calls)

            second = speech()
            outcome = run_job(path, "gemini", transcriber=second, engine=engine, out_dir=out_dir)

        assert outcome.status is JobState.DONE
        assert probe.call_count == 1
        assert len(engine.calls) == engine_runs
        assert sorted(second.calls) == sorted(set(range(5)) - stored)
        assert len(extract_segments(outcome.transcript.text)) == 90

    def test_finished_job_is_reused(self, tmp_path, engine, media_file, speech) -> None:
        path = media_file("lecture.m4a")
        with patch("media2txt.pipeline.probe", return_value=ProbeResult(5400, True)):
            first = run_job(path, "gemini", transcriber=speech(), engine=engine, out_dir=tmp_path / "out")
            again = speech()
            second = run_job(path, "gemini", transcriber=again, engine=engine, out_dir=tmp_path / "out")

        assert again.calls == []
        assert second.transcript.text == first.transcript.text
        assert second.transcript.plan == first.transcript.plan


class TestOtherPlans:
    def test_small_mp3_on_groq_is_sent_as_is(self, tmp_path, media_file, speech) -> None:
        path = media_file("memo.mp3", b"ID3" + b"\x00" * 2048)
        transcriber = MagicMock()
        transcriber.transcribe.return_value = TranscriptFragment(index=0, text="[00:02] Short voice memo here.")
        compress = MagicMock()

        with patch("media2txt.pipeline.probe", return_value=ProbeResult(600, False)), \
                patch("media2txt.pipeline.compress_in_background", compress):
            outcome = run_job(path, "groq", transcriber=transcriber, out_dir=tmp_path / "out")

        compress.assert_not_called()
        assert outcome.transcript.plan.kind is PlanKind.DIRECT
        sent = transcriber.transcribe.call_args.args[0]
        assert sent.data == path.read_bytes()
        assert outcome.transcript.text == "[00:02] Short voice memo here."

    def test_video_is_compressed_then_split_by_bytes(self, tmp_path, media_file, speech) -> None:
        path = media_file("clip.mov")
        profile = replace(PROVIDERS["groq"], direct_size_bytes=100, max_chunk_bytes=100, request_delay=0.0)
        transcriber = speech()
        compress = MagicMock(return_value=compressed(b"m" * 250, 2400, name="clip_compressed.mp3"))

        with patch("media2txt.pipeline.probe", return_value=ProbeResult(2400, True)), \
                patch("media2txt.pipeline.compress_in_background", compress), \
                patch("media2txt.pipeline.get_profile", return_value=profile), \
                patch("media2txt.strategy.get_profile", return_value=profile):
            outcome = run_job(path, "groq", transcriber=transcriber, out_dir=tmp_path / "out")

        final = outcome.transcript
        assert final.plan.extract_audio
        assert compress.call_args.args[1] == PROVIDERS["groq"].video_profile
        assert final.approximate_timestamps
        assert final.trims == ()
        assert len(final.fragments) == 3
        assert final.text.count("\n\n") == 2

    def test_cancellation_is_not_an_error(self, tmp_path, engine, media_file, speech) -> None:
        ctx = JobContext()
        transcriber = speech(on_call=lambda chunk: ctx.token.cancel())

        with patch("media2txt.pipeline.probe", return_value=ProbeResult(5400, True)):
            outcome = run_job(media_file("lecture.m4a"), "gemini", transcriber=transcriber, engine=engine,
                              out_dir=tmp_path / "out", ctx=ctx)

        assert outcome.status is JobState.CANCELLED
        assert outcome.transcript is None
        assert ctx.state is JobState.CANCELLED
        assert ctx.error is None
        assert not (outcome.job_dir / "transcript.txt").exists()

    def test_blank_transcription_fails_loudly(self, tmp_path, media_file) -> None:
        transcriber = MagicMock()
        transcriber.transcribe.return_value = TranscriptFragment(index=0, text="  ")
        ctx = JobContext()

        with patch("media2txt.pipeline.probe", return_value=ProbeResult(30, False)):
            with pytest.raises(EmptyResult):
                run_job(media_file("memo.mp3"), "groq", transcriber=transcriber, out_dir=tmp_path / "out", ctx=ctx)

        assert ctx.state is JobState.NOT_STARTED
        assert ctx.error == EmptyResult.user_message


class TestAssemble:
    def test_missing_fragment(self) -> None:
        chunks = [Chunk(index=i, data=b"", file_name="a.mp3", mime_type="audio/mpeg", format="mp3") for i in range(2)]
        plan = ProcessingPlan(PlanKind.DIRECT, "groq", "test")
        with pytest.raises(EmptyResult):
            assemble(chunks, [TranscriptFragment(index=0, text="[00:01] text")], plan)

    def test_fragments_are_ordered_by_index(self) -> None:
        chunks = [
            Chunk(index=i, data=b"", file_name="a.mp3", mime_type="audio/mpeg", format="mp3",
                  estimated_offset=i * 600.0)
            for i in range(3)
        ]
        fragments = [TranscriptFragment(index=i, text=f"[00:10] part {i}") for i in (2, 0, 1)]
        plan = ProcessingPlan(PlanKind.COMPRESS_AND_CHUNK, "groq", "test")

        final = assemble(chunks, fragments, plan)

        assert final.text == "[00:10] part 0\n\n[10:10] part 1\n\n[20:10] part 2"
        assert final.approximate_timestamps
