"""Job coordinator: probe -> plan -> prepare chunks -> dispatch -> normalize -> dedupe."""

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from media2txt.chunker import chunk_bytes, chunk_temporally
from media2txt.compressor import compress_in_background
from media2txt.config import Config, get_profile
from media2txt.dispatcher import dispatch
from media2txt.errors import EmptyResult, JobCancelled, PipelineError, TranscodeError
from media2txt.job import CancellationToken, JobContext, JobState, ProgressCallback
from media2txt.models import (
    Chunk,
    FinalTranscript,
    MediaSource,
    OverlapTrim,
    PlanKind,
    ProbeResult,
    ProcessingPlan,
    TranscriptFragment,
)
from media2txt.overlap import FRAGMENT_SEPARATOR, resolve_overlaps
from media2txt.prober import probe
from media2txt.store import JobStore, job_id_for
from media2txt.strategy import fallback_plan, select_plan
from media2txt.timestamps import normalize_timestamps
from media2txt.transcode import TranscodeEngine, get_engine
from media2txt.transcriber import get_transcriber
from media2txt.writers.json_writer import write_json
from media2txt.writers.txt_writer import write_txt


@dataclass
class JobOutcome:
    """Result of run_job. ``transcript`` is None unless status is DONE."""
    status: JobState
    transcript: Optional[FinalTranscript] = None
    job_dir: Optional[Path] = None


def _whole_file_chunk(data: bytes, file_name: str, mime_type: str, duration: float) -> Chunk:
    return Chunk(
        index=0,
        data=data,
        file_name=file_name,
        mime_type=mime_type,
        format=Path(file_name).suffix.lower().lstrip(".") or "bin",
        start_time=0.0,
        end_time=duration,
    )


def _compress_and_split(source: MediaSource, plan: ProcessingPlan, duration: float,
                        ctx: JobContext) -> list[Chunk]:
    profile = get_profile(plan.provider)
    label = "Extracting audio" if plan.extract_audio else "Compressing audio"
    print(f"{label} ({plan.quality.sample_rate} Hz mono, {plan.quality.bitrate_kbps} kbps)...")

    result = compress_in_background(source, plan.quality, ctx)
    ctx.check()

    if result.compressed_size <= profile.direct_size_bytes:
        return [_whole_file_chunk(result.data, result.file_name, result.mime_type, result.duration_seconds)]

    print(f"⚠ Compressed file ({result.compressed_size / (1024 * 1024):.1f} MB) still exceeds "
          f"the {profile.name} limit, splitting by size...")
    ctx.report("chunking", 0.0)
    chunks = chunk_bytes(
        result.data,
        result.file_name,
        result.mime_type,
        plan.max_chunk_bytes or profile.max_chunk_bytes,
        bitrate_kbps=result.bitrate_kbps,
        duration=result.duration_seconds or duration,
    )
    ctx.report("chunking", 1.0)
    return chunks


def prepare_chunks(
    source: MediaSource,
    probed: ProbeResult,
    plan: ProcessingPlan,
    ctx: JobContext,
    engine: Optional[TranscodeEngine] = None,
) -> tuple[ProcessingPlan, list[Chunk]]:
    """
    Execute a plan's preparation step.

    Returns:
        (plan actually executed, chunks). The plan differs from the input
        when temporal chunking failed or produced chunks above the upload
        limit and the fallback ran instead.
    """
    ctx.check()
    duration = probed.duration_seconds

    if plan.kind is PlanKind.DIRECT:
        print("Sending file as-is (no compression, no chunking)")
        return plan, [_whole_file_chunk(source.path.read_bytes(), source.file_name, source.mime_type, duration)]

    if plan.kind is PlanKind.TEMPORAL_CHUNK:
        engine = engine or get_engine()
        try:
            chunks = chunk_temporally(
                source,
                duration,
                engine,
                chunk_minutes=plan.chunk_minutes,
                overlap_seconds=plan.overlap_seconds,
                ctx=ctx,
            )
            limit = get_profile(plan.provider).upload_limit_bytes
            oversized = [c.index + 1 for c in chunks if c.size_bytes > limit]
            if not oversized:
                return plan, chunks
            print(f"⚠ Chunk(s) {oversized} exceed the {plan.provider} upload limit "
                  f"({limit / (1024 * 1024):.0f} MB). Falling back to full re-encode...")
            plan = fallback_plan(plan)
        except TranscodeError as e:
            print(f"⚠ Temporal chunking failed ({e}). Falling back to full re-encode...")
            plan = fallback_plan(plan)

    return plan, _compress_and_split(source, plan, duration, ctx)


def assemble(
    chunks: list[Chunk],
    fragments: list[TranscriptFragment],
    plan: ProcessingPlan,
) -> FinalTranscript:
    """
    Shift every fragment onto the global timeline and merge them in chunk order.

    Raises:
        EmptyResult: If a chunk has no fragment or the merged text is blank
    """
    by_index = {f.index: f for f in fragments}
    ordered_chunks = sorted(chunks, key=lambda c: c.index)
    missing = [c.index for c in ordered_chunks if c.index not in by_index]
    if missing:
        raise EmptyResult(f"No transcription for chunk(s) {missing}")

    texts = []
    for chunk in ordered_chunks:
        fragment = by_index[chunk.index]
        texts.append(normalize_timestamps(fragment.text, chunk.offset_seconds / 60))

    approximate = any(not c.is_timed for c in ordered_chunks)
    trims: list[OverlapTrim] = []
    if plan.kind is PlanKind.TEMPORAL_CHUNK and len(texts) > 1:
        text = resolve_overlaps(texts, max_gap_seconds=plan.overlap_seconds, trims=trims)
    else:
        # Byte-split and single chunks share no audio, nothing to dedupe
        text = FRAGMENT_SEPARATOR.join(t.strip() for t in texts if t.strip())

    if not text.strip():
        raise EmptyResult("The merged transcript is empty")

    return FinalTranscript(
        text=text,
        provider=plan.provider,
        plan=plan,
        fragments=tuple(by_index[c.index] for c in ordered_chunks),
        trims=tuple(trims),
        approximate_timestamps=approximate,
    )


def run_job(
    path: Path,
    provider: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    token: Optional[CancellationToken] = None,
    transcriber=None,
    engine: Optional[TranscodeEngine] = None,
    out_dir: Optional[Path] = None,
    force: bool = False,
    ctx: Optional[JobContext] = None,
) -> JobOutcome:
    """
    Transcribe a recording of any length into one ordered, deduplicated transcript.

    Completed stages are stored under ``out_dir``; resubmitting the same file
    with the same provider resumes from the last completed stage.

    Args:
        path: Audio or video file
        provider: "groq" or "gemini" (default: Config.PROVIDER)
        on_progress: ``(stage, fraction)`` callback
        token: Cancellation token shared with the caller
        transcriber: Provider client override (default: built from config)
        engine: Transcoding engine override (default: process-wide engine)
        out_dir: Job store root (default: Config.OUT_DIR)
        force: Ignore stored stage outputs and start from scratch
        ctx: Job context to use instead of building one

    Returns:
        JobOutcome with status DONE and the transcript, or status CANCELLED

    Raises:
        PipelineError: On any fatal error, after resetting the job to NOT_STARTED
    """
    provider = (provider or Config.PROVIDER).lower()
    profile = get_profile(provider)
    ctx = ctx or JobContext(on_progress=on_progress, token=token)
    ctx.state = JobState.RUNNING
    ctx.error = None

    source = MediaSource.from_path(Path(path))
    store = JobStore(out_dir or Config.OUT_DIR, job_id_for(source, provider))

    try:
        # STEP 0: Reuse a finished transcript
        stored_plan = None if force else store.load_plan()
        cached_text = None if force else store.load_transcript()
        if cached_text is not None and stored_plan is not None:
            print(f"✓ Using cached transcript for {source.file_name}")
            ctx.state = JobState.DONE
            return JobOutcome(
                status=JobState.DONE,
                transcript=FinalTranscript(
                    text=cached_text.rstrip(),
                    provider=provider,
                    plan=ProcessingPlan.from_dict(stored_plan["plan"]),
                ),
                job_dir=store.dir,
            )

        # STEP 1-3: Probe, plan and prepare chunks (or reuse stored chunks)
        chunks = None if force or stored_plan is None else store.load_chunks()
        if chunks:
            plan = ProcessingPlan.from_dict(stored_plan["plan"])
            print(f"✓ Resuming {source.file_name}: {len(chunks)} prepared chunk(s) found")
        else:
            ctx.check()
            ctx.report("probing", 0.0)
            probed = probe(source)
            source = replace(source, duration_seconds=probed.duration_seconds)
            ctx.report("probing", 1.0)
            print(f"Duration: {probed.duration_seconds / 60:.1f} min, "
                  f"{source.size_bytes / (1024 * 1024):.1f} MB, "
                  f"{'container' if probed.is_container_format else 'simple'} format")

            plan = select_plan(
                provider,
                source.size_bytes,
                probed.duration_seconds / 60,
                probed.is_container_format,
                source.is_video,
            )
            print(f"Plan: {plan.kind.value} ({plan.reason})")
            store.save_plan(plan.to_dict(), probed.duration_seconds, probed.is_container_format)

            plan, chunks = prepare_chunks(source, probed, plan, ctx, engine)
            ctx.check()
            store.save_plan(plan.to_dict(), probed.duration_seconds, probed.is_container_format)
            store.clear_fragments()
            store.save_chunks(chunks)

        # STEP 4: Transcribe what is not stored yet
        done = {} if force else store.load_fragments()
        done = {i: f for i, f in done.items() if any(c.index == i for c in chunks)}
        remaining = [c for c in chunks if c.index not in done]
        if done:
            print(f"✓ {len(done)} of {len(chunks)} chunk(s) already transcribed")

        if remaining and transcriber is None:
            Config.validate(provider)
            transcriber = get_transcriber(provider, token=ctx.token)

        new_fragments = dispatch(
            transcriber,
            remaining,
            profile,
            ctx,
            on_fragment=store.save_fragment,
            already_done=len(done),
        )
        ctx.check()

        # STEP 5: Normalize timestamps and remove overlap
        ctx.report("merging", 0.0)
        final = assemble(chunks, list(done.values()) + new_fragments, plan)
        ctx.report("merging", 1.0)

        write_txt(final, store.transcript_path)
        write_json(final, store.json_path)
        store.clear_intermediate()

        if final.approximate_timestamps:
            print("⚠ Timestamps after the first chunk are approximate (split by size)")
        print(f"✓ Transcription complete: {len(final.fragments)} fragment(s), "
              f"{len(final.trims)} overlap trim(s)")
        ctx.state = JobState.DONE
        return JobOutcome(status=JobState.DONE, transcript=final, job_dir=store.dir)

    except JobCancelled:
        print("Transcription cancelled.")
        ctx.state = JobState.CANCELLED
        return JobOutcome(status=JobState.CANCELLED, job_dir=store.dir)
    except PipelineError as e:
        ctx.state = JobState.NOT_STARTED
        ctx.error = e.user_message
        print(f"✗ {e.user_message} ({e})")
        raise
    except Exception as e:
        ctx.state = JobState.NOT_STARTED
        ctx.error = str(e)
        raise
