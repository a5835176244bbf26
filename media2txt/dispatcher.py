"""Transcription Dispatcher: sends chunks to the provider and collects fragments."""

import math
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

from media2txt.config import Config, ProviderProfile
from media2txt.errors import EmptyResult, JobCancelled, RateLimited
from media2txt.job import JobContext, ProgressCounter
from media2txt.models import Chunk, TranscriptFragment

STAGE = "transcribing"

FragmentCallback = Callable[[TranscriptFragment], None]


def request_timeout(size_bytes: int, profile: ProviderProfile) -> float:
    """
    Size-proportional request timeout.

    Base timeout plus one increment for every started step above the
    baseline size (e.g. Groq: 120s + 30s per 5 MB above 5 MB).
    """
    size_mb = size_bytes / (1024 * 1024)
    steps = max(0, math.ceil((size_mb - profile.timeout_step_mb) / profile.timeout_step_mb))
    return profile.timeout_base + steps * profile.timeout_increment


def transcribe_chunk(
    transcriber,
    chunk: Chunk,
    profile: ProviderProfile,
    ctx: JobContext,
    rate_limit_delay: Optional[float] = None,
) -> TranscriptFragment:
    """
    Transcribe one chunk, retrying once after a fixed delay if rate-limited.

    Raises:
        RateLimited: If the retry is rate-limited too
        EmptyResult: If the provider returned blank text
        TranscriptionError: For any other non-success response
    """
    delay = Config.RATE_LIMIT_DELAY if rate_limit_delay is None else rate_limit_delay
    timeout = request_timeout(chunk.size_bytes, profile)

    try:
        fragment = transcriber.transcribe(chunk, timeout)
    except RateLimited:
        print(f"  Rate limit hit on chunk {chunk.index + 1}. Waiting {delay:g} seconds...")
        if ctx.token.wait(delay):
            raise JobCancelled()
        fragment = transcriber.transcribe(chunk, timeout)

    if not fragment.text or not fragment.text.strip():
        raise EmptyResult(f"Chunk {chunk.index + 1} came back empty")
    return fragment


def _dispatch_sequential(transcriber, chunks, profile, ctx, counter, on_fragment, rate_limit_delay):
    fragments = []
    for position, chunk in enumerate(chunks):
        ctx.check()
        if position > 0 and profile.request_delay > 0:
            if ctx.token.wait(profile.request_delay):
                raise JobCancelled()

        fragment = transcribe_chunk(transcriber, chunk, profile, ctx, rate_limit_delay)
        fragments.append(fragment)
        if on_fragment is not None:
            on_fragment(fragment)
        counter.increment()
        print(f"  ✓ Chunk {chunk.index + 1} complete")
        ctx.check()
    return fragments


def _dispatch_parallel(transcriber, chunks, profile, ctx, counter, on_fragment, rate_limit_delay):
    fragments = []
    pending = list(chunks)
    in_flight: dict[Future, Chunk] = {}
    failure: Optional[BaseException] = None

    with ThreadPoolExecutor(max_workers=max(1, profile.max_workers),
                            thread_name_prefix="media2txt-dispatch") as executor:
        while pending or in_flight:
            # Stop scheduling on cancellation or failure; in-flight requests finish
            while pending and len(in_flight) < profile.max_workers and failure is None and not ctx.cancelled:
                chunk = pending.pop(0)
                future = executor.submit(transcribe_chunk, transcriber, chunk, profile, ctx, rate_limit_delay)
                in_flight[future] = chunk

            if not in_flight:
                break

            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                chunk = in_flight.pop(future)
                try:
                    fragment = future.result()
                except Exception as e:
                    if failure is None:
                        failure = e
                    continue
                fragments.append(fragment)
                if on_fragment is not None:
                    on_fragment(fragment)
                counter.increment()
                print(f"  ✓ Chunk {chunk.index + 1} complete")

    if failure is not None:
        raise failure
    ctx.check()
    return fragments


def dispatch(
    transcriber,
    chunks: list[Chunk],
    profile: ProviderProfile,
    ctx: JobContext,
    on_fragment: Optional[FragmentCallback] = None,
    already_done: int = 0,
    rate_limit_delay: Optional[float] = None,
) -> list[TranscriptFragment]:
    """
    Transcribe every chunk and return the fragments sorted by chunk index.

    Dispatch mode comes from the provider profile: "sequential" paces
    requests for rate-limited providers, "parallel" keeps up to
    ``max_workers`` requests in flight.

    Args:
        transcriber: Provider client with ``transcribe(chunk, timeout)``
        chunks: Chunks still to transcribe
        profile: Provider profile (mode, workers, timeouts)
        ctx: Job context for progress and cancellation
        on_fragment: Called once per completed fragment (e.g. to persist it)
        already_done: Chunks completed in an earlier run, for progress
        rate_limit_delay: Override for the fixed rate-limit wait

    Returns:
        Fragments ordered by chunk index

    Raises:
        JobCancelled: If the job was cancelled
        PipelineError: On the first failed chunk; no partial results are returned
    """
    total = len(chunks) + already_done
    counter = ProgressCounter(ctx, STAGE, total, done=already_done)
    ctx.report(STAGE, already_done / max(1, total))

    if not chunks:
        return []

    print(f"Transcribing {len(chunks)} chunk(s) with {profile.name} ({profile.dispatch_mode})...")
    if profile.dispatch_mode == "parallel" and len(chunks) > 1:
        fragments = _dispatch_parallel(transcriber, chunks, profile, ctx, counter, on_fragment, rate_limit_delay)
    else:
        fragments = _dispatch_sequential(transcriber, chunks, profile, ctx, counter, on_fragment, rate_limit_delay)

    fragments.sort(key=lambda f: f.index)
    return fragments
