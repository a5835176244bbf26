"""Job context passed through every pipeline stage.

Holds the cancellation token, the progress callback and the job state, so no
stage keeps pipeline state in module globals.
"""

import threading
from enum import Enum
from typing import Callable, Optional

from media2txt.errors import JobCancelled

ProgressCallback = Callable[[str, float], None]


class CancellationToken:
    """Single cancellation flag shared by all stages of one job."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelled()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""
        return self._event.wait(seconds)


class JobState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


class JobContext:
    """Per-job handle: cancellation, progress reporting and state."""

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.token = token or CancellationToken()
        self.state = JobState.NOT_STARTED
        self.stage: Optional[str] = None
        self.error: Optional[str] = None
        self._on_progress = on_progress
        self._progress: dict[str, float] = {}
        self._lock = threading.Lock()

    def check(self) -> None:
        """Raise JobCancelled if the job was cancelled."""
        self.token.raise_if_cancelled()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def report(self, stage: str, fraction: float) -> None:
        """Report progress for a stage. Never goes backwards within a stage."""
        fraction = max(0.0, min(1.0, fraction))
        with self._lock:
            previous = self._progress.get(stage, 0.0)
            if fraction < previous:
                fraction = previous
            self._progress[stage] = fraction
            self.stage = stage
            # Called under the lock so concurrent reporters can't reorder updates
            if self._on_progress is not None:
                self._on_progress(stage, fraction)

    def progress(self, stage: str) -> float:
        with self._lock:
            return self._progress.get(stage, 0.0)


class ProgressCounter:
    """Thread-safe completed-chunk counter that reports through the job context."""

    def __init__(self, ctx: JobContext, stage: str, total: int, done: int = 0):
        self._ctx = ctx
        self._stage = stage
        self._total = max(1, total)
        self._done = done
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._done += 1
            done = self._done
        self._ctx.report(self._stage, done / self._total)
        return done

    @property
    def done(self) -> int:
        with self._lock:
            return self._done
