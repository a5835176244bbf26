"""Shared fakes for the transcoding engine and the transcription providers."""

import threading
from contextlib import contextmanager
from pathlib import Path

import pytest

from media2txt.errors import TranscriptionError
from media2txt.models import TranscriptFragment
from media2txt.timestamps import format_timestamp


class FakeEngine:
    """Stands in for ffmpeg: every run writes a small payload named after its window."""

    def __init__(self, fail_on_chunk=None):
        self.fail_on_chunk = fail_on_chunk
        self.calls = []
        self.files = {}
        self.last_stderr = ""

    @contextmanager
    def session(self):
        yield self

    def copy_in(self, name, source):
        self.files[name] = Path(source).read_bytes()

    def write_file(self, name, data):
        self.files[name] = data

    def read_file(self, name):
        return self.files[name]

    def delete_file(self, name):
        self.files.pop(name, None)

    def exec(self, args, timeout=None):
        self.calls.append(list(args))
        output = args[-1]
        if self.fail_on_chunk is not None and output.startswith(f"chunk_{self.fail_on_chunk}."):
            self.last_stderr = "Invalid data found when processing input"
            return 1
        start = args[args.index("-ss") + 1]
        length = args[args.index("-t") + 1]
        self.files[output] = f"{start}+{length}".encode()
        return 0


class SpeechTranscriber:
    """
    Pretends the recording has one distinct sentence every ``every`` seconds.

    Timed chunks get every sentence inside their window, with timestamps
    relative to the chunk start, the way a real recognizer returns them.
    """

    def __init__(self, every=60, fail_on=(), on_call=None):
        self.every = every
        self.fail_on = set(fail_on)
        self.on_call = on_call
        self.calls = []
        self._lock = threading.Lock()

    @staticmethod
    def sentence(n):
        return f"segment {n} says alpha{n} beta{n} gamma{n} delta{n}"

    def transcribe(self, chunk, timeout):
        with self._lock:
            self.calls.append(chunk.index)
        if self.on_call is not None:
            self.on_call(chunk)
        if chunk.index in self.fail_on:
            raise TranscriptionError(f"provider rejected chunk {chunk.index}")

        if chunk.end_time <= chunk.start_time:
            text = f"[00:05] {self.sentence(1000 + chunk.index)}"
            return TranscriptFragment(index=chunk.index, text=text)

        lines = []
        t = 0
        while t < chunk.end_time:
            if t >= chunk.start_time:
                lines.append(f"{format_timestamp(t - chunk.start_time)} {self.sentence(t // self.every)}")
            t += self.every
        return TranscriptFragment(index=chunk.index, text="\n".join(lines), tokens=len(lines))


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def media_file(tmp_path):
    """Factory for small on-disk media files with a given name."""
    def make(name, data=b"\x00fake media payload\x00" * 64):
        path = tmp_path / name
        path.write_bytes(data)
        return path
    return make


@pytest.fixture
def speech():
    """The SpeechTranscriber class, so tests can configure failures and hooks."""
    return SpeechTranscriber


@pytest.fixture
def make_engine():
    """The FakeEngine class, for engines that fail on a given chunk."""
    return FakeEngine
