"""Handle to the external transcoding engine (ffmpeg) and its scratch filesystem.

One engine is acquired per process. Every write/run/read/delete sequence
must happen inside ``session()``, which serializes access to the shared
scratch directory.
"""

import shutil
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from media2txt.config import Config
from media2txt.errors import TranscodeError

_engine: Optional["TranscodeEngine"] = None
_engine_lock = threading.Lock()


class TranscodeEngine:
    """ffmpeg plus a private working directory that stands in for its filesystem."""

    def __init__(self, binary: Optional[str] = None, workdir: Optional[Path] = None):
        self.binary = binary or Config.FFMPEG_BINARY
        if workdir is None:
            workdir = Path(tempfile.mkdtemp(prefix="media2txt-ffmpeg-"))
        self.workdir = Path(workdir)
        self.workdir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.last_stderr = ""

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    @contextmanager
    def session(self):
        """Hold exclusive use of the engine for a sequence of operations."""
        with self._lock:
            yield self

    def _resolve(self, name: str) -> Path:
        # Plain file names only, so nothing escapes the working directory
        return self.workdir / Path(name).name

    def write_file(self, name: str, data: bytes) -> None:
        with self._lock:
            self._resolve(name).write_bytes(data)

    def copy_in(self, name: str, source: Path) -> None:
        with self._lock:
            shutil.copyfile(source, self._resolve(name))

    def read_file(self, name: str) -> bytes:
        with self._lock:
            return self._resolve(name).read_bytes()

    def delete_file(self, name: str) -> None:
        with self._lock:
            self._resolve(name).unlink(missing_ok=True)

    def exec(self, args: list[str], timeout: Optional[float] = None) -> int:
        """
        Run ffmpeg with an explicit argument list inside the working directory.

        Args:
            args: Arguments after the binary name (e.g. ["-i", "input.m4a", ...])
            timeout: Seconds before the run is killed

        Returns:
            Process exit code

        Raises:
            TranscodeError: If the binary is missing or the run times out
        """
        cmd = [self.binary, "-hide_banner", "-loglevel", "error", *args]
        with self._lock:
            try:
                result = subprocess.run(
                    cmd,
                    cwd=self.workdir,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                )
            except FileNotFoundError as e:
                raise TranscodeError(f"ffmpeg not found ({self.binary})") from e
            except subprocess.TimeoutExpired as e:
                raise TranscodeError(f"ffmpeg timed out after {timeout}s") from e

        if result.returncode != 0:
            self.last_stderr = result.stderr
            print(f"  ⚠ ffmpeg exited with {result.returncode}: {result.stderr.strip()[-300:]}")
        return result.returncode

    def close(self) -> None:
        with self._lock:
            shutil.rmtree(self.workdir, ignore_errors=True)


def get_engine() -> TranscodeEngine:
    """Acquire the process-wide engine, creating it on first use."""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = TranscodeEngine()
        return _engine
