"""Interactive main entry point for media transcription."""

import argparse
import sys
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from media2txt.config import Config, PROVIDERS
from media2txt.errors import PipelineError
from media2txt.job import CancellationToken, JobState
from media2txt.pipeline import JobOutcome, run_job

STAGE_LABELS = {
    "probing": "Probing",
    "compressing": "Compressing",
    "chunking": "Chunking",
    "transcribing": "Transcribing",
    "merging": "Merging",
}


class ProgressBars:
    """One tqdm bar per pipeline stage, fed by the job's progress callback."""

    def __init__(self):
        self._bars: dict[str, tqdm] = {}

    def __call__(self, stage: str, fraction: float) -> None:
        bar = self._bars.get(stage)
        if bar is None:
            bar = tqdm(total=100, desc=STAGE_LABELS.get(stage, stage), unit="%",
                       bar_format="{desc:<13}{percentage:3.0f}%|{bar}|")
            self._bars[stage] = bar
        target = int(round(fraction * 100))
        if target > bar.n:
            bar.update(target - bar.n)

    def close(self) -> None:
        for bar in self._bars.values():
            bar.close()
        self._bars.clear()


def process_file(path: Path, provider: str, force: bool = False) -> JobOutcome:
    """
    Run one transcription job, cancelling it cleanly on Ctrl+C.

    Args:
        path: Audio or video file
        provider: "groq" or "gemini"
        force: If True, ignore stored stage outputs

    Returns:
        The job outcome
    """
    token = CancellationToken()
    bars = ProgressBars()

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="media2txt-job") as executor:
        future = executor.submit(run_job, path, provider, on_progress=bars, token=token, force=force)
        try:
            while True:
                try:
                    return future.result(timeout=0.5)
                except FutureTimeout:
                    continue
                except KeyboardInterrupt:
                    print("\nCancelling... waiting for in-flight work to stop.")
                    token.cancel()
        finally:
            bars.close()


def _ask_path() -> Optional[Path]:
    raw = input("Please enter the path of the audio or video file to transcribe: ").strip().strip('"')
    return Path(raw).expanduser() if raw else None


def main(argv: Optional[list[str]] = None):
    """Interactive main function."""
    parser = argparse.ArgumentParser(description="Transcribe long audio and video files.")
    parser.add_argument("path", nargs="?", help="Audio or video file (prompted for if omitted)")
    parser.add_argument("--provider", choices=sorted(PROVIDERS), default=Config.PROVIDER,
                        help="Transcription provider (default: %(default)s)")
    parser.add_argument("--force", action="store_true", help="Ignore stored progress for this file")
    args = parser.parse_args(argv)

    print("=" * 60)
    print("Media Transcriber")
    print("=" * 60)
    print()

    # Validate configuration
    try:
        Config.validate(args.provider)
    except ValueError as e:
        print(f"✗ Configuration Error: {str(e)}", file=sys.stderr)
        print("\nPlease create a .env file with your API key.")
        print("See .env.example for reference.")
        sys.exit(1)

    Config.OUT_DIR.mkdir(parents=True, exist_ok=True)

    interactive = args.path is None
    path = Path(args.path) if args.path else None

    while True:
        if path is None:
            print()
            print("-" * 60)
            path = _ask_path()
            if path is None:
                print("No file provided. Exiting...")
                break

        if not path.is_file():
            print(f"✗ File not found: {path}")
        else:
            print()
            print(f"Processing {path.name} with {args.provider}...")
            print()
            try:
                outcome = process_file(path, args.provider, force=args.force)
                print()
                print("=" * 60)
                if outcome.status is JobState.DONE:
                    print("✓ Transcription complete!")
                    print(f"Files saved to: {outcome.job_dir}")
                else:
                    print("Transcription cancelled. Run again to resume where it stopped.")
                print("=" * 60)
            except PipelineError as e:
                print()
                print("=" * 60)
                print(f"✗ Failed to transcribe: {e.user_message}")
                print("=" * 60)
            except Exception as e:
                print()
                print("=" * 60)
                print(f"✗ Failed to transcribe: {str(e)}")
                print("=" * 60)

        if not interactive:
            break

        print()
        another = input("Would you like to transcribe another file? (y/n): ").strip().lower()
        if another not in ('y', 'yes'):
            break
        path = None

    print()
    print("Thank you for using Media Transcriber!")


if __name__ == "__main__":
    main()
