"""Writer for TXT format."""

from pathlib import Path

from media2txt.models import FinalTranscript


def write_txt(transcript: FinalTranscript, output_path: Path) -> None:
    """
    Write the merged transcript to a TXT file.

    Text keeps its inline [MM:SS] / [HH:MM:SS] markers on the global timeline.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        f.write(transcript.text.rstrip())
        f.write("\n")
