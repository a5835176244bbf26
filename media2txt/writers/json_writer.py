"""Writer for JSON format."""

import json
from pathlib import Path

from media2txt.models import FinalTranscript


def write_json(transcript: FinalTranscript, output_path: Path) -> None:
    """Write transcript, plan, per-fragment metadata and overlap trims to a JSON file."""
    data = {
        'provider': transcript.provider,
        'plan': transcript.plan.to_dict(),
        'approximate_timestamps': transcript.approximate_timestamps,
        'text': transcript.text,
        'fragments': [
            {
                'index': fragment.index,
                'tokens': fragment.tokens,
                'audio_seconds': fragment.audio_seconds,
                'chars': len(fragment.text),
            }
            for fragment in transcript.fragments
        ],
        'overlap_trims': [
            {
                'fragment_index': trim.fragment_index,
                'previous_segment': trim.previous_segment,
                'matched_segment': trim.matched_segment,
                'score': round(trim.score, 4),
                'removed_chars': trim.removed_chars,
            }
            for trim in transcript.trims
        ],
    }

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
