"""Overlap Resolver: removes speech duplicated across chunk boundaries.

Consecutive temporal chunks share ``overlap_seconds`` of audio, so the head
of a fragment usually repeats the tail of the previous one. The comparison
is a text-similarity heuristic over timestamped segments, not exact dedup.

Tuning constants:
    WINDOW_SEGMENTS     segments compared on each side of a boundary
    SIMILARITY_THRESHOLD score a pair must exceed to count as a duplicate
    MIN_SEGMENT_CHARS   both normalized texts must be longer than this

Ambiguous matches are kept rather than trimmed: a pair must pass the
threshold, the length floor and, when ``max_gap_seconds`` is given, sit
within that many seconds of each other on the global timeline. Every
accepted trim is printed and returned as an OverlapTrim record.
"""

import re
import string
from typing import Optional, Sequence

from media2txt.models import OverlapTrim, Segment
from media2txt.timestamps import TIMESTAMP_PATTERN, parse_timestamp

WINDOW_SEGMENTS = 5
SIMILARITY_THRESHOLD = 0.85
MIN_SEGMENT_CHARS = 20

FRAGMENT_SEPARATOR = "\n\n"

_PUNCTUATION = re.compile(f"[{re.escape(string.punctuation)}¿¡«»“”‘’…]")
_WHITESPACE = re.compile(r"\s+")


def extract_segments(text: str) -> list[Segment]:
    """Split text into segments: each marker plus the text up to the next marker."""
    matches = list(TIMESTAMP_PATTERN.finditer(text))
    segments = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        segments.append(Segment(
            timestamp=match.group(0),
            content=text[match.end():end].strip(),
            start=match.start(),
            end=end,
        ))
    return segments


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def similarity(a: str, b: str) -> float:
    """
    Similarity of two normalized texts in [0, 1].

    Containment ratio (shorter/longer length) when one text contains the
    other, otherwise the share of word positions holding the same word.
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return min(len(a), len(b)) / max(len(a), len(b))

    words_a, words_b = a.split(), b.split()
    matches = sum(1 for x, y in zip(words_a, words_b) if x == y)
    return matches / max(len(words_a), len(words_b))


def _within_gap(prev: Segment, cur: Segment, max_gap_seconds: Optional[float]) -> bool:
    if max_gap_seconds is None:
        return True
    prev_seconds = parse_timestamp(prev.timestamp)
    cur_seconds = parse_timestamp(cur.timestamp)
    if prev_seconds is None or cur_seconds is None:
        return True
    return abs(cur_seconds - prev_seconds) <= max_gap_seconds


def find_overlap(
    previous: str,
    current: str,
    window: int = WINDOW_SEGMENTS,
    threshold: float = SIMILARITY_THRESHOLD,
    min_chars: int = MIN_SEGMENT_CHARS,
    max_gap_seconds: Optional[float] = None,
) -> Optional[tuple[Segment, Segment, float]]:
    """
    Find the duplicated segment at the head of ``current``.

    Returns:
        (previous_segment, current_segment, score) for the latest matching
        segment among the first ``window`` of ``current``, or None
    """
    tail = extract_segments(previous)[-window:]
    head = extract_segments(current)[:window]
    if not tail or not head:
        return None

    tail_norm = [normalize_text(s.content) for s in tail]
    best = None
    for cur in head:
        cur_norm = normalize_text(cur.content)
        if len(cur_norm) <= min_chars:
            continue
        for prev, prev_norm in zip(tail, tail_norm):
            if len(prev_norm) <= min_chars:
                continue
            score = similarity(prev_norm, cur_norm)
            if score > threshold and _within_gap(prev, cur, max_gap_seconds):
                # Later head segments win: everything before them is overlap too
                if best is None or cur.end > best[1].end or (cur.end == best[1].end and score > best[2]):
                    best = (prev, cur, score)
    return best


def resolve_overlaps(
    fragments: Sequence[str],
    window: int = WINDOW_SEGMENTS,
    threshold: float = SIMILARITY_THRESHOLD,
    min_chars: int = MIN_SEGMENT_CHARS,
    max_gap_seconds: Optional[float] = None,
    trims: Optional[list[OverlapTrim]] = None,
) -> str:
    """
    Concatenate ordered, timestamp-normalized fragment texts without boundary duplicates.

    For each consecutive pair, everything in the later fragment up to and
    including its matched segment is dropped.

    Args:
        fragments: Fragment texts in chunk order
        window: Segments compared on each side of a boundary
        threshold: Similarity a pair must exceed
        min_chars: Minimum normalized length of both compared texts
        max_gap_seconds: Largest timestamp distance allowed between a matched pair
        trims: List that receives an OverlapTrim per accepted trim

    Returns:
        The deduplicated transcript text
    """
    if not fragments:
        return ""
    if len(fragments) == 1:
        return fragments[0]

    kept = [fragments[0]]
    for index in range(1, len(fragments)):
        previous, current = fragments[index - 1], fragments[index]
        match = find_overlap(previous, current, window, threshold, min_chars, max_gap_seconds)
        if match is not None:
            prev_seg, cur_seg, score = match
            current_kept = current[cur_seg.end:].lstrip()
            print(f"  ✓ Trimmed overlap at start of fragment {index + 1}: "
                  f"{cur_seg.timestamp} matched {prev_seg.timestamp} (score {score:.2f}, "
                  f"{cur_seg.end} chars removed)")
            if trims is not None:
                trims.append(OverlapTrim(
                    fragment_index=index,
                    previous_segment=f"{prev_seg.timestamp} {prev_seg.content}",
                    matched_segment=f"{cur_seg.timestamp} {cur_seg.content}",
                    score=score,
                    removed_chars=cur_seg.end,
                ))
            current = current_kept
        if current.strip():
            kept.append(current.strip())

    return FRAGMENT_SEPARATOR.join(part.strip() for part in kept if part.strip())
