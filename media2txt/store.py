"""On-disk job store so an interrupted job resumes from its last completed stage."""

import hashlib
import json
import shutil
from pathlib import Path
from typing import Optional

from media2txt.models import Chunk, MediaSource, TranscriptFragment


def job_id_for(source: MediaSource, provider: str) -> str:
    """Stable id from the source bytes and the provider."""
    digest = hashlib.sha256()
    with open(source.path, "rb") as f:
        for block in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(block)
    return f"{digest.hexdigest()[:16]}-{provider}"


class JobStore:
    """
    Stage outputs for one job, stored under ``root / job_id``.

    Layout:
        plan.json                 the chosen processing plan
        chunks.json               chunk metadata (payloads in chunks/)
        chunks/chunk_NNN.<ext>    prepared chunk payloads
        fragments/NNN.json        one transcribed fragment per chunk
        transcript.txt            final transcript
    """

    def __init__(self, root: Path, job_id: str):
        self.dir = Path(root) / job_id
        self.job_id = job_id

    @property
    def transcript_path(self) -> Path:
        return self.dir / "transcript.txt"

    @property
    def json_path(self) -> Path:
        return self.dir / "transcript.json"

    def ensure(self) -> None:
        (self.dir / "chunks").mkdir(parents=True, exist_ok=True)
        (self.dir / "fragments").mkdir(parents=True, exist_ok=True)

    # Plan

    def save_plan(self, plan_dict: dict, duration: float, is_container: bool) -> None:
        self.ensure()
        data = {"plan": plan_dict, "duration_seconds": duration, "is_container_format": is_container}
        with open(self.dir / "plan.json", "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def load_plan(self) -> Optional[dict]:
        path = self.dir / "plan.json"
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    # Chunks

    def save_chunks(self, chunks: list[Chunk]) -> None:
        """Persist prepared chunks; the manifest is written last so it marks completion."""
        self.ensure()
        manifest = []
        for chunk in chunks:
            payload_name = f"chunk_{chunk.index:03d}.{chunk.format}"
            (self.dir / "chunks" / payload_name).write_bytes(chunk.data)
            manifest.append({
                "index": chunk.index,
                "payload": payload_name,
                "file_name": chunk.file_name,
                "mime_type": chunk.mime_type,
                "format": chunk.format,
                "start_time": chunk.start_time,
                "end_time": chunk.end_time,
                "estimated_offset": chunk.estimated_offset,
            })
        with open(self.dir / "chunks.json", "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2)

    def load_chunks(self) -> Optional[list[Chunk]]:
        path = self.dir / "chunks.json"
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            manifest = json.load(f)

        chunks = []
        for item in manifest:
            payload = self.dir / "chunks" / item["payload"]
            if not payload.exists():
                return None
            chunks.append(Chunk(
                index=item["index"],
                data=payload.read_bytes(),
                file_name=item["file_name"],
                mime_type=item["mime_type"],
                format=item["format"],
                start_time=item["start_time"],
                end_time=item["end_time"],
                estimated_offset=item.get("estimated_offset"),
            ))
        return sorted(chunks, key=lambda c: c.index)

    # Fragments

    def save_fragment(self, fragment: TranscriptFragment) -> None:
        self.ensure()
        data = {
            "index": fragment.index,
            "text": fragment.text,
            "segments": fragment.segments,
            "tokens": fragment.tokens,
            "audio_seconds": fragment.audio_seconds,
        }
        path = self.dir / "fragments" / f"{fragment.index:03d}.json"
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp.replace(path)

    def load_fragments(self) -> dict[int, TranscriptFragment]:
        fragments = {}
        folder = self.dir / "fragments"
        if not folder.exists():
            return fragments
        for path in sorted(folder.glob("*.json")):
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            fragments[data["index"]] = TranscriptFragment(
                index=data["index"],
                text=data["text"],
                segments=data.get("segments") or [],
                tokens=data.get("tokens"),
                audio_seconds=data.get("audio_seconds"),
            )
        return fragments

    def clear_fragments(self) -> None:
        """Fragments belong to one chunk set; drop them when chunks are re-prepared."""
        shutil.rmtree(self.dir / "fragments", ignore_errors=True)

    # Final transcript

    def load_transcript(self) -> Optional[str]:
        if not self.transcript_path.exists():
            return None
        with open(self.transcript_path, "r", encoding="utf-8") as f:
            return f.read()

    def clear_intermediate(self) -> None:
        """Drop chunk payloads once the final transcript is written."""
        shutil.rmtree(self.dir / "chunks", ignore_errors=True)
        (self.dir / "chunks.json").unlink(missing_ok=True)
