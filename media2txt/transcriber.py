"""Remote transcription endpoints (Groq Whisper via the OpenAI SDK, Gemini)."""

import tempfile
import time
from pathlib import Path
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from openai import OpenAI
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)

from media2txt.config import Config
from media2txt.errors import (
    AuthError,
    EmptyResult,
    JobCancelled,
    PayloadTooLarge,
    RateLimited,
    TranscriptionError,
    TranscriptionTimeout,
)
from media2txt.job import CancellationToken
from media2txt.models import Chunk, TranscriptFragment
from media2txt.timestamps import format_timestamp

GROQ_API_URL = "https://api.groq.com/openai/v1"

GEMINI_PROMPT = (
    "Transcribe this audio recording accurately in its original language. "
    "Include timestamps in [MM:SS] format for each section or paragraph of speech. "
    "Output only the transcription, no additional commentary."
)

# Gemini file processing: poll until ACTIVE
GEMINI_POLL_ATTEMPTS = 30
GEMINI_POLL_INTERVAL = 2.0


def _response_to_dict(response) -> dict:
    """Normalize an SDK response object to a plain dict."""
    if hasattr(response, "model_dump"):
        return response.model_dump()
    if isinstance(response, dict):
        return response
    return {
        "text": getattr(response, "text", ""),
        "duration": getattr(response, "duration", None),
        "segments": getattr(response, "segments", None) or [],
    }


def segments_to_text(segments: list[dict]) -> str:
    """Render {start, end, text} segments as "[MM:SS] text" lines."""
    lines = []
    for seg in segments:
        text = (seg.get("text") or "").strip()
        if text:
            lines.append(f"{format_timestamp(float(seg.get('start') or 0))} {text}")
    return "\n".join(lines)


class GroqTranscriber:
    """Whisper on Groq's OpenAI-compatible endpoint."""

    name = "groq"

    def __init__(self, api_key: str, model: Optional[str] = None, language: Optional[str] = None):
        if not api_key:
            raise AuthError("Groq API key not configured")
        # SDK retries are disabled; the dispatcher owns the retry policy
        self.client = OpenAI(api_key=api_key, base_url=GROQ_API_URL, max_retries=0)
        self.model = model or Config.GROQ_MODEL
        self.language = language if language is not None else Config.LANGUAGE

    def transcribe(self, chunk: Chunk, timeout: float) -> TranscriptFragment:
        """
        Transcribe one chunk.

        Args:
            chunk: Chunk to send
            timeout: Request timeout in seconds

        Returns:
            TranscriptFragment with "[MM:SS] text" lines when segments are available
        """
        print(f"  [groq] Transcribing {chunk.file_name} ({chunk.size_bytes / (1024 * 1024):.2f} MB, "
              f"timeout {timeout:.0f}s)")
        try:
            response = self.client.audio.transcriptions.create(
                model=self.model,
                file=(chunk.file_name, chunk.data, chunk.mime_type),
                response_format="verbose_json",
                timestamp_granularities=["segment"],
                language=self.language or None,
                timeout=timeout,
            )
        except AuthenticationError as e:
            raise AuthError(f"Groq rejected the API key: {e}") from e
        except PermissionDeniedError as e:
            raise AuthError(f"Groq denied access: {e}") from e
        except RateLimitError as e:
            raise RateLimited(f"Groq rate limit reached: {e}") from e
        except APITimeoutError as e:
            raise TranscriptionTimeout(f"Groq request timed out after {timeout:.0f}s") from e
        except APIStatusError as e:
            if e.status_code == 413:
                raise PayloadTooLarge(f"Chunk {chunk.index} too large for Groq (limit 25 MB)") from e
            raise TranscriptionError(f"Groq API error ({e.status_code}): {e.message}") from e
        except APIConnectionError as e:
            raise TranscriptionError(f"Connection error: {e}") from e

        data = _response_to_dict(response)
        segments = [
            s if isinstance(s, dict) else _response_to_dict(s)
            for s in (data.get("segments") or [])
        ]
        text = segments_to_text(segments) if segments else (data.get("text") or "").strip()

        return TranscriptFragment(
            index=chunk.index,
            text=text,
            segments=[{"start": s.get("start"), "end": s.get("end"), "text": s.get("text")} for s in segments],
            audio_seconds=data.get("duration"),
        )


def _map_google_error(e: google_exceptions.GoogleAPICallError, timeout: float) -> Exception:
    if isinstance(e, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied,
                      google_exceptions.Unauthorized, google_exceptions.Forbidden)):
        return AuthError(f"Gemini rejected the API key: {e.message}")
    if isinstance(e, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return RateLimited(f"Gemini rate limit reached: {e.message}")
    if isinstance(e, google_exceptions.DeadlineExceeded):
        return TranscriptionTimeout(f"Gemini request timed out after {timeout:.0f}s")
    if e.code == 413:
        return PayloadTooLarge(f"Payload too large for Gemini: {e.message}")
    return TranscriptionError(f"Gemini API error ({e.code}): {e.message}")


class GeminiTranscriber:
    """Gemini multimodal transcription through the Files API."""

    name = "gemini"

    def __init__(self, api_key: str, model: Optional[str] = None, token: Optional[CancellationToken] = None):
        if not api_key:
            raise AuthError("Gemini API key not configured")
        genai.configure(api_key=api_key)
        self.model_name = model or Config.GEMINI_MODEL
        self.token = token

    def _upload(self, chunk: Chunk):
        suffix = Path(chunk.file_name).suffix or ".mp3"
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as handle:
            handle.write(chunk.data)
            temp_path = Path(handle.name)
        try:
            return genai.upload_file(
                path=str(temp_path),
                mime_type=chunk.mime_type or "audio/mpeg",
                display_name=chunk.file_name,
            )
        finally:
            temp_path.unlink(missing_ok=True)

    def _pause(self) -> None:
        if self.token is None:
            time.sleep(GEMINI_POLL_INTERVAL)
        elif self.token.wait(GEMINI_POLL_INTERVAL):
            raise JobCancelled()

    def _wait_until_active(self, audio_file, chunk: Chunk):
        for _ in range(GEMINI_POLL_ATTEMPTS):
            state = audio_file.state.name
            if state == "ACTIVE":
                return audio_file
            if state == "FAILED":
                raise TranscriptionError(f"Gemini failed to process {chunk.file_name}")
            self._pause()
            audio_file = genai.get_file(audio_file.name)
        raise TranscriptionTimeout(f"Timed out waiting for Gemini to process {chunk.file_name}")

    def transcribe(self, chunk: Chunk, timeout: float) -> TranscriptFragment:
        """
        Upload a chunk, wait until Gemini has processed it, then transcribe.

        Args:
            chunk: Chunk to send
            timeout: Generation request timeout in seconds

        Returns:
            TranscriptFragment with the model's "[MM:SS]"-marked text
        """
        print(f"  [gemini] Transcribing {chunk.file_name} ({chunk.size_bytes / (1024 * 1024):.2f} MB, "
              f"timeout {timeout:.0f}s)")
        audio_file = None
        try:
            audio_file = self._upload(chunk)
            audio_file = self._wait_until_active(audio_file, chunk)
            model = genai.GenerativeModel(self.model_name)
            response = model.generate_content(
                [audio_file, GEMINI_PROMPT],
                generation_config={"temperature": 0.1, "max_output_tokens": 8192},
                request_options={"timeout": timeout},
            )
            try:
                text = response.text
            except ValueError as e:
                # Raised when the candidate has no text parts (blocked or empty)
                raise EmptyResult(f"Gemini produced no transcription for chunk {chunk.index}") from e

            usage = getattr(response, "usage_metadata", None)
            tokens = getattr(usage, "total_token_count", None) if usage else None
            return TranscriptFragment(index=chunk.index, text=(text or "").strip(), tokens=tokens)
        except google_exceptions.GoogleAPICallError as e:
            raise _map_google_error(e, timeout) from e
        finally:
            if audio_file is not None:
                try:
                    genai.delete_file(audio_file.name)
                except google_exceptions.GoogleAPICallError as e:
                    print(f"  ⚠ Could not delete uploaded file {audio_file.name}: {e}")


def get_transcriber(provider: str, api_key: Optional[str] = None, token: Optional[CancellationToken] = None):
    """Build the transcription client for a provider."""
    provider = provider.lower()
    if api_key is None:
        api_key = Config.api_key_for(provider)
    if provider == "groq":
        return GroqTranscriber(api_key)
    if provider == "gemini":
        return GeminiTranscriber(api_key, token=token)
    raise ValueError(f"Unknown provider '{provider}'")
