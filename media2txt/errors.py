"""Error kinds raised by the pipeline stages."""

from typing import Optional


class PipelineError(Exception):
    """Base class for fatal job errors.

    ``user_message`` is the single human-readable line shown to the user.
    """

    user_message = "Processing failed."

    def __init__(self, message: str = "", user_message: str = ""):
        super().__init__(message or user_message or self.user_message)
        if user_message:
            self.user_message = user_message


class DecodeError(PipelineError):
    """Source is corrupt or uses an unsupported codec. Never retried."""
    user_message = "The file could not be decoded. It may be corrupt or use an unsupported codec."


class TranscodeError(PipelineError):
    """The external transcoding engine exited with a non-zero status."""
    user_message = "Splitting the recording failed."

    def __init__(self, message: str = "", returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class TranscriptionError(PipelineError):
    """Remote endpoint returned a non-success response not covered below."""
    user_message = "The transcription service returned an error."


class AuthError(TranscriptionError):
    user_message = "Invalid API key. Check the key for the selected provider."


class PayloadTooLarge(TranscriptionError):
    user_message = "A chunk was too large for the transcription provider."


class RateLimited(TranscriptionError):
    user_message = "The provider's rate limit was reached. Wait a moment and try again."


class TranscriptionTimeout(TranscriptionError):
    user_message = "Transcription took too long (timeout). Try a shorter or compressed file."


class EmptyResult(PipelineError):
    user_message = "The transcription came back empty."


class JobCancelled(Exception):
    """Raised inside stages when the job's cancellation token is set.

    Not a failure: the coordinator turns it into a cancelled outcome.
    """
