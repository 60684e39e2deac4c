"""
Error taxonomy
Voice turn stage failures, recording and microphone errors.
"""
from typing import Optional


class EchoBaseError(Exception):
    """Base error; `user_message` is the short text shown to the end user."""

    user_message = "Request failed. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class VoiceTurnError(EchoBaseError):
    """Failure of one stage of a voice turn."""

    stage = "turn"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TranscriptionError(VoiceTurnError):
    stage = "transcribing"


class NoSpeechDetected(VoiceTurnError):
    """Blank transcript. A normal outcome: the user should simply try again."""

    stage = "transcribing"
    user_message = "No speech detected. Please try again."


class GenerationError(VoiceTurnError):
    stage = "generating"


class SynthesisError(VoiceTurnError):
    stage = "synthesizing"


class PersistenceError(VoiceTurnError):
    stage = "persisting"
    user_message = "Your conversation could not be saved. Please try again."


class TurnCancelled(VoiceTurnError):
    user_message = "Request cancelled."


class ResourceAccessError(EchoBaseError):
    """Microphone unavailable or denied."""

    user_message = "Microphone unavailable. Please check permissions."


class RecordingInProgressError(ResourceAccessError):
    user_message = "A recording is already in progress."


class RecordingError(EchoBaseError):
    """Invalid recording lifecycle or clip (empty, too large, not started)."""

    user_message = "Recording failed. Please try again."
