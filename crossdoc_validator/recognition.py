"""
External collaborators: text recognition and image forensics.

Neither is implemented here. This module only defines the contracts the
engine relies on, plus two trivial implementations:

  - PlainTextRecognizer: the upload already IS text (UTF-8), e.g. OCR output
    exported by another system, or test fixtures.
  - NoOpForensics: never reports anything; the engine must work fully with it.
"""

from __future__ import annotations

from typing import Protocol

from .exceptions import RecognitionFailure
from .models import RecognitionResult, TamperingSignal


class TextRecognizer(Protocol):
    def recognize(self, content: bytes) -> RecognitionResult: ...


class ImageForensics(Protocol):
    def analyze(self, content: bytes) -> TamperingSignal | None: ...


class PlainTextRecognizer:
    """Treat the uploaded bytes as already-recognized UTF-8 text."""

    def __init__(self, confidence: float = 100.0):
        self.confidence = confidence

    def recognize(self, content: bytes) -> RecognitionResult:
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RecognitionFailure(
                "Upload is not UTF-8 text", {"reason": str(e)}
            ) from e
        if not text.strip():
            raise RecognitionFailure("Upload contains no text")
        return RecognitionResult(text=text, confidence=self.confidence)


class NoOpForensics:
    """Image forensics is unavailable: no signal, ever."""

    def analyze(self, content: bytes) -> TamperingSignal | None:
        return None
