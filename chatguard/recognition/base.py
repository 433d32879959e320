"""
Base classes for recognition backends.

To add a new backend:
1. Inherit from BaseTextRecognizer or BaseSpeechRecognizer
2. Implement recognize() / transcribe()
3. Register it in recognition/__init__.py

Stub backends return empty output so the pipeline runs end to end on
machines without a model installed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from chatguard.core.contracts import CaptureResult, OCRLine, TranscriptFragment


class BaseTextRecognizer(ABC):
    """Converts an ROI image into ordered text lines (OCR)."""

    def start(self) -> bool:
        """Load models / check binaries. Returns False if unusable."""
        return True

    def stop(self) -> None:
        pass

    @abstractmethod
    def recognize(self, capture: CaptureResult) -> List[OCRLine]:
        """
        Recognize text lines in a capture.

        Lines come in the backend's reading order. Each line's bbox is the
        union of its word boxes, in the capture's coordinate space. An
        image with no text yields an empty list, never an error.

        Raises:
            RecognitionError: If the backend fails
        """
        pass


class BaseSpeechRecognizer(ABC):
    """Converts one aggregated audio buffer into a transcript fragment (STT)."""

    def start(self) -> bool:
        return True

    def stop(self) -> None:
        pass

    @abstractmethod
    def transcribe(self, audio: bytes) -> Optional[TranscriptFragment]:
        """
        Transcribe a buffer of 16-bit PCM audio.

        Returns:
            A fragment, or None if nothing intelligible was said

        Raises:
            RecognitionError: If the backend fails
        """
        pass


class StubTextRecognizer(BaseTextRecognizer):
    """OCR placeholder: never finds text."""

    def __init__(self, **_options):
        pass

    def recognize(self, capture: CaptureResult) -> List[OCRLine]:
        return []


class StubSpeechRecognizer(BaseSpeechRecognizer):
    """STT placeholder: never hears speech."""

    def __init__(self, **_options):
        pass

    def transcribe(self, audio: bytes) -> Optional[TranscriptFragment]:
        return None
