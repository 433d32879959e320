"""
Recognition Module.

Provides swappable OCR and STT backends behind two interfaces.

To add a new backend:
1. Implement BaseTextRecognizer or BaseSpeechRecognizer
2. Register it in TEXT_RECOGNIZERS / SPEECH_RECOGNIZERS below
"""

from typing import Dict, Type

from .base import (
    BaseTextRecognizer,
    BaseSpeechRecognizer,
    StubTextRecognizer,
    StubSpeechRecognizer,
)
from .tesseract_ocr import TesseractTextRecognizer
from .speech import GoogleSpeechRecognizer

# Registries of available backends
TEXT_RECOGNIZERS: Dict[str, Type[BaseTextRecognizer]] = {
    "stub": StubTextRecognizer,
    "tesseract": TesseractTextRecognizer,
}

SPEECH_RECOGNIZERS: Dict[str, Type[BaseSpeechRecognizer]] = {
    "stub": StubSpeechRecognizer,
    "google": GoogleSpeechRecognizer,
}


def get_text_recognizer(name: str, **kwargs) -> BaseTextRecognizer:
    """
    Get an OCR backend by name.

    Raises:
        ValueError: If the name is not registered
    """
    if name not in TEXT_RECOGNIZERS:
        available = ", ".join(TEXT_RECOGNIZERS.keys())
        raise ValueError(f"Unknown text recognizer '{name}'. Available: {available}")
    return TEXT_RECOGNIZERS[name](**kwargs)


def get_speech_recognizer(name: str, **kwargs) -> BaseSpeechRecognizer:
    """
    Get an STT backend by name.

    Raises:
        ValueError: If the name is not registered
    """
    if name not in SPEECH_RECOGNIZERS:
        available = ", ".join(SPEECH_RECOGNIZERS.keys())
        raise ValueError(f"Unknown speech recognizer '{name}'. Available: {available}")
    return SPEECH_RECOGNIZERS[name](**kwargs)


__all__ = [
    "BaseTextRecognizer",
    "BaseSpeechRecognizer",
    "StubTextRecognizer",
    "StubSpeechRecognizer",
    "TesseractTextRecognizer",
    "GoogleSpeechRecognizer",
    "get_text_recognizer",
    "get_speech_recognizer",
]
