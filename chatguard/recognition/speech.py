"""
Speech recognition backend.

Transcribes one aggregated PCM buffer per call using the
speech_recognition package (Google Web Speech API).
"""

from __future__ import annotations

import time
from typing import Optional
import speech_recognition as sr
from loguru import logger

from chatguard.core.contracts import TranscriptFragment
from chatguard.core.errors import RecognitionError
from chatguard.recognition.base import BaseSpeechRecognizer


class GoogleSpeechRecognizer(BaseSpeechRecognizer):
    """
    STT via speech_recognition's Google recognizer.

    Every flushed buffer is a complete utterance window, so results are
    always final fragments.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        sample_width: int = 2,
        language: str = "ko-KR",
    ):
        """
        Args:
            sample_rate: Sample rate of the PCM buffers
            sample_width: Bytes per sample (2 for int16)
            language: BCP-47 language tag passed to the service
        """
        self.sample_rate = sample_rate
        self.sample_width = sample_width
        self.language = language
        self._recognizer = sr.Recognizer()

    def transcribe(self, audio: bytes) -> Optional[TranscriptFragment]:
        if not audio:
            return None

        audio_data = sr.AudioData(audio, self.sample_rate, self.sample_width)
        try:
            text = self._recognizer.recognize_google(audio_data, language=self.language)
        except sr.UnknownValueError:
            logger.debug("Speech unintelligible")
            return None
        except sr.RequestError as e:
            raise RecognitionError(f"Speech recognition service error: {e}") from e

        text = (text or "").strip()
        if not text:
            return None

        logger.info(f"Transcribed: \"{text}\"")
        return TranscriptFragment(text=text, is_final=True, timestamp_ms=time.time() * 1000)
