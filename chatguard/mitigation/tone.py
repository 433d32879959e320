"""
Alert tone playback.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from loguru import logger

try:
    import sounddevice as sd
except (ImportError, OSError):
    sd = None
    logger.warning("sounddevice not available, alert tone disabled")


class AlertTone:
    """Short sine beep with a fade in/out to avoid clicks."""

    def __init__(
        self,
        frequency_hz: float = 880.0,
        duration_ms: int = 200,
        sample_rate: int = 44100,
        volume: float = 0.4,
    ):
        self.frequency_hz = frequency_hz
        self.duration_ms = duration_ms
        self.sample_rate = sample_rate
        self.volume = min(max(volume, 0.0), 1.0)
        self._wave = self._synthesize()

    def _synthesize(self) -> NDArray[np.float32]:
        n = max(1, int(self.sample_rate * self.duration_ms / 1000))
        t = np.arange(n, dtype=np.float32) / self.sample_rate
        wave = np.sin(2 * np.pi * self.frequency_hz * t) * self.volume

        fade = min(n // 2, int(self.sample_rate * 0.01))
        if fade > 0:
            ramp = np.linspace(0.0, 1.0, fade, dtype=np.float32)
            wave[:fade] *= ramp
            wave[-fade:] *= ramp[::-1]
        return wave.astype(np.float32)

    @property
    def samples(self) -> NDArray[np.float32]:
        return self._wave

    def play(self):
        """
        Start playback and return immediately.

        Raises:
            RuntimeError: If no audio output is available
        """
        if sd is None:
            raise RuntimeError("sounddevice not available")
        sd.play(self._wave, self.sample_rate)
