"""
Audio Capture.

Handles:
- Microphone / loopback stream capture (sounddevice)
- Conversion of each block into a timestamped AudioChunk
- Delivery of chunks to a consumer callback as they arrive
"""

from __future__ import annotations

import time
import threading
from typing import Optional, Callable
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from chatguard.core.contracts import AudioChunk

try:
    import sounddevice as sd
except (ImportError, OSError):
    sd = None
    logger.warning("sounddevice not available, audio capture disabled")


ChunkHandler = Callable[[AudioChunk], None]


class AudioSampler:
    """
    Live audio capture producing 16-bit PCM chunks.

    Guarantees:
    - Chunk timestamps never decrease within a session
    - The consumer callback never runs under the sampler's lock
    - A missing device is reported by start() returning False
    """

    def __init__(
        self,
        on_chunk: Optional[ChunkHandler] = None,
        sample_rate: int = 16000,
        channels: int = 1,
        block_ms: int = 250,
        device_index: Optional[int] = None,
    ):
        """
        Initialize audio sampler.

        Args:
            on_chunk: Receives every captured chunk
            sample_rate: Capture rate in Hz
            channels: Number of channels
            block_ms: Duration of one chunk in milliseconds
            device_index: Input device (None for the default device)
        """
        self.on_chunk = on_chunk
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_ms = block_ms
        self.device_index = device_index

        self._stream = None
        self._is_running = False
        self._lock = threading.Lock()
        self._last_timestamp_ms = 0.0
        self._chunks_captured = 0

    @property
    def block_size(self) -> int:
        return max(1, int(self.sample_rate * self.block_ms / 1000))

    def start(self) -> bool:
        """
        Start audio capture.

        Returns:
            True if started successfully
        """
        if sd is None:
            logger.error("sounddevice not available")
            return False

        if self._is_running:
            return True

        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                blocksize=self.block_size,
                device=self.device_index,
                dtype="int16",
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            logger.error(f"Failed to start audio capture: {e}")
            self._stream = None
            return False

        with self._lock:
            self._last_timestamp_ms = 0.0
        self._is_running = True
        logger.info(
            f"Audio capture started: {self.sample_rate}Hz, {self.channels}ch, "
            f"{self.block_ms}ms blocks"
        )
        return True

    def stop(self):
        """Stop audio capture."""
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        self._is_running = False
        logger.info("Audio capture stopped")

    def _audio_callback(self, indata: NDArray[np.int16], frames: int, time_info, status):
        """Callback for the sounddevice stream."""
        if status:
            logger.warning(f"Audio stream status: {status}")
        self.feed(indata[:frames].tobytes())

    def feed(self, data: bytes, timestamp_ms: Optional[float] = None) -> AudioChunk:
        """
        Wrap raw PCM bytes into a chunk and deliver it.

        Used by the stream callback and by sources that push audio in
        from elsewhere (a loopback bridge, a recorded file).
        """
        now = time.time() * 1000 if timestamp_ms is None else timestamp_ms
        with self._lock:
            ts = max(now, self._last_timestamp_ms)
            self._last_timestamp_ms = ts
            self._chunks_captured += 1

        chunk = AudioChunk(data=bytes(data), timestamp_ms=ts)
        if self.on_chunk is not None:
            self.on_chunk(chunk)
        return chunk

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def chunks_captured(self) -> int:
        with self._lock:
            return self._chunks_captured

    @property
    def latency_ms(self) -> float:
        """Estimated capture latency in milliseconds."""
        if self._stream is not None:
            return float(self._stream.latency * 1000)
        return 0.0
