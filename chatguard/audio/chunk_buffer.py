"""
Debounced Audio Chunk Buffer.

Coalesces bursts of audio chunks into one recognition call:
- Every appended chunk restarts a quiet-window timer
- When the window elapses with no new chunk, the buffer is flushed
- An explicit flush() fires immediately and cancels the pending timer
- A batch that grows past the byte cap is discarded as one unit: once
  over, further chunks of the same burst are dropped until the quiet
  window or an explicit flush closes the batch
"""

from __future__ import annotations

import threading
from typing import Optional, Callable, List
from loguru import logger

from chatguard.core.contracts import AudioChunk
from chatguard.core.errors import BufferOverflowError


TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]
FlushHandler = Callable[[bytes], None]


class ChunkBuffer:
    """
    Per-session aggregation buffer with debounce semantics.

    This is debounced batching, not fixed-interval batching: a steady
    stream of chunks with no gap produces a single flush once it stops.
    """

    def __init__(
        self,
        on_flush: FlushHandler,
        flush_window_s: float = 2.5,
        max_bytes: int = 10 * 1024 * 1024,
        timer_factory: Optional[TimerFactory] = None,
        name: str = "audio",
    ):
        """
        Initialize chunk buffer.

        Args:
            on_flush: Receives the concatenated bytes of one flush
            flush_window_s: Quiet period that triggers a flush
            max_bytes: Cap on the buffered byte total
            timer_factory: Creates the debounce timer (threading.Timer by default)
            name: Label used in log messages
        """
        self.on_flush = on_flush
        self.flush_window_s = flush_window_s
        self.max_bytes = max_bytes
        self.name = name
        self._timer_factory = timer_factory or threading.Timer

        self._lock = threading.Lock()
        self._chunks: List[AudioChunk] = []
        self._total_bytes = 0
        # Set once the current batch crossed max_bytes, cleared when it closes
        self._overflowed = False
        self._dropped_bytes = 0
        self._timer: Optional[threading.Timer] = None
        # Bumped whenever the pending timer is superseded
        self._generation = 0

        # Stats
        self.flush_count = 0
        self.overflow_count = 0

    def append(self, chunk: AudioChunk):
        """Add a chunk and restart the quiet-window timer."""
        with self._lock:
            if self._overflowed:
                self._dropped_bytes += chunk.size
                self._restart_timer_locked()
                return

            self._chunks.append(chunk)
            self._total_bytes += chunk.size

            if self._total_bytes > self.max_bytes:
                error = BufferOverflowError(self._total_bytes, self.max_bytes)
                self._overflowed = True
                self._dropped_bytes = self._total_bytes
                self._chunks = []
                self._total_bytes = 0
                self.overflow_count += 1
                logger.warning(f"[{self.name}] {error}, batch discarded")

            self._restart_timer_locked()

    def flush(self) -> Optional[bytes]:
        """
        Flush now, cancelling the pending timer.

        Returns:
            The bytes handed to on_flush, or None if nothing was flushed
        """
        with self._lock:
            self._cancel_timer_locked()
            chunks = self._chunks
            overflowed = self._overflowed
            dropped = self._dropped_bytes
            self._discard_locked()

        if overflowed:
            logger.warning(f"[{self.name}] overflowed batch closed, {dropped} bytes dropped")
            return None

        if not chunks:
            return None

        # sorted() is stable: equal timestamps keep arrival order
        ordered = sorted(chunks, key=lambda c: c.timestamp_ms)
        merged = b"".join(c.data for c in ordered)
        self.flush_count += 1
        logger.debug(f"[{self.name}] flush: {len(ordered)} chunks, {len(merged)} bytes")

        self.on_flush(merged)
        return merged

    def clear(self):
        """Drop buffered chunks and cancel the pending timer."""
        with self._lock:
            self._discard_locked()

    def _on_timer(self, generation: int):
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        try:
            self.flush()
        except Exception:
            logger.exception(f"[{self.name}] flush handler failed")

    def _restart_timer_locked(self):
        self._cancel_timer_locked()
        generation = self._generation
        timer = self._timer_factory(self.flush_window_s, lambda: self._on_timer(generation))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer_locked(self):
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _discard_locked(self):
        self._cancel_timer_locked()
        self._chunks = []
        self._total_bytes = 0
        self._overflowed = False
        self._dropped_bytes = 0

    @property
    def is_overflowed(self) -> bool:
        with self._lock:
            return self._overflowed

    @property
    def pending_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    @property
    def pending_chunks(self) -> int:
        with self._lock:
            return len(self._chunks)

    @property
    def has_pending_timer(self) -> bool:
        with self._lock:
            return self._timer is not None
