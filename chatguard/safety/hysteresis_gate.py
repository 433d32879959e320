"""
Hysteresis Gate.

Converts a stream of scores into a "mitigate now" latch with separate
activate (ON) and deactivate (OFF) thresholds, ON > OFF:
- inactive and score >= ON   -> active
- active and score < OFF     -> inactive
- anything else              -> unchanged

The gap between the thresholds keeps score jitter around a single value
from toggling the mask every tick.
"""

from __future__ import annotations

import threading
from typing import Optional
from loguru import logger

from chatguard.core.contracts import GateState, StreamKind


class HysteresisGate:
    """
    Per-stream hysteresis latch.

    update() is atomic per gate. Only the owning stream writes to it.
    """

    def __init__(
        self,
        on_threshold: float = 0.7,
        off_threshold: float = 0.4,
        stream: StreamKind = StreamKind.SCREEN,
    ):
        """
        Args:
            on_threshold: Score at or above which the gate activates
            off_threshold: Score below which the gate deactivates
            stream: Owning stream (for logs)

        Raises:
            ValueError: If on_threshold <= off_threshold
        """
        if on_threshold <= off_threshold:
            raise ValueError(
                f"on_threshold ({on_threshold}) must exceed off_threshold ({off_threshold})"
            )
        self.on_threshold = on_threshold
        self.off_threshold = off_threshold
        self.stream = stream

        self._lock = threading.Lock()
        self._state = GateState()

    def update(self, score: Optional[float]) -> bool:
        """
        Feed one score.

        Args:
            score: Latest score in [0, 1]; None (nothing observed) counts as 0

        Returns:
            Whether the gate is active after this update
        """
        value = 0.0 if score is None else float(score)

        with self._lock:
            was_active = self._state.active
            if not was_active and value >= self.on_threshold:
                self._state.active = True
            elif was_active and value < self.off_threshold:
                self._state.active = False
            self._state.last_score = value
            active = self._state.active

        if active != was_active:
            logger.info(
                f"[{self.stream.value}] gate {'ON' if active else 'OFF'} at score {value:.2f}"
            )

        return active

    def reset(self):
        """Force the gate inactive."""
        with self._lock:
            self._state = GateState()

    @property
    def active(self) -> bool:
        with self._lock:
            return self._state.active

    @property
    def state(self) -> GateState:
        with self._lock:
            return GateState(active=self._state.active, last_score=self._state.last_score)
