"""
Pipeline State Machine.

Single source of truth for what a stream is doing right now:
- Serializes a stream's own work (at most one cycle in flight)
- Drops overlapping ticks instead of queueing them
- Converts faults into an error stage with a timed return to idle
- Discards late results from cycles that were reset or failed
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Optional, Callable, Deque, Dict, FrozenSet, Tuple
from loguru import logger

from chatguard.core.contracts import PipelineStage, StreamKind, StageSnapshot


TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]

# error is reachable from every stage through fail()
ALLOWED_TRANSITIONS: Dict[PipelineStage, FrozenSet[PipelineStage]] = {
    PipelineStage.IDLE: frozenset({PipelineStage.CAPTURING}),
    PipelineStage.CAPTURING: frozenset({PipelineStage.RECOGNIZING, PipelineStage.IDLE}),
    PipelineStage.RECOGNIZING: frozenset({PipelineStage.CLASSIFYING, PipelineStage.IDLE}),
    PipelineStage.CLASSIFYING: frozenset({PipelineStage.MASKING, PipelineStage.IDLE}),
    PipelineStage.MASKING: frozenset({PipelineStage.IDLE}),
    PipelineStage.ERROR: frozenset({PipelineStage.IDLE}),
}


class PipelineStateMachine:
    """
    Per-stream finite state machine.

    idle -> capturing -> recognizing -> classifying -> masking -> idle,
    any stage -> error, error -> idle after a cooldown.

    Every cycle is tagged with an epoch returned by try_begin(). fail()
    and reset() bump the epoch, so a result that arrives for an older
    epoch is refused by advance()/finish() and silently dropped.
    """

    def __init__(
        self,
        stream: StreamKind,
        error_cooldown_s: float = 2.0,
        timer_factory: Optional[TimerFactory] = None,
        history_size: int = 64,
    ):
        """
        Initialize the state machine.

        Args:
            stream: Which stream this machine belongs to (for logs)
            error_cooldown_s: Default delay before error returns to idle
            timer_factory: Creates the cooldown timer (threading.Timer by default)
            history_size: Number of transitions kept for diagnostics
        """
        self.stream = stream
        self.error_cooldown_s = error_cooldown_s
        self._timer_factory = timer_factory or threading.Timer

        self._lock = threading.Lock()
        self._stage = PipelineStage.IDLE
        self._error: Optional[str] = None
        self._epoch = 0
        self._transitions = 0
        self._dropped_ticks = 0
        self._cooldown_timer: Optional[threading.Timer] = None
        self._history: Deque[Tuple[PipelineStage, PipelineStage]] = deque(maxlen=history_size)

    # ------------------------------------------------------------
    # Cycle control
    # ------------------------------------------------------------

    def try_begin(self) -> Optional[int]:
        """
        Start a cycle if the stream is idle.

        Returns:
            The cycle's epoch, or None if the tick was dropped
        """
        with self._lock:
            if self._stage != PipelineStage.IDLE:
                self._dropped_ticks += 1
                logger.debug(
                    f"[{self.stream.value}] tick dropped, stage is {self._stage.value}"
                )
                return None
            self._set_stage(PipelineStage.CAPTURING)
            return self._epoch

    def advance(self, stage: PipelineStage, epoch: int) -> bool:
        """
        Move the cycle identified by epoch to the next stage.

        Returns:
            False if the cycle is stale (reset or failed meanwhile)

        Raises:
            ValueError: If the transition is not part of the machine
        """
        with self._lock:
            if epoch != self._epoch:
                logger.debug(
                    f"[{self.stream.value}] stale cycle {epoch} refused "
                    f"(current {self._epoch})"
                )
                return False
            if stage == PipelineStage.ERROR:
                raise ValueError("Use fail() to enter the error stage")
            if stage not in ALLOWED_TRANSITIONS[self._stage]:
                raise ValueError(
                    f"Illegal transition {self._stage.value} -> {stage.value} "
                    f"on {self.stream.value} stream"
                )
            self._set_stage(stage)
            return True

    def finish(self, epoch: int) -> bool:
        """Return the cycle to idle."""
        return self.advance(PipelineStage.IDLE, epoch)

    def fail(self, detail: str, cooldown_s: Optional[float] = None) -> int:
        """
        Enter the error stage and schedule the return to idle.

        Args:
            detail: Fault description (logged and kept until idle)
            cooldown_s: Override for the default error cooldown

        Returns:
            The epoch of the error episode
        """
        delay = self.error_cooldown_s if cooldown_s is None else cooldown_s

        with self._lock:
            self._cancel_timer()
            self._epoch += 1
            self._error = detail
            self._set_stage(PipelineStage.ERROR)
            error_epoch = self._epoch

            timer = self._timer_factory(delay, lambda: self._recover(error_epoch))
            timer.daemon = True
            self._cooldown_timer = timer

        logger.warning(f"[{self.stream.value}] error: {detail} (idle in {delay:.1f}s)")
        timer.start()
        return error_epoch

    def reset(self):
        """
        Force the stream back to idle.

        Cancels a pending cooldown and invalidates any in-flight cycle.
        """
        with self._lock:
            self._cancel_timer()
            self._epoch += 1
            self._error = None
            if self._stage != PipelineStage.IDLE:
                self._set_stage(PipelineStage.IDLE)

    def _recover(self, error_epoch: int):
        with self._lock:
            if self._epoch != error_epoch or self._stage != PipelineStage.ERROR:
                return
            self._cooldown_timer = None
            self._error = None
            self._set_stage(PipelineStage.IDLE)

    def _cancel_timer(self):
        if self._cooldown_timer is not None:
            self._cooldown_timer.cancel()
            self._cooldown_timer = None

    def _set_stage(self, stage: PipelineStage):
        # Caller holds the lock
        previous = self._stage
        self._stage = stage
        self._transitions += 1
        self._history.append((previous, stage))
        logger.debug(f"[{self.stream.value}] {previous.value} -> {stage.value}")

    # ------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------

    @property
    def stage(self) -> PipelineStage:
        with self._lock:
            return self._stage

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    @property
    def dropped_ticks(self) -> int:
        with self._lock:
            return self._dropped_ticks

    @property
    def is_idle(self) -> bool:
        return self.stage == PipelineStage.IDLE

    def history(self) -> list:
        """Recent (from, to) transitions, oldest first."""
        with self._lock:
            return list(self._history)

    def snapshot(self) -> StageSnapshot:
        with self._lock:
            return StageSnapshot(
                stream=self.stream,
                stage=self._stage,
                error=self._error,
                epoch=self._epoch,
                transitions=self._transitions,
            )
