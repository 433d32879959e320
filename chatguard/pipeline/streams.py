"""
Detection Streams.

Each stream runs the full cycle for one sensor, in strict order:

1. Capture (screen ROI) or collect (buffered audio)
2. Recognize (OCR / STT)
3. Classify + aggregate into one score
4. Update the stream's hysteresis gate
5. Drive the stream's mitigation

Every stage boundary catches its own faults:
- Sensor unavailable: back to idle, no escalation
- Anything else: error stage, cooldown, idle

The two streams share no mutable state except the ROI, which they only read.
"""

from __future__ import annotations

import threading
import time
from abc import ABC
from typing import Optional, Callable, List, Set, Dict, Any
from loguru import logger

from chatguard.core.contracts import (
    ROI,
    StreamKind,
    PipelineStage,
    ModerationResult,
    JudgmentResult,
    TranscriptFragment,
    AudioChunk,
)
from chatguard.core.errors import SensorUnavailableError, RecognitionError
from chatguard.pipeline.state_machine import PipelineStateMachine
from chatguard.capture.region_sampler import RegionSampler
from chatguard.audio.audio_sampler import AudioSampler
from chatguard.audio.chunk_buffer import ChunkBuffer, TimerFactory
from chatguard.recognition.base import BaseTextRecognizer, BaseSpeechRecognizer
from chatguard.moderation.aggregator import ModerationAggregator
from chatguard.safety.hysteresis_gate import HysteresisGate
from chatguard.mitigation.controller import MitigationController
from chatguard.storage.event_log import EventLog
from chatguard.transport.remote import AudioTransportClient


RoiProvider = Callable[[], Optional[ROI]]


class BaseStream(ABC):
    """State and collaborators owned by one stream."""

    kind: StreamKind

    def __init__(
        self,
        aggregator: ModerationAggregator,
        gate: HysteresisGate,
        fsm: PipelineStateMachine,
        mitigation: MitigationController,
        roi_provider: RoiProvider,
        event_log: Optional[EventLog] = None,
    ):
        self.aggregator = aggregator
        self.gate = gate
        self.fsm = fsm
        self.mitigation = mitigation
        self.roi_provider = roi_provider
        self.event_log = event_log

        self.cycles_completed = 0
        self.last_result: Optional[ModerationResult] = None

    def _fault(self, error: Exception, epoch: int):
        """Convert a stage fault into a state transition."""
        if isinstance(error, SensorUnavailableError):
            logger.debug(f"[{self.kind.value}] sensor unavailable: {error}")
            self.fsm.finish(epoch)
            return
        if self.fsm.epoch != epoch:
            # cycle was reset while the stage ran
            return
        if not isinstance(error, RecognitionError):
            logger.opt(exception=error).error(f"[{self.kind.value}] unexpected stage fault")
        self.fsm.fail(f"{type(error).__name__}: {error}")

    def _apply_verdict(self, result: ModerationResult, boxes_for: Callable[[], list], epoch: int) -> bool:
        if not self.fsm.advance(PipelineStage.MASKING, epoch):
            return False

        self.last_result = result
        active = self.gate.update(result.score)
        self.mitigation.apply(active, boxes_for() if active else [])

        self.fsm.finish(epoch)
        self.cycles_completed += 1
        return True

    def _record(self, judgments: List[JudgmentResult]):
        if self.event_log is None:
            return
        for judgment in judgments:
            if judgment.is_harmful:
                self.event_log.record(judgment, stream=self.kind)

    def reset(self):
        """Abandon in-flight work and clear this stream's mask."""
        self.fsm.reset()
        self.gate.reset()
        self.mitigation.reset()

    def status(self) -> Dict[str, Any]:
        """Readout for the HUD."""
        state = self.gate.state
        return {
            "stream": self.kind.value,
            "stage": self.fsm.stage.value,
            "error": self.fsm.error,
            "active": state.active,
            "score": state.last_score,
            "dropped_ticks": self.fsm.dropped_ticks,
            "cycles": self.cycles_completed,
        }


# ============================================================
# SCREEN
# ============================================================

class ScreenStream(BaseStream):
    """
    Fixed-interval ROI sampling -> OCR -> moderation -> gate -> mask.

    The scheduler fires every interval; a tick that finds the state
    machine busy (cycle in flight or error cooldown) is dropped, never
    queued.
    """

    kind = StreamKind.SCREEN

    def __init__(
        self,
        sampler: RegionSampler,
        recognizer: BaseTextRecognizer,
        aggregator: ModerationAggregator,
        gate: HysteresisGate,
        fsm: PipelineStateMachine,
        mitigation: MitigationController,
        roi_provider: RoiProvider,
        event_log: Optional[EventLog] = None,
        interval_s: float = 1.0,
    ):
        super().__init__(aggregator, gate, fsm, mitigation, roi_provider, event_log)
        self.sampler = sampler
        self.recognizer = recognizer
        self.interval_s = interval_s

        self.captures = 0
        self._last_harmful: Set[str] = set()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        if self._thread is not None:
            return True
        self.sampler.source.start()
        if not self.recognizer.start():
            logger.warning("Text recognizer failed to start, screen stream idle")
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._schedule_loop, name="screen-stream", daemon=True)
        self._thread.start()
        logger.info(f"Screen stream started ({self.interval_s * 1000:.0f}ms interval)")
        return True

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        self.reset()
        self.recognizer.stop()
        self.sampler.source.stop()
        logger.info("Screen stream stopped")

    def _schedule_loop(self):
        next_tick = time.monotonic()
        while not self._stop_event.wait(max(0.0, next_tick - time.monotonic())):
            now = time.monotonic()
            next_tick += self.interval_s
            if next_tick < now:
                next_tick = now + self.interval_s

            roi = self.roi_provider()
            if roi is None or not roi.is_valid:
                continue
            epoch = self.fsm.try_begin()
            if epoch is None:
                continue
            worker = threading.Thread(target=self._run_cycle, args=(epoch, roi), daemon=True)
            worker.start()

    def tick(self) -> bool:
        """
        Run one cycle on the calling thread.

        Returns:
            True if the cycle reached the gate
        """
        roi = self.roi_provider()
        if roi is None or not roi.is_valid:
            # nothing to watch, the state machine stays idle
            return False
        epoch = self.fsm.try_begin()
        if epoch is None:
            return False
        return self._run_cycle(epoch, roi)

    def _run_cycle(self, epoch: int, roi: ROI) -> bool:
        try:
            capture = self.sampler.sample(roi)
            if capture is None:
                raise SensorUnavailableError(f"no display frame for ROI {roi}")
            self.captures += 1

            if not self.fsm.advance(PipelineStage.RECOGNIZING, epoch):
                return False
            lines = self.recognizer.recognize(capture)

            # a stale recognition result is dropped here
            if not self.fsm.advance(PipelineStage.CLASSIFYING, epoch):
                return False
            result = self.aggregator.aggregate(lines)
            self._record_new(result.judgments)

            return self._apply_verdict(
                result,
                lambda: self.mitigation.mask_geometry(
                    capture.roi, lines, result.flagged_indices, capture.screen_box
                ),
                epoch,
            )
        except Exception as e:
            self._fault(e, epoch)
            return False

    def _record_new(self, judgments: List[JudgmentResult]):
        # Text that stays on screen is logged once, not every tick
        harmful = [j for j in judgments if j.is_harmful]
        fresh = [j for j in harmful if j.text not in self._last_harmful]
        self._last_harmful = {j.text for j in harmful}
        self._record(fresh)

    def reset(self):
        super().reset()
        self._last_harmful = set()


# ============================================================
# AUDIO
# ============================================================

class AudioStream(BaseStream):
    """
    Live audio -> debounced buffer -> STT -> moderation -> gate -> mask.

    Local mode feeds chunks into a ChunkBuffer whose flush runs one cycle.
    Remote mode forwards chunks to the transcription server and runs the
    classify half of the cycle for every final fragment it returns.
    Audio has no screen position, so its mask covers the ROI.
    """

    kind = StreamKind.AUDIO

    def __init__(
        self,
        recognizer: BaseSpeechRecognizer,
        aggregator: ModerationAggregator,
        gate: HysteresisGate,
        fsm: PipelineStateMachine,
        mitigation: MitigationController,
        roi_provider: RoiProvider,
        event_log: Optional[EventLog] = None,
        sampler: Optional[AudioSampler] = None,
        flush_window_s: float = 2.5,
        max_buffer_bytes: int = 10 * 1024 * 1024,
        timer_factory: Optional[TimerFactory] = None,
        transport: Optional[AudioTransportClient] = None,
    ):
        super().__init__(aggregator, gate, fsm, mitigation, roi_provider, event_log)
        self.recognizer = recognizer
        self.sampler = sampler
        self.transport = transport

        self.buffer = ChunkBuffer(
            on_flush=self.process_audio,
            flush_window_s=flush_window_s,
            max_bytes=max_buffer_bytes,
            timer_factory=timer_factory,
            name="audio",
        )

        if self.sampler is not None:
            self.sampler.on_chunk = self.on_chunk
        if self.transport is not None:
            self.transport.on_fragment = self.handle_fragment

        self.last_transcript: Optional[TranscriptFragment] = None
        self.dropped_flushes = 0

    def start(self) -> bool:
        if self.transport is not None:
            self.transport.start()
        else:
            self.recognizer.start()

        if self.sampler is None or not self.sampler.start():
            logger.warning("No audio input available, audio stream idle")
            return False
        return True

    def stop(self):
        if self.sampler is not None:
            self.sampler.stop()
        self.buffer.clear()
        if self.transport is not None:
            self.transport.stop()
        else:
            self.recognizer.stop()
        self.reset()
        logger.info("Audio stream stopped")

    def on_chunk(self, chunk: AudioChunk):
        """Route one captured chunk."""
        if self.transport is not None:
            self.transport.send_chunk(chunk)
        else:
            self.buffer.append(chunk)

    def flush(self):
        """Force aggregation now instead of waiting for the quiet window."""
        if self.transport is not None:
            self.transport.flush()
        else:
            self.buffer.flush()

    def process_audio(self, audio: bytes) -> bool:
        """
        Run one cycle over a flushed buffer.

        Returns:
            True if the cycle reached the gate
        """
        epoch = self.fsm.try_begin()
        if epoch is None:
            self.dropped_flushes += 1
            logger.warning(
                f"[audio] {len(audio)} bytes dropped, stream is {self.fsm.stage.value}"
            )
            return False

        try:
            if not self.fsm.advance(PipelineStage.RECOGNIZING, epoch):
                return False
            fragment = self.recognizer.transcribe(audio)

            if not self.fsm.advance(PipelineStage.CLASSIFYING, epoch):
                return False
            return self._classify(fragment, epoch)
        except Exception as e:
            self._fault(e, epoch)
            return False

    def handle_fragment(self, fragment: TranscriptFragment) -> bool:
        """
        Classify a fragment produced elsewhere (remote transcription).

        Partial fragments only update the readout.
        """
        if not fragment.is_final:
            self.last_transcript = fragment
            return False

        epoch = self.fsm.try_begin()
        if epoch is None:
            self.dropped_flushes += 1
            return False

        try:
            if not self.fsm.advance(PipelineStage.RECOGNIZING, epoch):
                return False
            if not self.fsm.advance(PipelineStage.CLASSIFYING, epoch):
                return False
            return self._classify(fragment, epoch)
        except Exception as e:
            self._fault(e, epoch)
            return False

    def _classify(self, fragment: Optional[TranscriptFragment], epoch: int) -> bool:
        if fragment is not None and fragment.text:
            self.last_transcript = fragment
            result = self.aggregator.aggregate_text(fragment.text)
            self._record(result.judgments)
        else:
            # silence counts as nothing harmful heard
            result = ModerationResult()

        return self._apply_verdict(
            result,
            lambda: self.mitigation.mask_geometry(self.roi_provider()),
            epoch,
        )

    def status(self) -> Dict[str, Any]:
        status = super().status()
        status["transcript"] = self.last_transcript.text if self.last_transcript else None
        status["dropped_flushes"] = self.dropped_flushes
        return status
