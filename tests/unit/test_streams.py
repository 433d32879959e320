from __future__ import annotations

from typing import List, Optional

import numpy as np

from chatguard.audio.audio_sampler import AudioSampler
from chatguard.capture.region_sampler import RegionSampler
from chatguard.capture.sources import StaticCaptureSource
from chatguard.classify.classifier import Classifier
from chatguard.classify.rules import RuleSet, RuleStore
from chatguard.core.contracts import (
    BoundingBox,
    CaptureResult,
    OCRLine,
    PipelineStage,
    ROI,
    StreamKind,
    TranscriptFragment,
)
from chatguard.core.errors import RecognitionError, SensorUnavailableError
from chatguard.mitigation.controller import MitigationController
from chatguard.mitigation.overlay import MosaicOverlay
from chatguard.moderation.aggregator import ModerationAggregator
from chatguard.pipeline.state_machine import PipelineStateMachine
from chatguard.pipeline.streams import AudioStream, ScreenStream
from chatguard.recognition.base import BaseSpeechRecognizer, BaseTextRecognizer
from chatguard.safety.hysteresis_gate import HysteresisGate
from chatguard.storage.event_log import EventLog


class _ScriptedOCR(BaseTextRecognizer):
    def __init__(self, texts: List[str]) -> None:
        self.texts = texts
        self.calls = 0
        self.during_call = None
        self.error: Optional[Exception] = None

    def recognize(self, capture: CaptureResult) -> List[OCRLine]:
        self.calls += 1
        if self.during_call is not None:
            self.during_call()
        if self.error is not None:
            raise self.error
        return [OCRLine(text, BoundingBox(0, 20 * i, capture.width, 20)) for i, text in enumerate(self.texts)]


class _ScriptedSTT(BaseSpeechRecognizer):
    def __init__(self, text: Optional[str]) -> None:
        self.text = text
        self.received: List[bytes] = []

    def transcribe(self, audio: bytes) -> Optional[TranscriptFragment]:
        self.received.append(audio)
        if self.text is None:
            return None
        return TranscriptFragment(self.text)


def _aggregator() -> ModerationAggregator:
    return ModerationAggregator(Classifier(RuleStore(rules=RuleSet(badwords=("금칙어",)))))


def _screen(timers, ocr: BaseTextRecognizer, roi: Optional[ROI] = ROI(0, 0, 100, 20), event_log=None) -> ScreenStream:
    image = np.zeros((100, 200, 3), dtype=np.uint8)
    return ScreenStream(
        sampler=RegionSampler(StaticCaptureSource(image)),
        recognizer=ocr,
        aggregator=_aggregator(),
        gate=HysteresisGate(stream=StreamKind.SCREEN),
        fsm=PipelineStateMachine(StreamKind.SCREEN, timer_factory=timers),
        mitigation=MitigationController(StreamKind.SCREEN, MosaicOverlay(), None),
        roi_provider=lambda: roi,
        event_log=event_log,
    )


def _audio(timers, stt: BaseSpeechRecognizer, sampler: Optional[AudioSampler] = None) -> AudioStream:
    return AudioStream(
        recognizer=stt,
        aggregator=_aggregator(),
        gate=HysteresisGate(stream=StreamKind.AUDIO),
        fsm=PipelineStateMachine(StreamKind.AUDIO, timer_factory=timers),
        mitigation=MitigationController(StreamKind.AUDIO, MosaicOverlay(), None),
        roi_provider=lambda: ROI(0, 0, 100, 20),
        sampler=sampler,
        flush_window_s=2.5,
        timer_factory=timers,
    )


def test_invalid_roi_leaves_state_machine_idle(timers) -> None:
    stream = _screen(timers, _ScriptedOCR([]), roi=ROI(0, 0, 0, 20))
    assert not stream.tick()
    assert stream.fsm.history() == []
    assert stream.captures == 0


def test_overlapping_tick_is_dropped(timers) -> None:
    ocr = _ScriptedOCR(["hello"])
    stream = _screen(timers, ocr)
    nested: List[bool] = []
    ocr.during_call = lambda: nested.append(stream.tick())

    assert stream.tick()
    assert nested == [False]
    assert stream.captures == 1
    assert stream.fsm.dropped_ticks == 1
    assert stream.fsm.stage == PipelineStage.IDLE


def test_captures_never_exceed_completed_plus_one(timers) -> None:
    ocr = _ScriptedOCR(["hello"])
    stream = _screen(timers, ocr)
    ocr.during_call = lambda: stream.tick()

    for _ in range(5):
        stream.tick()
        assert stream.captures <= stream.cycles_completed + 1
    assert stream.captures == 5


def test_recognition_failure_enters_error_then_recovers(timers) -> None:
    ocr = _ScriptedOCR(["hello"])
    ocr.error = RecognitionError("tesseract crashed")
    stream = _screen(timers, ocr)

    assert not stream.tick()
    assert stream.fsm.stage == PipelineStage.ERROR
    assert not stream.tick()
    assert ocr.calls == 1

    ocr.error = None
    timers.fire_all()
    assert stream.fsm.stage == PipelineStage.IDLE
    assert stream.tick()


def test_sensor_unavailable_returns_to_idle_without_error(timers) -> None:
    ocr = _ScriptedOCR([])
    ocr.error = SensorUnavailableError("display lost")
    stream = _screen(timers, ocr)

    assert not stream.tick()
    assert stream.fsm.stage == PipelineStage.IDLE
    assert timers.created == []


def test_lost_display_returns_to_idle_without_error(timers) -> None:
    ocr = _ScriptedOCR(["금칙어"])
    stream = _screen(timers, ocr)
    stream.sampler = RegionSampler(StaticCaptureSource(None))

    assert not stream.tick()
    assert stream.fsm.stage == PipelineStage.IDLE
    assert stream.fsm.history() == [
        (PipelineStage.IDLE, PipelineStage.CAPTURING),
        (PipelineStage.CAPTURING, PipelineStage.IDLE),
    ]
    assert stream.captures == 0
    assert ocr.calls == 0
    assert timers.created == []


def test_unexpected_exception_is_contained(timers) -> None:
    ocr = _ScriptedOCR([])
    ocr.error = KeyError("bad frame")
    stream = _screen(timers, ocr)

    assert not stream.tick()
    assert stream.fsm.stage == PipelineStage.ERROR


def test_harmful_text_staying_on_screen_is_logged_once(timers, tmp_path) -> None:
    log = EventLog(tmp_path / "events.jsonl")
    stream = _screen(timers, _ScriptedOCR(["금칙어 테스트"]), event_log=log)

    stream.tick()
    stream.tick()
    assert len(log.read()) == 1
    assert stream.gate.active


def test_mask_clears_when_score_drops(timers) -> None:
    ocr = _ScriptedOCR(["금칙어"])
    stream = _screen(timers, ocr)

    stream.tick()
    assert stream.mitigation.is_active
    ocr.texts = ["괜찮은 말"]
    stream.tick()
    assert not stream.mitigation.is_active


def test_audio_burst_makes_one_recognizer_call(timers) -> None:
    stt = _ScriptedSTT("안녕하세요")
    sampler = AudioSampler()
    stream = _audio(timers, stt, sampler)

    sampler.feed(b"\x01\x02", timestamp_ms=10)
    sampler.feed(b"\x03\x04", timestamp_ms=20)
    sampler.feed(b"\x05\x06", timestamp_ms=30)
    timers.fire_all()

    assert stt.received == [b"\x01\x02\x03\x04\x05\x06"]
    assert stream.last_transcript.text == "안녕하세요"
    assert stream.fsm.stage == PipelineStage.IDLE


def test_harmful_speech_activates_audio_gate(timers) -> None:
    stream = _audio(timers, _ScriptedSTT("이건 금칙어 입니다"))
    assert stream.process_audio(b"\x00\x01")
    assert stream.gate.active
    assert stream.mitigation.is_active


def test_silence_counts_as_safe(timers) -> None:
    stream = _audio(timers, _ScriptedSTT("금칙어"))
    stream.process_audio(b"\x00")
    assert stream.gate.active

    stream.recognizer.text = None
    stream.process_audio(b"\x00")
    assert not stream.gate.active


def test_partial_fragments_only_update_readout(timers) -> None:
    stream = _audio(timers, _ScriptedSTT(None))

    assert not stream.handle_fragment(TranscriptFragment("금칙어", is_final=False))
    assert not stream.gate.active
    assert stream.status()["transcript"] == "금칙어"

    assert stream.handle_fragment(TranscriptFragment("금칙어", is_final=True))
    assert stream.gate.active


def test_flush_while_busy_is_dropped(timers) -> None:
    stream = _audio(timers, _ScriptedSTT("hi"))
    stream.fsm.try_begin()

    assert not stream.process_audio(b"\x00")
    assert stream.dropped_flushes == 1


def test_fragment_for_reset_cycle_is_dropped(timers) -> None:
    stream = _audio(timers, _ScriptedSTT(None))
    advance = stream.fsm.advance

    def reset_then_advance(stage: PipelineStage, epoch: int) -> bool:
        if stage == PipelineStage.RECOGNIZING:
            stream.fsm.reset()
        return advance(stage, epoch)

    stream.fsm.advance = reset_then_advance

    assert not stream.handle_fragment(TranscriptFragment("금칙어", is_final=True))
    assert not stream.gate.active
    assert stream.cycles_completed == 0
    assert stream.fsm.stage == PipelineStage.IDLE
    assert all(to != PipelineStage.CLASSIFYING for _, to in stream.fsm.history())
