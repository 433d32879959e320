from __future__ import annotations

from typing import List

import numpy as np

from chatguard.capture.sources import StaticCaptureSource
from chatguard.classify.rules import RuleSet, RuleStore
from chatguard.core.config import GuardianConfig
from chatguard.core.contracts import BoundingBox, CaptureResult, OCRLine, ROI
from chatguard.pipeline.orchestrator import GuardianOrchestrator
from chatguard.recognition.base import BaseTextRecognizer


class _OneLineOCR(BaseTextRecognizer):
    def __init__(self, text: str) -> None:
        self.text = text

    def recognize(self, capture: CaptureResult) -> List[OCRLine]:
        return [OCRLine(self.text, BoundingBox(0, 0, capture.width, capture.height))]


class _CountingTone:
    def __init__(self) -> None:
        self.plays = 0

    def play(self) -> None:
        self.plays += 1


def _guardian(tmp_path, timers, text: str, mode: str = "roi"):
    config = GuardianConfig()
    config.storage.data_dir = str(tmp_path)
    config.audio.enabled = False
    config.mitigation.mode = mode
    tone = _CountingTone()
    rules = RuleStore(tmp_path / "rules.json")
    rules.replace(RuleSet(badwords=("금칙어",), whitelist=("게임",)))

    guardian = GuardianOrchestrator(
        config,
        capture_source=StaticCaptureSource(np.full((200, 300, 3), 128, dtype=np.uint8)),
        text_recognizer=_OneLineOCR(text),
        tone=tone,
        rules=rules,
        timer_factory=timers,
    )
    return guardian, tone


def test_blocked_term_on_screen_masks_roi_and_beeps_once(tmp_path, timers) -> None:
    guardian, tone = _guardian(tmp_path, timers, "금칙어 테스트")
    guardian.set_roi(ROI(0, 0, 100, 20))

    assert not guardian.screen.gate.active
    assert guardian.screen.tick()

    result = guardian.screen.last_result
    assert result.flagged_indices == [0]
    assert result.score >= 0.5
    assert guardian.screen.gate.active
    assert guardian.status()["mask"] == [(0, 0, 100, 20)]

    guardian.screen.tick()
    assert guardian.screen.mitigation.wait_for_tone()
    assert tone.plays == 1

    events = guardian.event_log.read()
    assert len(events) == 1
    assert events[0]["judgment"] == "HARMFUL"
    assert events[0]["text"] == "금칙어 테스트"


def test_safe_text_changes_nothing(tmp_path, timers) -> None:
    guardian, tone = _guardian(tmp_path, timers, "게임 채팅")
    guardian.set_roi(ROI(0, 0, 100, 20))

    assert guardian.screen.tick()
    assert not guardian.screen.gate.active
    assert guardian.status()["mask"] == []
    assert tone.plays == 0
    assert guardian.event_log.read() == []


def test_clearing_roi_clears_mask(tmp_path, timers) -> None:
    guardian, _ = _guardian(tmp_path, timers, "금칙어")
    guardian.set_roi(ROI(10, 10, 50, 20))
    guardian.screen.tick()
    assert guardian.status()["mask"] == [(10, 10, 50, 20)]

    guardian.set_roi(None)
    assert guardian.status()["mask"] == []
    assert not guardian.screen.tick()


def test_streams_do_not_share_gates(tmp_path, timers) -> None:
    guardian, _ = _guardian(tmp_path, timers, "금칙어")
    guardian.set_roi(ROI(0, 0, 100, 20))
    guardian.screen.tick()

    assert guardian.screen.gate.active
    assert not guardian.audio.gate.active
    assert guardian.audio.fsm is not guardian.screen.fsm


def test_line_mode_masks_flagged_line(tmp_path, timers) -> None:
    guardian, _ = _guardian(tmp_path, timers, "금칙어", mode="lines")
    guardian.set_roi(ROI(20, 30, 100, 20))
    guardian.screen.tick()

    assert guardian.status()["mask"] == [(20, 30, 100, 20)]


def test_line_mask_lands_on_text_when_roi_overhangs_display(tmp_path, timers) -> None:
    guardian, _ = _guardian(tmp_path, timers, "금칙어", mode="lines")
    guardian.set_roi(ROI(-50, 0, 150, 20))
    guardian.screen.tick()

    assert guardian.status()["mask"] == [(0, 0, 100, 20)]
