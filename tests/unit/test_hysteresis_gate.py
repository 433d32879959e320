from __future__ import annotations

import pytest

from chatguard.safety.hysteresis_gate import HysteresisGate


def test_sequence_latches_between_thresholds() -> None:
    gate = HysteresisGate(on_threshold=0.7, off_threshold=0.4)
    assert [gate.update(s) for s in (0.9, 0.5, 0.3, 0.5)] == [True, True, False, False]


def test_repeated_mid_scores_never_flicker() -> None:
    gate = HysteresisGate()
    gate.update(0.8)
    assert all(gate.update(0.55) for _ in range(20))
    assert gate.state.last_score == 0.55


def test_thresholds_are_inclusive_on_and_exclusive_off() -> None:
    gate = HysteresisGate(on_threshold=0.7, off_threshold=0.4)
    assert gate.update(0.7)
    assert gate.update(0.4)
    assert not gate.update(0.39)


def test_missing_score_counts_as_zero() -> None:
    gate = HysteresisGate()
    gate.update(1.0)
    assert not gate.update(None)


def test_on_must_exceed_off() -> None:
    with pytest.raises(ValueError):
        HysteresisGate(on_threshold=0.4, off_threshold=0.4)


def test_reset_deactivates() -> None:
    gate = HysteresisGate()
    gate.update(0.9)
    gate.reset()
    assert not gate.active
    assert gate.state.last_score is None
