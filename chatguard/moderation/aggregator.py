"""
Moderation Aggregator.

Turns a batch of OCR lines into per-line flags and one score:
- Each line is judged in index order
- The score is the highest confidence among flagged lines
- Any flagged line lifts the score to at least SCORE_FLOOR, so a single
  detection is never invisible to the gate
- No flagged lines gives 0.0; an empty batch gives None
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, List, Sequence
from loguru import logger

from chatguard.core.contracts import OCRLine, ModerationResult, JudgmentResult, BoundingBox
from chatguard.classify.classifier import Classifier


SCORE_FLOOR = 0.5


class RemoteModerator(ABC):
    """A remote equivalent of the local classifier for whole batches."""

    @abstractmethod
    def moderate(self, lines: Sequence[OCRLine]) -> Optional[ModerationResult]:
        """
        Ask the remote service for a verdict.

        Returns:
            The remote result, or None when no verdict is available
            (disconnected, timed out)
        """
        pass


class ModerationAggregator:
    """
    Batch moderation over the local classifier, optionally merged with a
    remote verdict. The remote side can only add flags, never remove them.
    """

    def __init__(
        self,
        classifier: Classifier,
        remote: Optional[RemoteModerator] = None,
        score_floor: float = SCORE_FLOOR,
    ):
        self.classifier = classifier
        self.remote = remote
        self.score_floor = score_floor

    def aggregate(self, lines: Sequence[OCRLine]) -> ModerationResult:
        """Moderate a batch of OCR lines."""
        if not lines:
            return ModerationResult(flagged_indices=[], score=None, judgments=[])

        judgments: List[JudgmentResult] = []
        flagged: List[int] = []
        score = 0.0

        for index, line in enumerate(lines):
            judgment = self.classifier.judge(line.text)
            judgments.append(judgment)
            if judgment.is_harmful:
                flagged.append(index)
                # strict > keeps the first line on ties
                if judgment.confidence > score:
                    score = judgment.confidence

        result = ModerationResult(flagged_indices=flagged, score=score, judgments=judgments)

        if self.remote is not None:
            remote_result = self.remote.moderate(lines)
            if remote_result is not None:
                result = self._merge(result, remote_result, len(lines))

        return self._finalize(result)

    def aggregate_text(self, text: str) -> ModerationResult:
        """Moderate a single text (e.g. a transcript) as a one-line batch."""
        return self.aggregate([OCRLine(text=text, bbox=BoundingBox(0, 0, 0, 0))])

    def _merge(
        self,
        local: ModerationResult,
        remote: ModerationResult,
        line_count: int,
    ) -> ModerationResult:
        indices = set(local.flagged_indices)
        for index in remote.flagged_indices:
            if 0 <= index < line_count:
                indices.add(index)
            else:
                logger.warning(f"Remote moderator flagged out-of-range line {index}")

        score = max(local.score or 0.0, remote.score or 0.0)
        return ModerationResult(
            flagged_indices=sorted(indices),
            score=score,
            judgments=local.judgments,
        )

    def _finalize(self, result: ModerationResult) -> ModerationResult:
        score = min(max(result.score or 0.0, 0.0), 1.0)
        if result.flagged_indices:
            score = max(score, self.score_floor)
        else:
            score = 0.0
        result.score = score
        return result
