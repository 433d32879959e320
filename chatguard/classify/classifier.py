"""
Text Classifier.

Decides SAFE / HARMFUL for one piece of text:
1. Normalize (lowercase, drop punctuation and whitespace, keep word characters)
2. Whitelist terms first: any match is SAFE
3. Blocklist terms: any match is HARMFUL
4. Otherwise defer to the verdict model; no model means SAFE

Whitelist precedence lets operators declare known-safe phrases that would
otherwise collide with a blocked substring.
"""

from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from typing import Optional, Callable, Dict, Type
from loguru import logger

from chatguard.core.contracts import Judgment, JudgmentResult
from chatguard.classify.rules import RuleStore

try:
    from openai import OpenAI
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False
    logger.warning("OpenAI not available")


_NON_WORD = re.compile(r"[\W_]+", re.UNICODE)


def normalize_text(text: str) -> str:
    """
    Normalize text for substring matching.

    Word characters of every script survive (Hangul, Latin, digits);
    punctuation, symbols, underscores and all whitespace
    are removed.
    """
    return _NON_WORD.sub("", text.lower())


# ============================================================
# VERDICT MODELS
# ============================================================

class VerdictModel(ABC):
    """
    Model consulted when no rule matches.

    score() returns a harm probability in [0, 1], or None when the model
    has no opinion (not loaded, service unreachable).
    """

    name: str = "model"

    @abstractmethod
    def score(self, text: str) -> Optional[float]:
        pass


class RuleOnlyModel(VerdictModel):
    """No model: unmatched text is SAFE."""

    name = "rule_only"

    def score(self, text: str) -> Optional[float]:
        return None


class LocalModel(VerdictModel):
    """
    In-process model wrapped as a scoring function.

    The scorer is injected (e.g. an ONNX or transformers pipeline adapter)
    so the classifier does not depend on any particular runtime.
    """

    name = "local"

    def __init__(self, scorer: Optional[Callable[[str], float]] = None):
        self.scorer = scorer

    def score(self, text: str) -> Optional[float]:
        if self.scorer is None:
            return None
        return min(max(float(self.scorer(text)), 0.0), 1.0)


class OpenAIModerationModel(VerdictModel):
    """Remote verdict from the OpenAI moderation endpoint."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "omni-moderation-latest",
    ):
        """
        Args:
            api_key: OpenAI API key (uses env var if not provided)
            model: Moderation model name
        """
        self.model = model
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self._client = None

        if not OPENAI_AVAILABLE:
            logger.warning("openai package missing, remote verdicts disabled")
        elif not self.api_key:
            logger.warning("No OPENAI_API_KEY set, remote verdicts disabled")
        else:
            self._client = OpenAI(api_key=self.api_key)

    def score(self, text: str) -> Optional[float]:
        if self._client is None:
            return None

        response = self._client.moderations.create(model=self.model, input=text)
        if not response.results:
            return None

        scores = response.results[0].category_scores.model_dump()
        values = [float(v) for v in scores.values() if isinstance(v, (int, float))]
        return max(values) if values else 0.0


MODELS: Dict[str, Type[VerdictModel]] = {
    "rule_only": RuleOnlyModel,
    "local": LocalModel,
    "openai": OpenAIModerationModel,
}


def get_model(name: str, **kwargs) -> VerdictModel:
    """
    Get a verdict model by name.

    Raises:
        ValueError: If the name is not registered
    """
    if name not in MODELS:
        available = ", ".join(MODELS.keys())
        raise ValueError(f"Unknown verdict model '{name}'. Available: {available}")
    return MODELS[name](**kwargs)


# ============================================================
# CLASSIFIER
# ============================================================

class Classifier:
    """
    Rule-first text classifier.

    The verdict is a pure function of (normalized text, rule snapshot)
    whenever a rule matches; the model only sees text no rule decided.
    """

    def __init__(
        self,
        rules: RuleStore,
        model: Optional[VerdictModel] = None,
        model_threshold: float = 0.5,
        rule_confidence: float = 0.9,
    ):
        """
        Initialize classifier.

        Args:
            rules: Shared rule store (read through snapshots)
            model: Verdict model for unmatched text (None = rule only)
            model_threshold: Model score at or above which text is HARMFUL
            rule_confidence: Confidence reported for a blocklist match
        """
        self.rules = rules
        self.model = model or RuleOnlyModel()
        self.model_threshold = model_threshold
        self.rule_confidence = rule_confidence

    def judge(self, text: str) -> JudgmentResult:
        """Classify one text."""
        normalized = normalize_text(text)
        if not normalized:
            return JudgmentResult(Judgment.SAFE, text)

        snapshot = self.rules.snapshot()

        for term in snapshot.whitelist:
            key = normalize_text(term)
            if key and key in normalized:
                return JudgmentResult(Judgment.SAFE, text, reason=f"whitelist: {term}")

        for term in snapshot.badwords:
            key = normalize_text(term)
            if key and key in normalized:
                return JudgmentResult(
                    Judgment.HARMFUL,
                    text,
                    reason=f"blocklist: {term}",
                    confidence=self.rule_confidence,
                )

        return self._model_verdict(text)

    def _model_verdict(self, text: str) -> JudgmentResult:
        try:
            score = self.model.score(text)
        except Exception as e:
            logger.warning(f"Verdict model '{self.model.name}' failed: {e}")
            score = None

        if score is None:
            return JudgmentResult(Judgment.SAFE, text)

        if score >= self.model_threshold:
            return JudgmentResult(
                Judgment.HARMFUL,
                text,
                reason=f"model: {self.model.name} ({score:.2f})",
                confidence=score,
            )
        return JudgmentResult(Judgment.SAFE, text, confidence=score)
