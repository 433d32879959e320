"""
Classification Module.

Responsibilities:
- Persisted blocklist / whitelist with atomic snapshots
- Rule-first SAFE / HARMFUL verdicts
- Pluggable verdict models (rule only, local, remote)
"""

from .rules import RuleSet, RuleStore, DEFAULT_RULES
from .classifier import (
    Classifier,
    VerdictModel,
    RuleOnlyModel,
    LocalModel,
    OpenAIModerationModel,
    get_model,
    normalize_text,
)
