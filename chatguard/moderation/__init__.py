"""
Moderation Module.

Responsibilities:
- Batch verdicts over OCR lines (per-line flags + one score)
- Merging of optional remote verdicts
"""

from .aggregator import ModerationAggregator, RemoteModerator, SCORE_FLOOR
