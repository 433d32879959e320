"""
Chat Guardian - Live Screen and Voice Moderation

Continuously samples on-screen chat text and spoken audio, decides
whether freshly observed content is harmful, and drives a visible
mitigation (mosaic mask + alert tone) without flicker.

Top Priorities (strict order):
1. Never flood downstream stages (drop ticks, never queue them)
2. Never leave the mask stuck on (deactivation is score-driven only)
3. No stage failure is fatal to the process
4. Deterministic, explainable verdicts (rules before models)
"""

__version__ = "0.1.0"
__author__ = "Chat Guardian Team"
