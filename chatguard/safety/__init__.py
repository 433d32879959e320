"""
Safety Module - Flicker Guard.

Responsibilities:
- Hysteresis latch between moderation scores and mitigation
"""

from .hysteresis_gate import HysteresisGate
