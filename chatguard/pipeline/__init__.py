"""
Pipeline Module.

Responsibilities:
- Per-stream state machine
- Screen and audio detection streams
- Orchestration of both streams and their shared collaborators
"""

from .state_machine import PipelineStateMachine, ALLOWED_TRANSITIONS
from .streams import ScreenStream, AudioStream
from .orchestrator import (
    GuardianOrchestrator,
    build_classifier,
    build_text_recognizer,
    build_speech_recognizer,
)
