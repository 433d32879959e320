"""
Core contracts, configuration and errors for Chat Guardian.

Stage order for each stream (NEVER REORDER):
1. Capture (screen ROI grab / flushed audio buffer)
2. Recognize (OCR lines / transcript fragment)
3. Classify (rules first, then the verdict model)
4. Gate (hysteresis on the stream's score)
5. Mitigate (mask + tone on the activation edge, clear on deactivation)
"""

from .contracts import (
    ROI,
    BoundingBox,
    CaptureResult,
    AudioChunk,
    OCRLine,
    TranscriptFragment,
    Judgment,
    JudgmentResult,
    ModerationResult,
    GateState,
    PipelineStage,
    StreamKind,
)
