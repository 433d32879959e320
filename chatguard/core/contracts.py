"""
Core data contracts for Chat Guardian.

All stages exchange these types:
- Sensor output (ROI captures, audio chunks)
- Recognizer output (OCR lines, transcript fragments)
- Verdicts (per-text judgments, per-batch moderation results)
- Per-stream state (gate latch, pipeline stage)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple
import numpy as np
from numpy.typing import NDArray


# ============================================================
# ENUMERATIONS
# ============================================================

class StreamKind(Enum):
    """The two independent sensor streams."""
    SCREEN = "screen"
    AUDIO = "audio"


class PipelineStage(Enum):
    """Stages a stream moves through. Exactly one per stream at a time."""
    IDLE = "idle"
    CAPTURING = "capturing"
    RECOGNIZING = "recognizing"
    CLASSIFYING = "classifying"
    MASKING = "masking"
    ERROR = "error"


class Judgment(Enum):
    """Classifier verdict."""
    SAFE = "SAFE"
    HARMFUL = "HARMFUL"


# ============================================================
# GEOMETRY
# ============================================================

@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in pixels (x, y is the top-left corner)."""
    x: int
    y: int
    width: int
    height: int

    @property
    def x_max(self) -> int:
        return self.x + self.width

    @property
    def y_max(self) -> int:
        return self.y + self.height

    def union(self, other: BoundingBox) -> BoundingBox:
        """Smallest box containing both boxes."""
        x_min = min(self.x, other.x)
        y_min = min(self.y, other.y)
        x_max = max(self.x_max, other.x_max)
        y_max = max(self.y_max, other.y_max)
        return BoundingBox(x_min, y_min, x_max - x_min, y_max - y_min)

    def offset(self, dx: int, dy: int) -> BoundingBox:
        return BoundingBox(self.x + dx, self.y + dy, self.width, self.height)

    def clamp(self, width: int, height: int) -> BoundingBox:
        """Clip the box to a (0, 0, width, height) image."""
        x_min = min(max(self.x, 0), width)
        y_min = min(max(self.y, 0), height)
        x_max = min(max(self.x_max, 0), width)
        y_max = min(max(self.y_max, 0), height)
        return BoundingBox(x_min, y_min, x_max - x_min, y_max - y_min)

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BoundingBox:
        return cls(
            x=int(data.get("x", 0)),
            y=int(data.get("y", 0)),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
        )


@dataclass(frozen=True)
class ROI:
    """
    Region of interest on screen, in screen pixel coordinates.

    Replace-only: the edit surface swaps in a new ROI, nothing mutates one.
    """
    x: int
    y: int
    width: int
    height: int

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    def as_box(self) -> BoundingBox:
        return BoundingBox(self.x, self.y, self.width, self.height)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ROI:
        return cls(
            x=int(data["x"]),
            y=int(data["y"]),
            width=int(data["width"]),
            height=int(data["height"]),
        )

    @classmethod
    def parse(cls, text: str) -> ROI:
        """Parse "x,y,width,height"."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 4:
            raise ValueError(f"ROI must be 'x,y,width,height', got {text!r}")
        x, y, w, h = (int(p) for p in parts)
        return cls(x, y, w, h)


# ============================================================
# SENSOR DATA
# ============================================================

@dataclass
class CaptureResult:
    """
    A still image of the ROI (H x W x 3, RGB).

    origin is the screen position of the image's top-left pixel. It
    differs from the ROI corner when the ROI overhangs the display and
    was clipped.
    """
    image: NDArray[np.uint8]
    width: int
    height: int
    roi: Optional[ROI] = None
    timestamp_ms: float = 0.0
    origin: Optional[Tuple[int, int]] = None

    def __post_init__(self):
        if self.image.shape[0] != self.height or self.image.shape[1] != self.width:
            raise ValueError(
                f"Capture buffer {self.image.shape[1]}x{self.image.shape[0]} "
                f"does not match declared {self.width}x{self.height}"
            )

    @property
    def screen_box(self) -> Optional[BoundingBox]:
        """Where the image sits on screen (None if neither origin nor ROI is known)."""
        if self.origin is not None:
            x, y = self.origin
        elif self.roi is not None:
            x, y = self.roi.x, self.roi.y
        else:
            return None
        return BoundingBox(x, y, self.width, self.height)


@dataclass
class AudioChunk:
    """A slice of raw audio bytes with its capture timestamp (ms)."""
    data: bytes
    timestamp_ms: float

    @property
    def size(self) -> int:
        return len(self.data)


# ============================================================
# RECOGNIZER OUTPUT
# ============================================================

@dataclass
class OCRLine:
    """One recognized text line; bbox is in ROI-image coordinates."""
    text: str
    bbox: BoundingBox
    confidence: float = 1.0

    def to_wire(self) -> Dict[str, Any]:
        return {"text": self.text, "bbox": self.bbox.to_dict()}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> OCRLine:
        return cls(
            text=str(data.get("text", "")),
            bbox=BoundingBox.from_dict(data.get("bbox") or {}),
        )


@dataclass
class TranscriptFragment:
    """
    STT output.

    Partial fragments may be superseded by later ones; a final fragment
    closes its buffer window.
    """
    text: str
    is_final: bool = True
    timestamp_ms: float = 0.0


# ============================================================
# VERDICTS
# ============================================================

@dataclass
class JudgmentResult:
    """Classifier verdict for one text input."""
    judgment: Judgment
    text: str
    reason: Optional[str] = None
    confidence: float = 0.0

    @property
    def is_harmful(self) -> bool:
        return self.judgment == Judgment.HARMFUL


@dataclass
class ModerationResult:
    """
    Aggregate verdict over a batch of OCR lines.

    score is None only when the batch had no lines at all.
    """
    flagged_indices: List[int] = field(default_factory=list)
    score: Optional[float] = None
    judgments: List[JudgmentResult] = field(default_factory=list)

    @property
    def is_flagged(self) -> bool:
        return bool(self.flagged_indices)


# ============================================================
# PER-STREAM STATE
# ============================================================

@dataclass
class GateState:
    """Hysteresis latch. Mutated only by HysteresisGate."""
    active: bool = False
    last_score: Optional[float] = None


@dataclass
class StageSnapshot:
    """Point-in-time view of a stream's state machine."""
    stream: StreamKind
    stage: PipelineStage
    error: Optional[str] = None
    epoch: int = 0
    transitions: int = 0


@dataclass
class MaskRegion:
    """A rectangle to obscure, in screen coordinates."""
    box: BoundingBox
    stream: StreamKind

    @property
    def rect(self) -> Tuple[int, int, int, int]:
        return (self.box.x, self.box.y, self.box.width, self.box.height)
