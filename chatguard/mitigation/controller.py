"""
Mitigation Controller.

Drives the visible response from a stream's gate output:
- Activation edge: mask the ROI (or the flagged lines) and beep once
- Still active: keep the mask, follow moved lines, no extra beeps
- Deactivation edge: clear the mask

Tone playback is dispatched to a worker thread and its failures are
logged, never raised into the gate update.
"""

from __future__ import annotations

import threading
from typing import Optional, List, Sequence
from loguru import logger

from chatguard.core.contracts import ROI, BoundingBox, OCRLine, StreamKind
from chatguard.mitigation.overlay import MosaicOverlay
from chatguard.mitigation.tone import AlertTone


class MitigationController:
    """Per-stream mask + tone driver."""

    def __init__(
        self,
        stream: StreamKind,
        overlay: MosaicOverlay,
        tone: Optional[AlertTone] = None,
        mode: str = "roi",
    ):
        """
        Initialize mitigation controller.

        Args:
            stream: Owning stream
            overlay: Shared overlay the mask is drawn on
            tone: Alert tone (None disables the beep)
            mode: "roi" masks the whole ROI, "lines" masks flagged lines only
        """
        if mode not in ("roi", "lines"):
            raise ValueError(f"Unknown mitigation mode '{mode}'")
        self.stream = stream
        self.overlay = overlay
        self.tone = tone
        self.mode = mode

        self._lock = threading.Lock()
        self._active = False
        self._regions: List[BoundingBox] = []
        self._tone_thread: Optional[threading.Thread] = None
        self.activations = 0

    def apply(self, active: bool, regions: Sequence[BoundingBox]):
        """
        Bring the mask in line with the gate.

        Args:
            active: Gate output for this cycle
            regions: Boxes to mask while active (screen coordinates)
        """
        regions = list(regions)
        with self._lock:
            was_active = self._active
            self._active = active
            changed = regions != self._regions
            if active:
                self._regions = regions
            else:
                self._regions = []

        if active and not was_active:
            self.activations += 1
            self.overlay.show(self.stream, regions)
            logger.info(f"[{self.stream.value}] mask ON over {len(regions)} region(s)")
            self._play_tone()
        elif active and changed:
            self.overlay.show(self.stream, regions)
        elif not active and was_active:
            self.overlay.clear(self.stream)
            logger.info(f"[{self.stream.value}] mask OFF")

    def mask_geometry(
        self,
        roi: Optional[ROI],
        lines: Sequence[OCRLine] = (),
        flagged: Sequence[int] = (),
        image_box: Optional[BoundingBox] = None,
    ) -> List[BoundingBox]:
        """
        Screen-space boxes to mask.

        In "lines" mode each flagged line's box is moved from image
        coordinates to screen coordinates and clipped to the image.
        image_box is where the recognized image sits on screen; it is
        smaller than the ROI when the ROI overhangs the display. Without
        line data (audio stream) the whole ROI is masked.

        Args:
            roi: Current ROI
            lines: Recognized lines (boxes relative to the image)
            flagged: Indices of lines to mask
            image_box: Screen box of the recognized image (ROI if None)
        """
        if roi is None or not roi.is_valid:
            return []

        if self.mode == "lines" and flagged:
            area = image_box or roi.as_box()
            boxes = []
            for index in flagged:
                if not 0 <= index < len(lines):
                    continue
                local = lines[index].bbox.clamp(area.width, area.height)
                if local.width > 0 and local.height > 0:
                    boxes.append(local.offset(area.x, area.y))
            if boxes:
                return boxes

        return [roi.as_box()]

    def reset(self):
        """Clear the mask without waiting for the gate."""
        with self._lock:
            was_active = self._active
            self._active = False
            self._regions = []
        if was_active:
            self.overlay.clear(self.stream)

    def _play_tone(self):
        if self.tone is None:
            return
        thread = threading.Thread(target=self._tone_worker, daemon=True)
        self._tone_thread = thread
        thread.start()

    def _tone_worker(self):
        try:
            self.tone.play()
        except Exception as e:
            logger.warning(f"[{self.stream.value}] alert tone failed: {e}")

    def wait_for_tone(self, timeout: float = 1.0) -> bool:
        """Block until the last dispatched tone call returns. True if it did."""
        thread = self._tone_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._active
