"""
Region Sampler.

Produces a still image of the ROI on demand:
- Absent ROI or non-positive extent is a no-op (None), not an error
- A missing display or a crop that misses the display yields None
- ROI portions outside the display are clipped away
"""

from __future__ import annotations

import time
from typing import Optional
import numpy as np
from loguru import logger

from chatguard.core.contracts import ROI, BoundingBox, CaptureResult
from chatguard.capture.sources import BaseCaptureSource


class RegionSampler:
    """
    Crops the ROI out of a full-display capture.

    The ROI is read, never modified; callers pass the current reference
    on every call so a replaced ROI takes effect on the next sample.
    """

    def __init__(self, source: BaseCaptureSource):
        self.source = source
        self._samples_taken = 0

    def sample(self, roi: Optional[ROI]) -> Optional[CaptureResult]:
        """
        Capture the ROI.

        Args:
            roi: Region in screen coordinates

        Returns:
            CaptureResult, or None when there is nothing to capture
        """
        if roi is None or not roi.is_valid:
            return None

        try:
            frame = self.source.grab()
        except Exception as e:
            logger.warning(f"Capture source raised: {e}")
            return None

        if frame is None:
            logger.debug("No display source available")
            return None

        # ROI is in screen coordinates; the frame starts at the display origin
        local = roi.as_box().offset(-frame.origin[0], -frame.origin[1])
        clipped = local.clamp(frame.width, frame.height)
        if clipped.width <= 0 or clipped.height <= 0:
            logger.warning(
                f"ROI {roi} lies outside the {frame.width}x{frame.height} display"
            )
            return None

        crop = _crop(frame.image, clipped)
        self._samples_taken += 1

        return CaptureResult(
            image=crop,
            width=clipped.width,
            height=clipped.height,
            roi=roi,
            timestamp_ms=time.time() * 1000,
            origin=(clipped.x + frame.origin[0], clipped.y + frame.origin[1]),
        )

    @property
    def samples_taken(self) -> int:
        return self._samples_taken


def _crop(image: np.ndarray, box: BoundingBox) -> np.ndarray:
    return np.ascontiguousarray(image[box.y:box.y_max, box.x:box.x_max])
