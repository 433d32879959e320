"""
Mosaic Overlay.

Holds the rectangles that must be obscured and paints them onto frames.

The gate runs on a stream thread while painting happens on whichever
thread owns the display, so show()/clear() only swap region lists under
a lock (a non-blocking handoff) and render() reads a copy.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Tuple
import numpy as np
from numpy.typing import NDArray
import cv2

from chatguard.core.contracts import BoundingBox, MaskRegion, StreamKind


class MosaicOverlay:
    """
    Opaque mosaic mask over screen regions, keyed by stream.

    Each stream owns its own set of regions so one stream clearing its
    mask never removes the other stream's.
    """

    def __init__(self, block_size: int = 12):
        """
        Args:
            block_size: Mosaic cell size in pixels
        """
        self.block_size = max(2, int(block_size))
        self._lock = threading.Lock()
        self._regions: Dict[StreamKind, List[BoundingBox]] = {}

    def show(self, stream: StreamKind, boxes: List[BoundingBox]):
        """Replace the stream's masked regions (screen coordinates)."""
        with self._lock:
            self._regions[stream] = [b for b in boxes if b.width > 0 and b.height > 0]

    def clear(self, stream: StreamKind):
        with self._lock:
            self._regions.pop(stream, None)

    def regions(self) -> List[MaskRegion]:
        """Snapshot of every masked region."""
        with self._lock:
            return [
                MaskRegion(box=box, stream=stream)
                for stream, boxes in self._regions.items()
                for box in boxes
            ]

    @property
    def is_active(self) -> bool:
        with self._lock:
            return any(self._regions.values())

    def render(
        self,
        frame: NDArray[np.uint8],
        origin: Tuple[int, int] = (0, 0),
    ) -> NDArray[np.uint8]:
        """
        Paint the mask onto a frame.

        Args:
            frame: Image (H x W x C) whose top-left sits at origin on screen
            origin: Screen coordinates of the frame's top-left pixel

        Returns:
            A new frame with every masked region pixelated
        """
        output = frame.copy()
        height, width = output.shape[:2]

        for region in self.regions():
            box = region.box.offset(-origin[0], -origin[1]).clamp(width, height)
            if box.width <= 0 or box.height <= 0:
                continue
            patch = output[box.y:box.y_max, box.x:box.x_max]
            output[box.y:box.y_max, box.x:box.x_max] = pixelate(patch, self.block_size)

        return output


def pixelate(patch: NDArray[np.uint8], block_size: int) -> NDArray[np.uint8]:
    """Downscale then upscale with nearest-neighbour to a coarse mosaic."""
    h, w = patch.shape[:2]
    small_w = max(1, w // block_size)
    small_h = max(1, h // block_size)
    small = cv2.resize(patch, (small_w, small_h), interpolation=cv2.INTER_LINEAR)
    return cv2.resize(small, (w, h), interpolation=cv2.INTER_NEAREST)
