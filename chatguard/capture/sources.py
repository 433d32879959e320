"""
Capture source providers.

A capture source returns a raw RGB bitmap of an entire display plus the
display's origin in screen coordinates. RegionSampler crops the ROI out
of it. No display available means None, never an exception.

To add a new source:
1. Inherit from BaseCaptureSource
2. Implement grab()
3. Register it in the SOURCES dict below
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple, Dict, Type
import numpy as np
from numpy.typing import NDArray
import cv2
import mss
from mss.exception import ScreenShotError
from loguru import logger


@dataclass
class DisplayFrame:
    """Full-display bitmap and the display's top-left in screen pixels."""
    image: NDArray[np.uint8]  # H x W x 3, RGB
    origin: Tuple[int, int] = (0, 0)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


class BaseCaptureSource(ABC):
    """Abstract base class for display capture."""

    def start(self) -> bool:
        """Prepare the source. Returns False if no display is available."""
        return True

    def stop(self) -> None:
        pass

    @abstractmethod
    def grab(self) -> Optional[DisplayFrame]:
        """
        Capture the whole display.

        Returns:
            DisplayFrame, or None if no display source is available
        """
        pass


class MSSCaptureSource(BaseCaptureSource):
    """
    Screen grabber backed by mss.

    A new mss handle is opened per grab: mss handles are not safe to
    share across threads and the screen stream runs on its own thread.
    """

    def __init__(self, monitor_index: int = 1):
        """
        Args:
            monitor_index: mss monitor index (0 = all monitors combined,
                1 = primary display)
        """
        self.monitor_index = monitor_index

    def start(self) -> bool:
        try:
            with mss.mss() as sct:
                count = len(sct.monitors)
        except ScreenShotError as e:
            logger.error(f"No display available for capture: {e}")
            return False
        logger.info(f"Screen capture ready ({count - 1} monitor(s))")
        return count > 0

    def grab(self) -> Optional[DisplayFrame]:
        try:
            with mss.mss() as sct:
                monitors = sct.monitors
                if not monitors:
                    return None
                idx = self.monitor_index
                if idx < 0 or idx >= len(monitors):
                    idx = 0
                monitor = monitors[idx]
                shot = sct.grab(monitor)
        except ScreenShotError as e:
            logger.warning(f"Screen grab failed: {e}")
            return None

        bgra = np.asarray(shot, dtype=np.uint8)
        rgb = cv2.cvtColor(bgra, cv2.COLOR_BGRA2RGB)
        return DisplayFrame(
            image=rgb,
            origin=(int(monitor.get("left", 0)), int(monitor.get("top", 0))),
        )


class StaticCaptureSource(BaseCaptureSource):
    """Serves a fixed bitmap. Used for replaying a screenshot and in tests."""

    def __init__(self, image: Optional[NDArray[np.uint8]], origin: Tuple[int, int] = (0, 0)):
        self.image = image
        self.origin = origin
        self.grab_count = 0

    def grab(self) -> Optional[DisplayFrame]:
        self.grab_count += 1
        if self.image is None:
            return None
        return DisplayFrame(image=self.image, origin=self.origin)


# Registry of available sources
SOURCES: Dict[str, Type[BaseCaptureSource]] = {
    "mss": MSSCaptureSource,
}


def get_source(name: str, monitor_index: int = 1) -> BaseCaptureSource:
    """
    Get a capture source instance by name.

    Raises:
        ValueError: If source name is not registered
    """
    if name not in SOURCES:
        available = ", ".join(SOURCES.keys())
        raise ValueError(f"Unknown capture source '{name}'. Available: {available}")
    return SOURCES[name](monitor_index=monitor_index)
