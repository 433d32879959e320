"""
Screen Capture Module.

Responsibilities:
- Full-display acquisition (mss)
- ROI cropping
"""

from .sources import BaseCaptureSource, MSSCaptureSource, StaticCaptureSource, get_source
from .region_sampler import RegionSampler
