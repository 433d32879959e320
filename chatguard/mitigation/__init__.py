"""
Mitigation Module.

Responsibilities:
- Mosaic mask over harmful regions
- One alert tone per activation
"""

from .overlay import MosaicOverlay, pixelate
from .tone import AlertTone
from .controller import MitigationController
