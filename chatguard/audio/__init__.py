"""
Audio Module.

Responsibilities:
- Audio capture into timestamped chunks
- Debounced aggregation of chunks before speech recognition
"""

from .audio_sampler import AudioSampler
from .chunk_buffer import ChunkBuffer
