"""
Error taxonomy.

No error in this pipeline is fatal to the process. Each category is
caught at its own stage boundary and turned into a state transition:
- SensorUnavailableError: transient no-op, stream returns to idle
- RecognitionError: stream enters error, cooldown, then idle
- BufferOverflowError: buffer discarded, warning logged, stream continues
- TransportError: absorbed by the transport's reconnect loop
"""


class GuardianError(Exception):
    """Base class for all Chat Guardian errors."""


class ConfigError(GuardianError):
    """Invalid or unreadable configuration."""


class SensorUnavailableError(GuardianError):
    """No capture source, no microphone, or an unusable crop."""


class RecognitionError(GuardianError):
    """OCR/STT backend failed or was handed a malformed frame."""


class BufferOverflowError(GuardianError):
    """Aggregated audio exceeded the configured byte cap."""

    def __init__(self, total_bytes: int, limit: int):
        super().__init__(f"Audio buffer {total_bytes} bytes exceeds cap of {limit} bytes")
        self.total_bytes = total_bytes
        self.limit = limit


class TransportError(GuardianError):
    """Remote service unreachable or returned an unusable reply."""
