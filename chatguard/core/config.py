"""
Configuration for Chat Guardian.

Settings come from a YAML file (config/settings.yaml by default) and are
mapped onto a tree of dataclasses. Missing keys keep their defaults,
unknown keys are ignored with a warning, wrongly-typed values raise
ConfigError.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Dict, Any
import yaml
from loguru import logger

from chatguard.core.contracts import ROI
from chatguard.core.errors import ConfigError


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "settings.yaml"


@dataclass
class CaptureConfig:
    """Screen stream settings."""
    interval_ms: int = 1000
    source: str = "mss"
    monitor_index: int = 1
    roi: Optional[Dict[str, int]] = None

    def initial_roi(self) -> Optional[ROI]:
        if not self.roi:
            return None
        try:
            return ROI.from_dict(self.roi)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"capture.roi is malformed: {e}") from e


@dataclass
class AudioConfig:
    """Audio stream settings."""
    enabled: bool = True
    sample_rate: int = 16000
    channels: int = 1
    block_ms: int = 250
    device: Optional[int] = None
    flush_window_ms: int = 2500
    max_buffer_bytes: int = 10 * 1024 * 1024
    recognizer: str = "stub"
    language: str = "ko-KR"


@dataclass
class OCRConfig:
    recognizer: str = "stub"
    language: str = "kor+eng"
    min_confidence: float = 0.0


@dataclass
class ClassifierConfig:
    model: str = "rule_only"  # rule_only | local | openai
    model_threshold: float = 0.5
    rule_confidence: float = 0.9
    openai_model: str = "omni-moderation-latest"


@dataclass
class GateConfig:
    on_threshold: float = 0.7
    off_threshold: float = 0.4


@dataclass
class FSMConfig:
    error_cooldown_s: float = 2.0


@dataclass
class MitigationConfig:
    mode: str = "roi"  # roi | lines
    mosaic_block: int = 12
    tone_hz: float = 880.0
    tone_ms: int = 200
    tone_enabled: bool = True


@dataclass
class StorageConfig:
    data_dir: str = "~/.chatguard"
    rules_file: str = "rules.json"
    events_file: str = "events.jsonl"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def rules_path(self) -> Path:
        return self.data_path / self.rules_file

    @property
    def events_path(self) -> Path:
        return self.data_path / self.events_file


@dataclass
class TransportConfig:
    """Remote moderation / transcription service."""
    enabled: bool = False
    server_url: str = "ws://localhost:3001"
    reconnect_delay_s: float = 1.0
    reconnect_delay_max_s: float = 5.0
    reconnect_factor: float = 2.0
    request_timeout_s: float = 0.8


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3001


@dataclass
class GuardianConfig:
    """Top-level configuration."""
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    fsm: FSMConfig = field(default_factory=FSMConfig)
    mitigation: MitigationConfig = field(default_factory=MitigationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def validate(self):
        """Cross-field checks that the per-field type check cannot catch."""
        if self.gate.on_threshold <= self.gate.off_threshold:
            raise ConfigError(
                f"gate.on_threshold ({self.gate.on_threshold}) must be greater than "
                f"gate.off_threshold ({self.gate.off_threshold})"
            )
        for name in ("on_threshold", "off_threshold"):
            value = getattr(self.gate, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"gate.{name} must be within [0, 1], got {value}")
        if self.capture.interval_ms <= 0:
            raise ConfigError("capture.interval_ms must be positive")
        if self.audio.flush_window_ms <= 0:
            raise ConfigError("audio.flush_window_ms must be positive")
        if self.audio.max_buffer_bytes <= 0:
            raise ConfigError("audio.max_buffer_bytes must be positive")
        if self.mitigation.mode not in ("roi", "lines"):
            raise ConfigError(f"mitigation.mode must be 'roi' or 'lines', got {self.mitigation.mode!r}")
        if self.transport.reconnect_delay_max_s < self.transport.reconnect_delay_s:
            raise ConfigError("transport.reconnect_delay_max_s must be >= reconnect_delay_s")
        self.capture.initial_roi()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> GuardianConfig:
        config = cls()
        if not data:
            return config
        if not isinstance(data, dict):
            raise ConfigError("Top-level configuration must be a mapping")

        for section_name, section_data in data.items():
            if not hasattr(config, section_name):
                logger.warning(f"Ignoring unknown config section '{section_name}'")
                continue
            section = getattr(config, section_name)
            _apply_section(section, section_name, section_data)

        config.validate()
        return config


def _apply_section(section: Any, section_name: str, data: Any):
    """Copy values from a mapping onto a section dataclass, checking types."""
    if data is None:
        return
    if not isinstance(data, dict):
        raise ConfigError(f"Config section '{section_name}' must be a mapping")

    known = {f.name: f for f in fields(section)}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key '{section_name}.{key}'")
            continue

        default = getattr(section, key)
        if default is None or value is None:
            setattr(section, key, value)
            continue

        expected = type(default)
        if expected is float and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        elif expected is bool and not isinstance(value, bool):
            raise ConfigError(f"{section_name}.{key} must be a boolean, got {value!r}")
        elif expected is int and isinstance(value, bool):
            raise ConfigError(f"{section_name}.{key} must be an integer, got {value!r}")
        elif not isinstance(value, expected):
            raise ConfigError(
                f"{section_name}.{key} must be {expected.__name__}, got {type(value).__name__}"
            )
        setattr(section, key, value)


def load_config(config_path: Optional[str] = None) -> GuardianConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Explicit path. Falls back to config/settings.yaml,
            then to built-in defaults.

    Returns:
        Validated configuration
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
    elif DEFAULT_CONFIG_PATH.exists():
        path = DEFAULT_CONFIG_PATH
    else:
        logger.info("No config file found, using defaults")
        return GuardianConfig()

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config {path}: {e}") from e

    logger.info(f"Loaded config from {path}")
    return GuardianConfig.from_dict(data)
