"""
Guardian Orchestrator.

Builds both detection streams from a GuardianConfig and owns the
collaborators they share:

1. ROI (replace-only, read by both streams)
2. Rule store, classifier and moderation aggregator
3. Mosaic overlay painted by the display loop
4. Event log
5. Optional remote moderation / transcription clients

Streams never share gate or state machine instances.
"""

from __future__ import annotations

import threading
from typing import Optional, Dict, Any
from loguru import logger

from chatguard.core.config import GuardianConfig
from chatguard.core.contracts import ROI, StreamKind
from chatguard.pipeline.state_machine import PipelineStateMachine, TimerFactory
from chatguard.pipeline.streams import ScreenStream, AudioStream
from chatguard.capture.sources import BaseCaptureSource, get_source
from chatguard.capture.region_sampler import RegionSampler
from chatguard.audio.audio_sampler import AudioSampler
from chatguard.recognition import (
    BaseTextRecognizer,
    BaseSpeechRecognizer,
    get_text_recognizer,
    get_speech_recognizer,
)
from chatguard.classify.rules import RuleStore
from chatguard.classify.classifier import Classifier, VerdictModel, get_model
from chatguard.moderation.aggregator import ModerationAggregator, RemoteModerator
from chatguard.safety.hysteresis_gate import HysteresisGate
from chatguard.mitigation.overlay import MosaicOverlay
from chatguard.mitigation.tone import AlertTone
from chatguard.mitigation.controller import MitigationController
from chatguard.storage.event_log import EventLog
from chatguard.transport.remote import RemoteModerationClient, AudioTransportClient


def build_classifier(
    config: GuardianConfig,
    rules: RuleStore,
    model: Optional[VerdictModel] = None,
) -> Classifier:
    """Classifier with the verdict model named in the config."""
    if model is None:
        kwargs = {}
        if config.classifier.model == "openai":
            kwargs["model"] = config.classifier.openai_model
        model = get_model(config.classifier.model, **kwargs)

    return Classifier(
        rules=rules,
        model=model,
        model_threshold=config.classifier.model_threshold,
        rule_confidence=config.classifier.rule_confidence,
    )


def build_speech_recognizer(config: GuardianConfig) -> BaseSpeechRecognizer:
    kwargs: Dict[str, Any] = {}
    if config.audio.recognizer == "google":
        kwargs = {"sample_rate": config.audio.sample_rate, "language": config.audio.language}
    return get_speech_recognizer(config.audio.recognizer, **kwargs)


def build_text_recognizer(config: GuardianConfig) -> BaseTextRecognizer:
    kwargs: Dict[str, Any] = {}
    if config.ocr.recognizer == "tesseract":
        kwargs = {"language": config.ocr.language, "min_confidence": config.ocr.min_confidence}
    return get_text_recognizer(config.ocr.recognizer, **kwargs)


class GuardianOrchestrator:
    """
    Owns the screen and audio streams.

    Every collaborator can be injected, which is how tests run the whole
    pipeline without a display, microphone or speaker.
    """

    def __init__(
        self,
        config: Optional[GuardianConfig] = None,
        capture_source: Optional[BaseCaptureSource] = None,
        text_recognizer: Optional[BaseTextRecognizer] = None,
        speech_recognizer: Optional[BaseSpeechRecognizer] = None,
        audio_sampler: Optional[AudioSampler] = None,
        tone: Optional[AlertTone] = None,
        rules: Optional[RuleStore] = None,
        verdict_model: Optional[VerdictModel] = None,
        timer_factory: Optional[TimerFactory] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Settings (defaults if None)
            capture_source: Display source (config.capture.source if None)
            text_recognizer: OCR backend (config.ocr.recognizer if None)
            speech_recognizer: STT backend (config.audio.recognizer if None)
            audio_sampler: Audio input (sounddevice sampler if None)
            tone: Alert tone (built from config when enabled)
            rules: Rule store (loaded from the data dir if None)
            verdict_model: Model for text no rule decides
            timer_factory: Timer used for FSM cooldowns and audio debounce
        """
        self.config = config or GuardianConfig()
        self.config.validate()
        cfg = self.config

        self._roi_lock = threading.Lock()
        self._roi: Optional[ROI] = cfg.capture.initial_roi()

        # Shared collaborators
        if rules is None:
            rules = RuleStore(cfg.storage.rules_path)
            rules.load()
        self.rules = rules
        self.event_log = EventLog(cfg.storage.events_path)
        self.overlay = MosaicOverlay(block_size=cfg.mitigation.mosaic_block)

        if tone is None and cfg.mitigation.tone_enabled:
            tone = AlertTone(frequency_hz=cfg.mitigation.tone_hz, duration_ms=cfg.mitigation.tone_ms)

        # Remote service (optional)
        self.remote_moderation: Optional[RemoteModerationClient] = None
        self.audio_transport: Optional[AudioTransportClient] = None
        remote: Optional[RemoteModerator] = None
        if cfg.transport.enabled:
            reconnect = {
                "reconnect_delay_s": cfg.transport.reconnect_delay_s,
                "reconnect_delay_max_s": cfg.transport.reconnect_delay_max_s,
                "reconnect_factor": cfg.transport.reconnect_factor,
            }
            self.remote_moderation = RemoteModerationClient(
                cfg.transport.server_url,
                request_timeout_s=cfg.transport.request_timeout_s,
                **reconnect,
            )
            self.audio_transport = AudioTransportClient(cfg.transport.server_url, **reconnect)
            remote = self.remote_moderation

        self.classifier = build_classifier(cfg, rules, verdict_model)
        self.aggregator = ModerationAggregator(self.classifier, remote=remote)

        # Screen stream
        source = capture_source or get_source(cfg.capture.source, monitor_index=cfg.capture.monitor_index)
        self.screen = ScreenStream(
            sampler=RegionSampler(source),
            recognizer=text_recognizer or build_text_recognizer(cfg),
            aggregator=self.aggregator,
            gate=self._build_gate(StreamKind.SCREEN),
            fsm=self._build_fsm(StreamKind.SCREEN, timer_factory),
            mitigation=MitigationController(StreamKind.SCREEN, self.overlay, tone, cfg.mitigation.mode),
            roi_provider=lambda: self.roi,
            event_log=self.event_log,
            interval_s=cfg.capture.interval_ms / 1000.0,
        )

        # Audio stream
        if audio_sampler is None and cfg.audio.enabled:
            audio_sampler = AudioSampler(
                sample_rate=cfg.audio.sample_rate,
                channels=cfg.audio.channels,
                block_ms=cfg.audio.block_ms,
                device_index=cfg.audio.device,
            )
        self.audio = AudioStream(
            recognizer=speech_recognizer or build_speech_recognizer(cfg),
            aggregator=self.aggregator,
            gate=self._build_gate(StreamKind.AUDIO),
            fsm=self._build_fsm(StreamKind.AUDIO, timer_factory),
            mitigation=MitigationController(StreamKind.AUDIO, self.overlay, tone, "roi"),
            roi_provider=lambda: self.roi,
            event_log=self.event_log,
            sampler=audio_sampler,
            flush_window_s=cfg.audio.flush_window_ms / 1000.0,
            max_buffer_bytes=cfg.audio.max_buffer_bytes,
            timer_factory=timer_factory,
            transport=self.audio_transport,
        )

        self._is_running = False

    def _build_gate(self, stream: StreamKind) -> HysteresisGate:
        return HysteresisGate(
            on_threshold=self.config.gate.on_threshold,
            off_threshold=self.config.gate.off_threshold,
            stream=stream,
        )

    def _build_fsm(self, stream: StreamKind, timer_factory: Optional[TimerFactory]) -> PipelineStateMachine:
        return PipelineStateMachine(
            stream,
            error_cooldown_s=self.config.fsm.error_cooldown_s,
            timer_factory=timer_factory,
        )

    # ------------------------------------------------------------
    # ROI
    # ------------------------------------------------------------

    @property
    def roi(self) -> Optional[ROI]:
        with self._roi_lock:
            return self._roi

    def set_roi(self, roi: Optional[ROI]):
        """
        Replace the watched region.

        Clearing it also clears both streams' masks, since no further
        score would ever arrive to deactivate them.
        """
        with self._roi_lock:
            self._roi = roi
        if roi is None or not roi.is_valid:
            self.screen.reset()
            self.audio.reset()
            logger.info("ROI cleared")
        else:
            logger.info(f"ROI set to {roi.x},{roi.y} {roi.width}x{roi.height}")

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def start(self) -> bool:
        """
        Start both streams.

        Returns:
            True if the screen stream is running (audio is optional)
        """
        if self._is_running:
            return True

        if self.remote_moderation is not None:
            self.remote_moderation.start()

        screen_ok = self.screen.start()
        if self.config.audio.enabled:
            self.audio.start()

        self._is_running = screen_ok
        if self.roi is None:
            logger.warning("No ROI set, screen stream will idle until one is given")
        return screen_ok

    def stop(self):
        self.screen.stop()
        self.audio.stop()
        if self.remote_moderation is not None:
            self.remote_moderation.stop()
        self._is_running = False
        logger.info("Guardian stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    def status(self) -> Dict[str, Any]:
        """Both streams' readouts plus the current mask."""
        return {
            "screen": self.screen.status(),
            "audio": self.audio.status(),
            "roi": self.roi,
            "mask": [region.rect for region in self.overlay.regions()],
            "remote": self.remote_moderation.is_connected if self.remote_moderation else None,
        }
