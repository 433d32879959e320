#!/usr/bin/env python3
"""
Chat Guardian - Live Screen and Voice Moderation

Main entry point.

Usage:
    python main.py run [--config CONFIG_PATH] [--roi X,Y,W,H] [--headless]
    python main.py serve [--config CONFIG_PATH]
    python main.py rules [--add-badword TERM] [--add-whitelist TERM]

Preview Window Controls:
    S     - Select the region to watch
    F     - Flush buffered audio now
    C     - Clear the mask
    Q     - Quit
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path
from typing import Optional, Dict, Any, List

import cv2
import numpy as np
from dotenv import load_dotenv
from loguru import logger

from chatguard.core.config import GuardianConfig, load_config
from chatguard.core.contracts import ROI
from chatguard.core.errors import ConfigError
from chatguard.classify.rules import RuleSet, RuleStore
from chatguard.moderation.aggregator import ModerationAggregator
from chatguard.pipeline.orchestrator import (
    GuardianOrchestrator,
    build_classifier,
    build_speech_recognizer,
)
from chatguard.transport.server import GuardianServer


# ============================================================
# LOGGING CONFIGURATION
# ============================================================

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        colorize=True,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {module}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )


# ============================================================
# PREVIEW WINDOW
# ============================================================

class PreviewWindow:
    """Shows the watched region with the live mask and a score readout."""

    def __init__(self, guardian: GuardianOrchestrator, window_name: str = "Chat Guardian"):
        self.guardian = guardian
        self.window_name = window_name
        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)

    def render(self):
        frame = self.guardian.screen.sampler.source.grab()
        roi = self.guardian.roi

        if frame is None:
            canvas = np.zeros((240, 480, 3), dtype=np.uint8)
            origin = (0, 0)
        elif roi is not None and roi.is_valid:
            box = roi.as_box().offset(-frame.origin[0], -frame.origin[1]).clamp(frame.width, frame.height)
            if box.width > 0 and box.height > 0:
                canvas = frame.image[box.y:box.y_max, box.x:box.x_max]
                origin = (box.x + frame.origin[0], box.y + frame.origin[1])
            else:
                canvas, origin = frame.image, frame.origin
        else:
            canvas, origin = frame.image, frame.origin

        masked = self.guardian.overlay.render(canvas, origin=origin)
        display = cv2.cvtColor(masked, cv2.COLOR_RGB2BGR)
        display = self._with_readout(display, self.guardian.status())
        cv2.imshow(self.window_name, display)

    def _with_readout(self, frame: np.ndarray, status: Dict[str, Any]) -> np.ndarray:
        panel_h = 90
        h, w = frame.shape[:2]
        out = np.zeros((h + panel_h, max(w, 420), 3), dtype=np.uint8)
        out[:h, :w] = frame

        y = h + 22
        for key in ("screen", "audio"):
            s = status[key]
            score = "--" if s["score"] is None else f"{s['score']:.2f}"
            color = (0, 0, 255) if s["active"] else (0, 255, 0)
            text = f"{key.upper():6} {s['stage']:<11} score {score}  dropped {s['dropped_ticks']}"
            cv2.putText(out, text, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1)
            y += 22

        transcript = status["audio"].get("transcript") or ""
        if len(transcript) > 48:
            transcript = transcript[:48] + "..."
        cv2.putText(out, f"STT: {transcript}", (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 200, 100), 1)
        return out

    def select_roi(self) -> Optional[ROI]:
        """Let the user drag a rectangle over the full display."""
        frame = self.guardian.screen.sampler.source.grab()
        if frame is None:
            logger.warning("No display available to select a region from")
            return None
        display = cv2.cvtColor(frame.image, cv2.COLOR_RGB2BGR)
        x, y, w, h = cv2.selectROI("Select region", display, showCrosshair=False)
        cv2.destroyWindow("Select region")
        if w <= 0 or h <= 0:
            return None
        return ROI(x=int(x) + frame.origin[0], y=int(y) + frame.origin[1], width=int(w), height=int(h))

    def close(self):
        cv2.destroyAllWindows()


# ============================================================
# COMMANDS
# ============================================================

def _load(args) -> GuardianConfig:
    config = load_config(args.config)
    server_url = os.environ.get("CHATGUARD_SERVER_URL")
    if server_url:
        config.transport.server_url = server_url
    return config


def run_guardian(args) -> int:
    config = _load(args)
    guardian = GuardianOrchestrator(config)

    if args.roi:
        guardian.set_roi(ROI.parse(args.roi))

    if not guardian.start():
        logger.error("Failed to start guardian")
        return 1

    preview = None if args.headless else PreviewWindow(guardian)
    logger.info("Guardian running" + ("" if args.headless else " (press Q in the preview to quit)"))

    last_report = 0.0
    try:
        while True:
            if preview is None:
                time.sleep(0.2)
                if time.time() - last_report >= 5.0:
                    status = guardian.status()
                    logger.info(
                        f"screen={status['screen']['stage']} ({status['screen']['score']}) "
                        f"audio={status['audio']['stage']} ({status['audio']['score']})"
                    )
                    last_report = time.time()
                continue

            preview.render()
            key = cv2.waitKey(30) & 0xFF
            if key == ord("q"):
                break
            elif key == ord("s"):
                roi = preview.select_roi()
                if roi is not None:
                    guardian.set_roi(roi)
            elif key == ord("f"):
                guardian.audio.flush()
            elif key == ord("c"):
                guardian.screen.reset()
                guardian.audio.reset()

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        guardian.stop()
        if preview is not None:
            preview.close()

    return 0


def run_server(args) -> int:
    config = _load(args)
    rules = RuleStore(config.storage.rules_path)
    rules.load()

    server = GuardianServer(
        aggregator=ModerationAggregator(build_classifier(config, rules)),
        speech_recognizer=build_speech_recognizer(config),
        host=args.host or config.server.host,
        port=args.port or config.server.port,
        flush_window_s=config.audio.flush_window_ms / 1000.0,
        max_buffer_bytes=config.audio.max_buffer_bytes,
    )
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    return 0


def show_rules(args) -> int:
    config = _load(args)
    store = RuleStore(config.storage.rules_path)
    rules = store.load()

    if args.add_badword or args.add_whitelist:
        rules = RuleSet(
            badwords=rules.badwords + tuple(args.add_badword or ()),
            whitelist=rules.whitelist + tuple(args.add_whitelist or ()),
        )
        store.replace(rules)
        rules = store.snapshot()

    print(json.dumps(rules.to_dict(), ensure_ascii=False, indent=2))
    return 0


# ============================================================
# ENTRY POINT
# ============================================================

COMMANDS = ("run", "serve", "rules")


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", type=str, default=None, help="Path to configuration file")
    common.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    common.add_argument("--log-file", type=str, default=None, help="Also log to this file")

    parser = argparse.ArgumentParser(
        description="Chat Guardian - Live Screen and Voice Moderation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    commands = parser.add_subparsers(dest="command")

    run_cmd = commands.add_parser("run", parents=[common], help="Watch the screen and microphone")
    run_cmd.add_argument("--roi", type=str, default=None, help="Region to watch as x,y,width,height")
    run_cmd.add_argument("--headless", action="store_true", help="No preview window")
    run_cmd.set_defaults(handler=run_guardian)

    serve_cmd = commands.add_parser("serve", parents=[common], help="Run the moderation/transcription server")
    serve_cmd.add_argument("--host", type=str, default=None)
    serve_cmd.add_argument("--port", type=int, default=None)
    serve_cmd.set_defaults(handler=run_server)

    rules_cmd = commands.add_parser("rules", parents=[common], help="Print (and extend) the rule set")
    rules_cmd.add_argument("--add-badword", action="append", metavar="TERM")
    rules_cmd.add_argument("--add-whitelist", action="append", metavar="TERM")
    rules_cmd.set_defaults(handler=show_rules)

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse the command line.

    Without a subcommand the arguments are parsed as "run", so
    `main.py --roi 0,0,400,200` keeps its flags.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    if not any(arg in COMMANDS for arg in argv) and not {"-h", "--help"} & set(argv):
        argv.insert(0, "run")
    return build_parser().parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()

    args = parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        return args.handler(args)
    except (ConfigError, ValueError) as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
