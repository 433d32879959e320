"""
Moderation / Transcription Server.

WebSocket endpoints:
- /moderation: {"event": "ocr_lines", "lines": [{text, bbox}]}
               -> {"event": "tox_lines", "indices": [...], "score": float}
- /transcribe: {"event": "audio_chunk", "blob": <base64>, "ts": ms}
               {"event": "flush"}
               -> {"event": "overlay", "text": str, "partial": bool}

Each /transcribe connection owns its own debounced chunk buffer; the
buffer is dropped when the client disconnects.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import json
from typing import Optional, Any, Dict
from loguru import logger

import websockets

from chatguard.audio.chunk_buffer import ChunkBuffer
from chatguard.core.contracts import AudioChunk, OCRLine
from chatguard.core.errors import RecognitionError
from chatguard.moderation.aggregator import ModerationAggregator
from chatguard.recognition.base import BaseSpeechRecognizer


PROCESSING_TEXT = "[processing...]"


def _request_path(websocket) -> str:
    request = getattr(websocket, "request", None)
    if request is not None:
        return request.path
    return getattr(websocket, "path", "/")


def _decode(message) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(message)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def decode_blob(blob: Any) -> bytes:
    """
    Audio bytes from the wire.

    Accepts a base64 string or a list of byte values.

    Raises:
        ValueError: If the blob is neither
    """
    if isinstance(blob, str):
        try:
            return base64.b64decode(blob, validate=True)
        except binascii.Error as e:
            raise ValueError(f"bad base64 audio blob: {e}") from e
    if isinstance(blob, list):
        return bytes(blob)
    raise ValueError(f"unsupported audio blob type {type(blob).__name__}")


class GuardianServer:
    """Serves remote moderation and transcription over websockets."""

    def __init__(
        self,
        aggregator: ModerationAggregator,
        speech_recognizer: BaseSpeechRecognizer,
        host: str = "0.0.0.0",
        port: int = 3001,
        flush_window_s: float = 2.5,
        max_buffer_bytes: int = 10 * 1024 * 1024,
    ):
        """
        Initialize server.

        Args:
            aggregator: Moderation for /moderation batches
            speech_recognizer: STT backend for /transcribe
            host: Bind address
            port: Bind port
            flush_window_s: Quiet window per transcription session
            max_buffer_bytes: Audio cap per transcription session
        """
        self.aggregator = aggregator
        self.speech_recognizer = speech_recognizer
        self.host = host
        self.port = port
        self.flush_window_s = flush_window_s
        self.max_buffer_bytes = max_buffer_bytes
        self._session_ids = itertools.count(1)

    async def serve(self, stop: Optional[asyncio.Event] = None):
        """Serve until stop is set (forever if None)."""
        stop = stop or asyncio.Event()
        async with websockets.serve(self.handler, self.host, self.port):
            logger.info(f"Serving /moderation and /transcribe on ws://{self.host}:{self.port}")
            await stop.wait()
        logger.info("Server stopped")

    def run(self):
        asyncio.run(self.serve())

    async def handler(self, websocket):
        path = _request_path(websocket).rstrip("/")
        session = next(self._session_ids)

        if path == "/moderation":
            runner = self._moderation_session
        elif path == "/transcribe":
            runner = self._transcribe_session
        else:
            logger.warning(f"Rejecting connection to unknown endpoint '{path}'")
            await websocket.close(code=1008, reason="unknown endpoint")
            return

        logger.info(f"[{path}#{session}] client connected")
        try:
            await runner(websocket, f"{path}#{session}")
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"[{path}#{session}] connection lost: {e}")
        logger.info(f"[{path}#{session}] client disconnected")

    # ------------------------------------------------------------
    # /moderation
    # ------------------------------------------------------------

    async def _moderation_session(self, websocket, label: str):
        loop = asyncio.get_running_loop()

        async for message in websocket:
            payload = _decode(message)
            if payload is None or payload.get("event") != "ocr_lines":
                continue

            try:
                lines = [OCRLine.from_wire(item) for item in payload.get("lines", [])]
            except (AttributeError, TypeError, ValueError, KeyError) as e:
                logger.warning(f"[{label}] malformed ocr_lines: {e}")
                continue

            result = await loop.run_in_executor(None, self.aggregator.aggregate, lines)
            logger.debug(
                f"[{label}] {len(lines)} lines, flagged={result.flagged_indices} score={result.score}"
            )
            await websocket.send(json.dumps({
                "event": "tox_lines",
                "indices": result.flagged_indices,
                "score": result.score if result.score is not None else 0.0,
            }))

    # ------------------------------------------------------------
    # /transcribe
    # ------------------------------------------------------------

    async def _transcribe_session(self, websocket, label: str):
        loop = asyncio.get_running_loop()
        buffer = ChunkBuffer(
            on_flush=lambda audio: self._transcribe(websocket, loop, audio, label),
            flush_window_s=self.flush_window_s,
            max_bytes=self.max_buffer_bytes,
            name=label,
        )

        try:
            async for message in websocket:
                payload = _decode(message)
                if payload is None:
                    continue
                event = payload.get("event")

                if event == "audio_chunk":
                    try:
                        data = decode_blob(payload.get("blob"))
                        timestamp = float(payload.get("ts", 0.0))
                    except (TypeError, ValueError) as e:
                        logger.warning(f"[{label}] malformed audio_chunk: {e}")
                        continue
                    buffer.append(AudioChunk(data=data, timestamp_ms=timestamp))
                    if buffer.pending_chunks:
                        await websocket.send(_overlay(PROCESSING_TEXT, partial=True))

                elif event == "flush":
                    logger.debug(f"[{label}] flush requested")
                    await loop.run_in_executor(None, buffer.flush)
        finally:
            buffer.clear()

    def _transcribe(self, websocket, loop: asyncio.AbstractEventLoop, audio: bytes, label: str):
        # Runs on the buffer's timer thread or an executor thread
        try:
            fragment = self.speech_recognizer.transcribe(audio)
        except RecognitionError as e:
            logger.warning(f"[{label}] transcription failed: {e}")
            return
        if fragment is None or not fragment.text:
            return
        if loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(
            websocket.send(_overlay(fragment.text, partial=not fragment.is_final)), loop
        )


def _overlay(text: str, partial: bool) -> str:
    return json.dumps({"event": "overlay", "text": text, "partial": partial}, ensure_ascii=False)
