"""
Remote service clients.

Handles:
- Moderation requests: OCR line batches out, flagged indices + score back
- Audio transport: chunks and flush signals out, transcript fragments back

Both degrade to "no remote verdict" while disconnected.
"""

from __future__ import annotations

import asyncio
import base64
import concurrent.futures
import json
import threading
from typing import Optional, Callable, Dict, Any, Sequence
from loguru import logger

import websockets

from chatguard.core.contracts import AudioChunk, OCRLine, ModerationResult, TranscriptFragment
from chatguard.core.errors import TransportError
from chatguard.moderation.aggregator import RemoteModerator
from chatguard.transport.client import ReconnectingClient


def _endpoint(server_url: str, path: str) -> str:
    return server_url.rstrip("/") + path


class RemoteModerationClient(ReconnectingClient, RemoteModerator):
    """
    Client for the /moderation endpoint.

    One request is in flight at a time; the protocol carries no request
    id, so a reply always belongs to the pending request.
    """

    def __init__(self, server_url: str, request_timeout_s: float = 0.8, **kwargs):
        super().__init__(_endpoint(server_url, "/moderation"), name="moderation", **kwargs)
        self.request_timeout_s = request_timeout_s
        self._request_lock = threading.Lock()
        self._pending: Optional[asyncio.Future] = None

    def moderate(self, lines: Sequence[OCRLine]) -> Optional[ModerationResult]:
        ws = self._ws
        loop = self._loop
        if ws is None or loop is None or loop.is_closed():
            return None

        with self._request_lock:
            future = asyncio.run_coroutine_threadsafe(self._request(ws, lines), loop)
            try:
                return future.result(timeout=self.request_timeout_s + 0.5)
            except (asyncio.TimeoutError, concurrent.futures.TimeoutError):
                future.cancel()
                logger.warning(f"[{self.name}] no reply within {self.request_timeout_s}s")
            except (OSError, TransportError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"[{self.name}] request failed: {e}")
        return None

    async def _request(self, ws, lines: Sequence[OCRLine]) -> ModerationResult:
        reply = asyncio.get_running_loop().create_future()
        self._pending = reply
        try:
            message = {"event": "ocr_lines", "lines": [line.to_wire() for line in lines]}
            await ws.send(json.dumps(message, ensure_ascii=False))
            return await asyncio.wait_for(reply, timeout=self.request_timeout_s)
        finally:
            self._pending = None

    def _handle_event(self, event: Optional[str], payload: Dict[str, Any]):
        if event != "tox_lines":
            super()._handle_event(event, payload)
            return

        reply = self._pending
        if reply is None or reply.done():
            logger.debug(f"[{self.name}] late tox_lines reply dropped")
            return

        try:
            raw_score = payload.get("score")
            result = ModerationResult(
                flagged_indices=[int(i) for i in payload.get("indices", [])],
                score=float(raw_score) if raw_score is not None else None,
            )
        except (TypeError, ValueError):
            reply.set_exception(TransportError("malformed tox_lines reply"))
            return
        reply.set_result(result)

    def _on_close(self):
        reply = self._pending
        if reply is not None and not reply.done():
            reply.set_exception(TransportError("connection closed"))


FragmentHandler = Callable[[TranscriptFragment], None]


class AudioTransportClient(ReconnectingClient):
    """Client for the /transcribe endpoint."""

    def __init__(self, server_url: str, on_fragment: Optional[FragmentHandler] = None, **kwargs):
        super().__init__(_endpoint(server_url, "/transcribe"), name="transcribe", **kwargs)
        self.on_fragment = on_fragment
        self.chunks_sent = 0

    def send_chunk(self, chunk: AudioChunk) -> bool:
        sent = self.send({
            "event": "audio_chunk",
            "blob": base64.b64encode(chunk.data).decode("ascii"),
            "ts": chunk.timestamp_ms,
        })
        if sent:
            self.chunks_sent += 1
        return sent

    def flush(self) -> bool:
        """Ask the server to transcribe what it has buffered now."""
        return self.send({"event": "flush"})

    def _handle_event(self, event: Optional[str], payload: Dict[str, Any]):
        if event != "overlay":
            super()._handle_event(event, payload)
            return

        text = payload.get("text")
        if not isinstance(text, str) or self.on_fragment is None:
            return

        fragment = TranscriptFragment(text=text, is_final=not payload.get("partial", False))
        try:
            self.on_fragment(fragment)
        except Exception:
            logger.exception(f"[{self.name}] fragment handler failed")
