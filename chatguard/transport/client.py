"""
Reconnecting WebSocket Client.

Runs an asyncio event loop on a background thread so the pipeline
threads never block on the network. The connection is retried forever
with a growing, capped delay; while it is down, senders are told so
immediately instead of waiting.
"""

from __future__ import annotations

import asyncio
import json
import threading
from typing import Optional, Any, Dict
from loguru import logger

import websockets


def next_delay(delay: float, factor: float, cap: float) -> float:
    """Backoff step: grow by factor, never beyond cap."""
    return min(delay * factor, cap)


class ReconnectingClient:
    """
    Base class for JSON-over-websocket clients.

    Subclasses handle incoming events in _handle_event(); they run on
    the client's own event loop thread.
    """

    def __init__(
        self,
        url: str,
        name: str = "remote",
        reconnect_delay_s: float = 1.0,
        reconnect_delay_max_s: float = 5.0,
        reconnect_factor: float = 2.0,
    ):
        """
        Initialize client.

        Args:
            url: WebSocket endpoint (ws:// or wss://)
            name: Label used in log messages
            reconnect_delay_s: First retry delay
            reconnect_delay_max_s: Retry delay cap
            reconnect_factor: Delay growth per failed attempt
        """
        self.url = url
        self.name = name
        self.reconnect_delay_s = reconnect_delay_s
        self.reconnect_delay_max_s = reconnect_delay_max_s
        self.reconnect_factor = reconnect_factor

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ws: Optional[Any] = None
        self._wake: Optional[asyncio.Event] = None

        # Stats
        self.connect_count = 0
        self.retry_count = 0

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def start(self):
        """Start connecting in the background."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._run_loop, name=f"{self.name}-transport", daemon=True
        )
        self._thread.start()
        logger.info(f"[{self.name}] transport started -> {self.url}")

    def stop(self):
        """Close the connection and stop retrying."""
        self._running = False
        loop = self._loop
        if loop is not None and not loop.is_closed():
            if self._wake is not None:
                loop.call_soon_threadsafe(self._wake.set)
            ws = self._ws
            if ws is not None:
                asyncio.run_coroutine_threadsafe(ws.close(), loop)
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        logger.info(f"[{self.name}] transport stopped")

    def _run_loop(self):
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._connect_forever())
        except Exception:
            logger.exception(f"[{self.name}] transport loop crashed")
        finally:
            self._loop.close()

    async def _connect_forever(self):
        self._wake = asyncio.Event()
        delay = self.reconnect_delay_s

        while self._running:
            try:
                async with websockets.connect(self.url) as ws:
                    self._ws = ws
                    self.connect_count += 1
                    delay = self.reconnect_delay_s
                    logger.info(f"[{self.name}] connected")
                    async for message in ws:
                        self._dispatch(message)
                logger.warning(f"[{self.name}] connection closed")
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"[{self.name}] connection failed: {e}")
            finally:
                self._ws = None
                self._on_close()

            if not self._running:
                break

            self.retry_count += 1
            logger.info(f"[{self.name}] reconnecting in {delay:.1f}s")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            delay = next_delay(delay, self.reconnect_factor, self.reconnect_delay_max_s)

    # ------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------

    def send(self, payload: Dict[str, Any]) -> bool:
        """
        Queue a JSON message without waiting for it to go out.

        Returns:
            False if there is no open connection
        """
        ws = self._ws
        loop = self._loop
        if ws is None or loop is None or loop.is_closed():
            return False
        message = json.dumps(payload, ensure_ascii=False)
        future = asyncio.run_coroutine_threadsafe(ws.send(message), loop)
        future.add_done_callback(self._log_send_failure)
        return True

    def _log_send_failure(self, future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(f"[{self.name}] send failed: {error}")

    def _dispatch(self, message):
        try:
            payload = json.loads(message)
        except ValueError:
            logger.warning(f"[{self.name}] ignoring non-JSON message")
            return
        if not isinstance(payload, dict):
            return
        self._handle_event(payload.get("event"), payload)

    def _handle_event(self, event: Optional[str], payload: Dict[str, Any]):
        logger.debug(f"[{self.name}] unhandled event '{event}'")

    def _on_close(self):
        pass

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def is_running(self) -> bool:
        return self._running
