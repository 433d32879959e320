from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Dict, List, Optional

import pytest

from chatguard.classify.classifier import Classifier
from chatguard.classify.rules import RuleSet, RuleStore
from chatguard.core.contracts import AudioChunk, BoundingBox, OCRLine, TranscriptFragment
from chatguard.moderation.aggregator import ModerationAggregator
from chatguard.recognition.base import BaseSpeechRecognizer
from chatguard.transport.client import next_delay
from chatguard.transport.remote import AudioTransportClient, RemoteModerationClient
from chatguard.transport.server import PROCESSING_TEXT, GuardianServer, decode_blob


class _FakeSocket:
    def __init__(self, path: str, messages: List[Dict[str, Any]]) -> None:
        self.path = path
        self._messages = [json.dumps(m, ensure_ascii=False) for m in messages]
        self.sent: List[Dict[str, Any]] = []
        self.closed_with: Optional[int] = None

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = code


class _EchoSTT(BaseSpeechRecognizer):
    def __init__(self) -> None:
        self.received: List[bytes] = []

    def transcribe(self, audio: bytes) -> Optional[TranscriptFragment]:
        self.received.append(audio)
        return TranscriptFragment(f"{len(audio)} bytes")


def _server(stt: Optional[BaseSpeechRecognizer] = None) -> GuardianServer:
    store = RuleStore(rules=RuleSet(badwords=("욕설",)))
    return GuardianServer(ModerationAggregator(Classifier(store)), stt or _EchoSTT())


def _drive(server: GuardianServer, socket: _FakeSocket) -> None:
    async def run() -> None:
        await server.handler(socket)
        # let sends scheduled from worker threads land
        await asyncio.sleep(0.05)

    asyncio.run(run())


def test_backoff_grows_to_cap() -> None:
    delays = [1.0]
    for _ in range(4):
        delays.append(next_delay(delays[-1], 2.0, 5.0))
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_decode_blob_accepts_base64_and_byte_lists() -> None:
    assert decode_blob(base64.b64encode(b"\x00\xff").decode()) == b"\x00\xff"
    assert decode_blob([0, 255]) == b"\x00\xff"
    with pytest.raises(ValueError):
        decode_blob("not base64!")
    with pytest.raises(ValueError):
        decode_blob(42)


def test_disconnected_remote_moderation_gives_no_verdict() -> None:
    client = RemoteModerationClient("ws://127.0.0.1:9")
    assert not client.is_connected
    assert client.moderate([OCRLine("욕설", BoundingBox(0, 0, 1, 1))]) is None
    assert client.url == "ws://127.0.0.1:9/moderation"


def test_disconnected_audio_transport_refuses_sends() -> None:
    client = AudioTransportClient("ws://127.0.0.1:9/")
    assert client.url == "ws://127.0.0.1:9/transcribe"
    assert not client.send_chunk(AudioChunk(b"\x00", 0.0))
    assert not client.flush()
    assert client.chunks_sent == 0


def test_overlay_events_become_fragments() -> None:
    received: List[TranscriptFragment] = []
    client = AudioTransportClient("ws://localhost:3001", on_fragment=received.append)

    client._dispatch(json.dumps({"event": "overlay", "text": "[processing...]", "partial": True}))
    client._dispatch(json.dumps({"event": "overlay", "text": "안녕", "partial": False}))
    client._dispatch("garbage")

    assert [(f.text, f.is_final) for f in received] == [("[processing...]", False), ("안녕", True)]


def test_moderation_endpoint_replies_with_flags() -> None:
    socket = _FakeSocket("/moderation", [
        {"event": "ocr_lines", "lines": [
            {"text": "안녕", "bbox": {"x": 0, "y": 0, "width": 10, "height": 10}},
            {"text": "욕설 그만", "bbox": {"x": 0, "y": 10, "width": 10, "height": 10}},
        ]},
        {"event": "something_else"},
    ])
    _drive(_server(), socket)

    assert len(socket.sent) == 1
    reply = socket.sent[0]
    assert reply["event"] == "tox_lines"
    assert reply["indices"] == [1]
    assert reply["score"] >= 0.5


def test_transcribe_endpoint_buffers_until_flush() -> None:
    stt = _EchoSTT()
    blob = base64.b64encode(b"\x01\x02\x03").decode()
    socket = _FakeSocket("/transcribe", [
        {"event": "audio_chunk", "blob": blob, "ts": 1},
        {"event": "audio_chunk", "blob": [4, 5], "ts": 2},
        {"event": "flush"},
    ])
    _drive(_server(stt), socket)

    assert stt.received == [b"\x01\x02\x03\x04\x05"]
    assert socket.sent[:2] == [
        {"event": "overlay", "text": PROCESSING_TEXT, "partial": True},
        {"event": "overlay", "text": PROCESSING_TEXT, "partial": True},
    ]
    assert socket.sent[2] == {"event": "overlay", "text": "5 bytes", "partial": False}


def test_unknown_endpoint_is_closed() -> None:
    socket = _FakeSocket("/elsewhere", [])
    _drive(_server(), socket)
    assert socket.closed_with == 1008
