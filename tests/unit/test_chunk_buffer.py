from __future__ import annotations

from typing import List

from chatguard.audio.chunk_buffer import ChunkBuffer
from chatguard.core.contracts import AudioChunk


def _buffer(timers, flushed: List[bytes], max_bytes: int = 1024) -> ChunkBuffer:
    return ChunkBuffer(
        on_flush=flushed.append,
        flush_window_s=2.5,
        max_bytes=max_bytes,
        timer_factory=timers,
    )


def _chunk(data: bytes, ts: float) -> AudioChunk:
    return AudioChunk(data=data, timestamp_ms=ts)


def test_burst_coalesces_into_one_flush_in_timestamp_order(timers) -> None:
    flushed: List[bytes] = []
    buffer = _buffer(timers, flushed)

    buffer.append(_chunk(b"bb", 20))
    buffer.append(_chunk(b"aa", 10))
    buffer.append(_chunk(b"cc", 30))

    # every append restarted the window; only the last timer is live
    assert len(timers.created) == 3
    assert len(timers.live) == 1
    assert timers.live[0].interval == 2.5

    timers.fire_all()
    assert flushed == [b"aabbcc"]
    assert buffer.pending_chunks == 0
    assert buffer.flush_count == 1


def test_superseded_timer_does_not_flush(timers) -> None:
    flushed: List[bytes] = []
    buffer = _buffer(timers, flushed)

    buffer.append(_chunk(b"a", 1))
    first = timers.created[0]
    buffer.append(_chunk(b"b", 2))

    first.function()
    assert flushed == []
    assert buffer.pending_chunks == 2


def test_explicit_flush_cancels_pending_timer(timers) -> None:
    flushed: List[bytes] = []
    buffer = _buffer(timers, flushed)

    buffer.append(_chunk(b"xy", 5))
    assert buffer.flush() == b"xy"
    assert not buffer.has_pending_timer
    assert timers.created[-1].cancelled

    timers.fire_all()
    assert flushed == [b"xy"]


def test_flush_of_empty_buffer_is_a_no_op(timers) -> None:
    flushed: List[bytes] = []
    assert _buffer(timers, flushed).flush() is None
    assert flushed == []


def test_overflow_discards_whole_batch(timers) -> None:
    flushed: List[bytes] = []
    buffer = _buffer(timers, flushed, max_bytes=10)

    buffer.append(_chunk(b"123456", 1))
    buffer.append(_chunk(b"789012", 2))

    assert buffer.overflow_count == 1
    assert buffer.is_overflowed
    assert buffer.pending_bytes == 0

    timers.fire_all()
    assert flushed == []
    assert not buffer.is_overflowed


def test_tail_of_oversized_burst_is_dropped_with_it(timers) -> None:
    flushed: List[bytes] = []
    buffer = _buffer(timers, flushed, max_bytes=10)

    buffer.append(_chunk(b"aaaaaa", 1))
    buffer.append(_chunk(b"bbbbbb", 2))
    buffer.append(_chunk(b"cccc", 3))

    # the late chunk still extends the quiet window of the dropped batch
    assert len(timers.live) == 1
    timers.fire_all()

    assert flushed == []
    assert buffer.overflow_count == 1
    assert buffer.flush_count == 0


def test_explicit_flush_closes_overflowed_batch(timers) -> None:
    flushed: List[bytes] = []
    buffer = _buffer(timers, flushed, max_bytes=4)

    buffer.append(_chunk(b"too-long", 1))
    buffer.append(_chunk(b"ok", 2))
    assert buffer.flush() is None
    assert flushed == []

    buffer.append(_chunk(b"ok", 3))
    timers.fire_all()
    assert flushed == [b"ok"]


def test_clear_drops_chunks_and_timer(timers) -> None:
    flushed: List[bytes] = []
    buffer = _buffer(timers, flushed)

    buffer.append(_chunk(b"abc", 1))
    buffer.clear()
    timers.fire_all()

    assert flushed == []
    assert buffer.pending_bytes == 0
