"""Tests for the rolling live buffer"""
import threading

import numpy as np
import pytest

from audio_sync import RollingLiveBuffer


def test_fifo_eviction():
    buf = RollingLiveBuffer(8000, max_chunks=3)
    for value in range(5):
        buf.push(np.full(4, float(value) / 10))

    assert buf.chunk_count == 3
    assert buf.snapshot().tolist() == pytest.approx([0.2] * 4 + [0.3] * 4 + [0.4] * 4)
    assert buf.duration_seconds == pytest.approx(12 / 8000)


def test_push_copies_caller_array():
    buf = RollingLiveBuffer(8000, max_chunks=2)
    block = np.ones(4)
    buf.push(block)
    block[:] = 0

    assert buf.snapshot().tolist() == [1.0] * 4


def test_int16_chunks_are_normalised():
    buf = RollingLiveBuffer(8000)
    buf.push(np.array([16384, -16384], dtype=np.int16))
    assert buf.snapshot().tolist() == pytest.approx([0.5, -0.5])


def test_ready_and_clear():
    buf = RollingLiveBuffer(8000)
    for _ in range(30):
        buf.push(np.zeros(10))

    assert buf.is_ready(30)
    assert not buf.is_ready(31)

    buf.clear()
    assert buf.is_empty
    assert buf.snapshot().size == 0
    assert buf.duration_seconds == 0


def test_level_of_latest_chunk():
    buf = RollingLiveBuffer(8000)
    assert buf.get_level() == 0.0
    buf.push(np.full(100, 0.1))
    assert buf.get_level() == pytest.approx(0.3)


def test_invalid_capacity():
    with pytest.raises(ValueError):
        RollingLiveBuffer(8000, max_chunks=0)


def test_snapshot_while_producer_pushes():
    buf = RollingLiveBuffer(8000, max_chunks=20)
    stop = threading.Event()

    def produce():
        value = 0
        while not stop.is_set():
            buf.push(np.full(64, float(value % 7)))
            value += 1

    producer = threading.Thread(target=produce)
    producer.start()
    try:
        for _ in range(200):
            snap = buf.snapshot()
            # Only whole chunks are ever observed
            assert snap.size % 64 == 0
            assert snap.size <= 20 * 64
    finally:
        stop.set()
        producer.join()
