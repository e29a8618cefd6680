"""Pytest configuration and shared fixtures"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path so flat modules (config, settings) import
sys.path.insert(0, str(Path(__file__).parent.parent))

from audio_sync import AudioMatcher, RollingLiveBuffer, SyncController

SAMPLE_RATE = 8000          # Divides evenly into 20 Hz envelope windows (400 samples)
CHUNK_SIZE = 1600           # 0.2 s per capture block
TRACK_SECONDS = 60


def make_track(seconds: float, sample_rate: int = SAMPLE_RATE, seed: int = 7) -> np.ndarray:
    """Noise whose loudness changes every 50 ms, giving a distinctive envelope."""
    rng = np.random.default_rng(seed)
    block = sample_rate // 20
    blocks = int(seconds * 20)
    gains = rng.uniform(0.05, 0.8, size=blocks)
    noise = rng.standard_normal(blocks * block) * 0.5
    return np.clip(noise * np.repeat(gains, block), -1.0, 1.0)


def push_clip(buffer: RollingLiveBuffer, clip: np.ndarray, chunk_size: int = CHUNK_SIZE) -> None:
    for start in range(0, len(clip), chunk_size):
        buffer.push(clip[start:start + chunk_size])


@pytest.fixture(scope="session")
def reference_track():
    return make_track(TRACK_SECONDS)


@pytest.fixture
def live_clip(reference_track):
    """Seconds 30-36 of the reference track."""
    return reference_track[30 * SAMPLE_RATE:36 * SAMPLE_RATE].copy()


@pytest.fixture
def matcher(reference_track):
    m = AudioMatcher()
    m.build_master(reference_track, SAMPLE_RATE)
    return m


@pytest.fixture
def buffer():
    return RollingLiveBuffer(SAMPLE_RATE, max_chunks=90)


@pytest.fixture
def controller(matcher, buffer):
    return SyncController(matcher, buffer, clock=lambda: 0.0)
