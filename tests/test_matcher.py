"""Tests for the correlation matcher"""
import numpy as np
import pytest

from audio_sync import AudioMatcher, NoMasterFingerprintError, extract_envelope, find_match
from audio_sync.matcher import REASON_FLAT, REASON_INSUFFICIENT, REASON_NO_CANDIDATES, REASON_SILENT
from conftest import SAMPLE_RATE


@pytest.fixture
def master():
    rng = np.random.default_rng(3)
    return rng.uniform(0.05, 0.8, size=1200)  # 60 s at 20 Hz


def test_exact_copy_found_by_global_scan(master):
    live = master[600:720].copy()  # seconds 30-36

    result = find_match(master, live)

    assert result.offset_seconds == pytest.approx(36.0, abs=0.05)
    assert result.confidence >= 99.0
    assert result.reason is None


@pytest.mark.parametrize("seed", range(40))
def test_exact_copy_confidence_never_exceeds_100(seed):
    rng = np.random.default_rng(seed)
    master = rng.uniform(0.05, 0.8, size=1200)
    start = int(rng.integers(0, 1080))

    result = find_match(master, master[start:start + 120].copy())

    assert 0.0 <= result.confidence <= 100.0
    assert result.offset_seconds == pytest.approx((start + 120) / 20)


def test_gain_and_offset_invariance(master):
    live = master[200:320] * 0.2 + 0.05  # quieter microphone with a DC offset

    result = find_match(master, live)

    assert result.offset_seconds == pytest.approx(16.0, abs=0.05)
    assert result.confidence >= 99.0


def test_offset_at_very_end_of_master(master):
    live = master[-120:].copy()
    assert find_match(master, live).offset_seconds == pytest.approx(60.0)


def test_silence_rejected(master):
    result = find_match(master, np.zeros(120))

    assert result.confidence == 0
    assert result.reason == REASON_SILENT


def test_flat_signal_rejected(master):
    result = find_match(master, np.full(120, 0.1))

    assert result.confidence == 0
    assert result.reason == REASON_FLAT


def test_live_shorter_than_two_seconds(master):
    result = find_match(master, master[100:139].copy())

    assert result.confidence == 0
    assert result.reason == REASON_INSUFFICIENT


def test_missing_master_gives_zero_result():
    assert find_match(None, np.ones(100)).confidence == 0


def test_local_scan_limited_to_window(master):
    live = master[600:720].copy()
    rng = np.random.default_rng(11)
    # A perfect copy far from the hint, a slightly noisy one near it
    planted = master.copy()
    planted[100:220] = live
    planted[600:720] = live + rng.normal(0, 0.01, size=120)

    local = find_match(planted, live, search_hint_seconds=36.0, scan_width_seconds=10.0)
    assert local.offset_seconds == pytest.approx(36.0)
    assert 90.0 < local.confidence < 100.0

    assert find_match(planted, live).offset_seconds == pytest.approx(11.0)


def test_local_scan_window_outside_master(master):
    result = find_match(master, master[0:120].copy(), search_hint_seconds=500.0, scan_width_seconds=5.0)
    assert result.reason == REASON_NO_CANDIDATES


def test_zero_width_falls_back_to_global(master):
    live = master[600:720].copy()
    result = find_match(master, live, search_hint_seconds=5.0, scan_width_seconds=0)
    assert result.offset_seconds == pytest.approx(36.0)


def test_negative_correlation_never_negative_confidence():
    # Every window of a rising ramp is perfectly anti-correlated with a falling one
    master = np.linspace(0.1, 0.9, 400)
    live = np.linspace(0.9, 0.1, 60)

    result = find_match(master, live)

    assert result.reason is None
    assert result.confidence == 0


def test_audio_matcher_requires_master():
    with pytest.raises(NoMasterFingerprintError):
        AudioMatcher().find_match(np.ones(200))


def test_audio_matcher_end_to_end(matcher, live_clip):
    live = extract_envelope(live_clip, SAMPLE_RATE)

    result = matcher.find_match(live)

    assert result.offset_seconds == pytest.approx(36.0, abs=0.05)
    assert result.confidence >= 99.0
