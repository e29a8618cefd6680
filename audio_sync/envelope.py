"""
Envelope Extraction

Reduces mono PCM audio to a coarse RMS energy envelope at a fixed low rate.
The same routine builds the one-time master fingerprint of the reference
track and the short live fingerprint built on every sync tick.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from config import ENVELOPE_RATE_HZ
from logging_config import get_logger
from .errors import InvalidAudioError

logger = get_logger(__name__)


@dataclass(frozen=True)
class Fingerprint:
    """
    Energy envelope used as a matching key.

    Attributes:
        envelope: RMS values, one per 1/rate_hz seconds (read-only array)
        duration_seconds: Duration of the audio the envelope was built from
        rate_hz: Envelope rate
    """
    envelope: np.ndarray
    duration_seconds: float
    rate_hz: int = ENVELOPE_RATE_HZ

    def __len__(self) -> int:
        return len(self.envelope)

    @property
    def span_seconds(self) -> float:
        """Seconds covered by the envelope points."""
        return len(self.envelope) / self.rate_hz


def to_float_pcm(samples) -> np.ndarray:
    """
    Convert raw PCM to mono float64 in [-1, 1].

    Integer input (int16 from capture callbacks, int32, uint8 WAV data) is
    scaled by its full-scale value. A 2-D array is treated as
    frames x channels and downmixed by averaging.

    Args:
        samples: Sequence or numpy array of samples

    Returns:
        1-D float64 array
    """
    data = np.asarray(samples)
    if data.ndim > 2:
        raise InvalidAudioError(f"Expected mono or frames x channels audio, got shape {data.shape}")

    if data.dtype == np.uint8:
        pcm = (data.astype(np.float64) - 128.0) / 128.0
    elif np.issubdtype(data.dtype, np.signedinteger):
        full_scale = float(np.iinfo(data.dtype).max) + 1.0
        pcm = data.astype(np.float64) / full_scale
    else:
        pcm = data.astype(np.float64, copy=False)

    if pcm.ndim == 2:
        pcm = pcm.mean(axis=1)
    return pcm


def extract_envelope(
    samples,
    source_rate_hz: int,
    target_rate_hz: int = ENVELOPE_RATE_HZ,
    duration_seconds: Optional[float] = None
) -> np.ndarray:
    """
    Compute the RMS energy envelope of a mono signal.

    Each output point i is the RMS of samples[i*step : i*step + step] where
    step = floor(source_rate / target_rate). The number of points is
    floor(duration * target_rate); windows that run past the end of the
    samples are truncated, and windows that are empty yield 0.0.

    Args:
        samples: Mono PCM samples (float in [-1, 1] expected)
        source_rate_hz: Sample rate of `samples`
        target_rate_hz: Envelope rate (default: 20 Hz)
        duration_seconds: Duration to cover (default: len(samples) / source_rate)

    Returns:
        float64 array of non-negative RMS values
    """
    if source_rate_hz <= 0 or target_rate_hz <= 0:
        raise InvalidAudioError(f"Sample rates must be positive (source={source_rate_hz}, target={target_rate_hz})")

    step = int(source_rate_hz // target_rate_hz)
    if step < 1:
        raise InvalidAudioError(f"Source rate {source_rate_hz} Hz is below the envelope rate {target_rate_hz} Hz")

    pcm = np.asarray(samples, dtype=np.float64)
    if pcm.ndim != 1:
        raise InvalidAudioError(f"Envelope extraction expects mono audio, got shape {pcm.shape}")

    if duration_seconds is None:
        duration_seconds = len(pcm) / source_rate_hz
    total_points = max(0, int(math.floor(duration_seconds * target_rate_hz)))

    envelope = np.zeros(total_points, dtype=np.float64)
    if total_points == 0 or len(pcm) == 0:
        return envelope

    # Whole windows are reduced in one reshape
    full_windows = min(total_points, len(pcm) // step)
    if full_windows:
        frames = pcm[:full_windows * step].reshape(full_windows, step)
        envelope[:full_windows] = np.sqrt(np.mean(frames * frames, axis=1))

    # At most one partial window remains; anything after it stays 0.0
    if full_windows < total_points:
        tail = pcm[full_windows * step:(full_windows + 1) * step]
        if len(tail):
            envelope[full_windows] = math.sqrt(float(np.mean(tail * tail)))

    return envelope


def build_fingerprint(
    samples,
    source_rate_hz: int,
    duration_seconds: Optional[float] = None,
    rate_hz: int = ENVELOPE_RATE_HZ
) -> Fingerprint:
    """
    Build a read-only fingerprint from raw PCM.

    Args:
        samples: PCM samples, any dtype accepted by to_float_pcm()
        source_rate_hz: Sample rate of `samples`
        duration_seconds: Track duration (default: derived from sample count)
        rate_hz: Envelope rate

    Returns:
        Fingerprint whose envelope cannot be modified in place
    """
    pcm = to_float_pcm(samples)
    if duration_seconds is None:
        duration_seconds = len(pcm) / source_rate_hz

    envelope = extract_envelope(pcm, source_rate_hz, rate_hz, duration_seconds)
    envelope.setflags(write=False)
    return Fingerprint(envelope=envelope, duration_seconds=float(duration_seconds), rate_hz=rate_hz)
