"""
Correlation Matcher

Locates a short live envelope inside the master envelope of the reference
track using normalized (Pearson) cross-correlation.

Pearson correlation ignores additive offset and gain differences, so a
quiet phone microphone and the decoded reference track still correlate
strongly when they carry the same loudness contour.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from config import MATCHER
from logging_config import get_logger
from .envelope import Fingerprint, build_fingerprint
from .errors import NoMasterFingerprintError

logger = get_logger(__name__)

# Reasons a scan produced no score
REASON_INSUFFICIENT = "insufficient_data"
REASON_SILENT = "silent"
REASON_FLAT = "flat"
REASON_NO_CANDIDATES = "no_candidates"


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of one matcher invocation.

    Attributes:
        offset_seconds: Timeline position of the END of the live window
        confidence: r clamped to [0, 1] and scaled to percent, r being the best Pearson coefficient
        reason: None when a score was computed, otherwise why the scan was skipped
    """
    offset_seconds: float = 0.0
    confidence: float = 0.0
    reason: Optional[str] = None

    @property
    def is_gated(self) -> bool:
        """True if the live window was rejected as silence or constant noise."""
        return self.reason in (REASON_SILENT, REASON_FLAT)


def find_match(
    master_envelope: Optional[np.ndarray],
    live_envelope: np.ndarray,
    search_hint_seconds: Optional[float] = None,
    scan_width_seconds: Optional[float] = None,
    rate_hz: int = MATCHER["rate_hz"],
    min_live_seconds: float = MATCHER["min_live_seconds"],
    energy_floor: float = MATCHER["energy_floor"],
    variance_floor: float = MATCHER["variance_floor"],
) -> MatchResult:
    """
    Find the master offset that best correlates with the live envelope.

    A global scan tries every start index in [0, M - N]. When a hint and a
    positive width are given the scan is restricted to starts within
    `scan_width_seconds` of the window that would end at the hint. Every
    candidate in range is evaluated.

    Args:
        master_envelope: Envelope of the reference track (None = not built)
        live_envelope: Envelope of the recent live capture
        search_hint_seconds: Believed current position, None for a global scan
        scan_width_seconds: Half-width of the local scan window
        rate_hz: Envelope rate of both inputs
        min_live_seconds: Shortest live window that is scanned
        energy_floor: Minimum live RMS
        variance_floor: Minimum live variance

    Returns:
        MatchResult; confidence 0 with a reason when the scan is skipped
    """
    if master_envelope is None:
        return MatchResult(reason=REASON_INSUFFICIENT)

    live = np.asarray(live_envelope, dtype=np.float64)
    master = np.asarray(master_envelope, dtype=np.float64)
    n = len(live)
    m = len(master)

    if n < rate_hz * min_live_seconds:
        return MatchResult(reason=REASON_INSUFFICIENT)

    sum_l = float(live.sum())
    sum_sq_l = float(np.dot(live, live))
    mean_l = sum_l / n
    variance_l = sum_sq_l / n - mean_l * mean_l
    rms_l = math.sqrt(sum_sq_l / n)

    # Energy gate: silence and constant hum correlate with any flat stretch
    if rms_l < energy_floor:
        logger.debug(f"Live window rejected as silent (rms={rms_l:.5f})")
        return MatchResult(reason=REASON_SILENT)
    if variance_l < variance_floor:
        logger.debug(f"Live window rejected as flat (variance={variance_l:.6f})")
        return MatchResult(reason=REASON_FLAT)

    den_l = math.sqrt(max(0.0, sum_sq_l - n * mean_l * mean_l))
    if den_l == 0:
        return MatchResult(reason=REASON_FLAT)

    start_idx = 0
    end_idx = m - n
    if search_hint_seconds is not None and scan_width_seconds is not None and scan_width_seconds > 0:
        # The hint marks the END of the live window; the scan indexes starts
        target_start = int(math.floor(search_hint_seconds * rate_hz)) - n
        width_idx = int(math.floor(scan_width_seconds * rate_hz))
        start_idx = max(0, target_start - width_idx)
        end_idx = min(m - n, target_start + width_idx)

    if end_idx < start_idx:
        logger.debug(f"No candidate offsets (master={m}, live={n}, range=[{start_idx}, {end_idx}])")
        return MatchResult(reason=REASON_NO_CANDIDATES)

    # One row per candidate start, each row a length-N master window
    windows = sliding_window_view(master[start_idx:end_idx + n], n)
    sum_m = windows.sum(axis=1)
    sum_sq_m = np.einsum('ij,ij->i', windows, windows)
    cross_sum = windows @ live

    mean_m = sum_m / n
    den_m = np.sqrt(np.maximum(0.0, sum_sq_m - n * mean_m * mean_m))

    valid = den_m > 0
    if not valid.any():
        return MatchResult(reason=REASON_NO_CANDIDATES)

    corr = np.full(len(den_m), -np.inf)
    corr[valid] = (cross_sum[valid] - n * mean_l * mean_m[valid]) / (den_l * den_m[valid])

    # argmax returns the first maximum, matching a strict '>' running scan
    best = int(np.argmax(corr))
    best_r = float(corr[best])
    best_start = start_idx + best

    result = MatchResult(
        offset_seconds=(best_start + n) / rate_hz,
        confidence=min(1.0, max(0.0, best_r)) * 100.0,
    )
    logger.debug(
        f"Scan [{start_idx}, {end_idx}] best start={best_start} "
        f"-> {result.offset_seconds:.2f}s ({result.confidence:.1f}%)"
    )
    return result


class AudioMatcher:
    """
    Owns the master fingerprint and matches live envelopes against it.

    The master is built once per session and is read-only afterwards.
    Calling find_match() before build_master() is a programming error and
    raises NoMasterFingerprintError.
    """

    def __init__(
        self,
        rate_hz: int = MATCHER["rate_hz"],
        min_live_seconds: float = MATCHER["min_live_seconds"],
        energy_floor: float = MATCHER["energy_floor"],
        variance_floor: float = MATCHER["variance_floor"],
    ):
        self.rate_hz = rate_hz
        self.min_live_seconds = min_live_seconds
        self.energy_floor = energy_floor
        self.variance_floor = variance_floor
        self._master: Optional[Fingerprint] = None

    @property
    def master(self) -> Optional[Fingerprint]:
        """The master fingerprint, or None before build_master()."""
        return self._master

    @property
    def has_master(self) -> bool:
        return self._master is not None

    def build_master(self, samples, source_rate_hz: int, duration_seconds: Optional[float] = None) -> Fingerprint:
        """
        Fingerprint the fully decoded reference track.

        Args:
            samples: Mono (or frames x channels) PCM of the whole track
            source_rate_hz: Sample rate of the decoded track
            duration_seconds: Track duration (default: from sample count)

        Returns:
            The new master fingerprint
        """
        fingerprint = build_fingerprint(samples, source_rate_hz, duration_seconds, self.rate_hz)
        self.set_master(fingerprint)
        return fingerprint

    def set_master(self, fingerprint: Fingerprint) -> None:
        """Install a prebuilt master fingerprint (e.g. from an offline run)."""
        if fingerprint.rate_hz != self.rate_hz:
            raise ValueError(f"Fingerprint rate {fingerprint.rate_hz} Hz does not match matcher rate {self.rate_hz} Hz")
        if fingerprint.envelope.flags.writeable:
            envelope = fingerprint.envelope.copy()
            envelope.setflags(write=False)
            fingerprint = Fingerprint(envelope, fingerprint.duration_seconds, fingerprint.rate_hz)
        self._master = fingerprint
        logger.info(
            f"Master fingerprint ready. Duration: {fingerprint.duration_seconds:.1f}s, "
            f"points: {len(fingerprint)}"
        )

    def clear_master(self) -> None:
        """Forget the master fingerprint (new reference track)."""
        self._master = None

    def find_match(
        self,
        live_envelope: np.ndarray,
        search_hint_seconds: Optional[float] = None,
        scan_width_seconds: Optional[float] = None
    ) -> MatchResult:
        """
        Match a live envelope against the master.

        Args:
            live_envelope: Envelope of the recent live capture
            search_hint_seconds: Believed position for a local scan (None = global)
            scan_width_seconds: Local scan half-width in seconds

        Returns:
            MatchResult

        Raises:
            NoMasterFingerprintError: If build_master() was never called
        """
        if self._master is None:
            raise NoMasterFingerprintError()

        return find_match(
            self._master.envelope,
            live_envelope,
            search_hint_seconds,
            scan_width_seconds,
            rate_hz=self.rate_hz,
            min_live_seconds=self.min_live_seconds,
            energy_floor=self.energy_floor,
            variance_floor=self.variance_floor,
        )
