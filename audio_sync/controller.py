"""
Sync Controller

Polling state machine that turns matcher results into a stable timeline.
Each tick decides whether to scan, how wide to scan, whether a hit is
trustworthy, and when to commit and lock.

States:
    IDLE         session stopped, ticks do nothing
    COLLECTING   live buffer below the minimum chunk count
    STABILIZING  settle window after a manual seek
    SCANNING     matching (global or local mode)
    VERIFYING    a candidate position awaits confirmation
    LOCKED       committed; no scanning until seek() or force_resync()

Design Note:
    A hit is only committed after a second observation agrees with the
    first one extrapolated by the elapsed wall-clock time. A weak tick in
    between drops the candidate, so verification always restarts from zero.
    Once locked, ticks stop matching entirely. Drift that happens after the
    lock is not detected until an operator seeks or forces a resync.
"""

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Tuple

from config import BUFFER, SYNC
from logging_config import get_logger
from .buffer import RollingLiveBuffer
from .envelope import extract_envelope
from .errors import NoMasterFingerprintError
from .matcher import REASON_INSUFFICIENT, AudioMatcher, MatchResult
from .subtitles import CueTracker, format_time

logger = get_logger(__name__)


class ScanMode(Enum):
    GLOBAL = "global"  # Whole master, no prior belief
    LOCAL = "local"    # Window around the believed position


class SyncPhase(Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    STABILIZING = "stabilizing"
    SCANNING = "scanning"
    VERIFYING = "verifying"
    LOCKED = "locked"


class SyncStatus(Enum):
    """Last tick outcome, reported to the host."""
    IDLE = "idle"
    SCANNING = "scanning"
    INSUFFICIENT_SIGNAL = "insufficient_signal"
    STABILIZING = "stabilizing"
    WEAK_SIGNAL = "weak_signal"
    SILENT_OR_FLAT = "silent_or_flat"
    NO_MASTER = "no_master"
    VERIFYING = "verifying"
    STABLE = "stable"
    COMMITTED = "committed"
    LOCKED = "locked"


@dataclass(frozen=True)
class CandidateLock:
    """
    Provisional position awaiting confirmation.

    Attributes:
        estimated_seconds: Timeline position observed (latency compensated)
        observed_at: Clock reading when it was observed
        verification_count: Consistent observations so far
    """
    estimated_seconds: float
    observed_at: float
    verification_count: int = 1

    @classmethod
    def first(cls, estimated_seconds: float, now: float) -> 'CandidateLock':
        return cls(estimated_seconds, now, 1)

    def expected_at(self, now: float) -> float:
        """Where this candidate says playback should be at `now`."""
        return self.estimated_seconds + (now - self.observed_at)

    def agrees_with(self, estimated_seconds: float, now: float, tolerance: float) -> bool:
        return abs(estimated_seconds - self.expected_at(now)) <= tolerance

    def confirm(self, estimated_seconds: float, now: float) -> 'CandidateLock':
        """Count one more agreeing observation, keeping the fresher estimate."""
        return CandidateLock(estimated_seconds, now, self.verification_count + 1)


@dataclass
class SyncState:
    """
    Authoritative controller state. Hosts receive copies from tick().

    timeline_seconds is the believed position at clock time timeline_anchor;
    position_at() extrapolates it. A None anchor means the timeline has not
    been set yet and does not advance.
    """
    phase: SyncPhase = SyncPhase.IDLE
    mode: ScanMode = ScanMode.GLOBAL
    locked: bool = False
    stabilize_until: Optional[float] = None
    candidate: Optional[CandidateLock] = None
    timeline_seconds: float = 0.0
    timeline_anchor: Optional[float] = None
    has_synced: bool = False
    confidence: float = 0.0
    status: SyncStatus = SyncStatus.IDLE
    drift: Optional[float] = None
    stabilizing_remaining: float = 0.0
    last_match: Optional[MatchResult] = None

    @property
    def verification_count(self) -> int:
        return self.candidate.verification_count if self.candidate else 0

    def position_at(self, now: float) -> float:
        if self.timeline_anchor is None:
            return self.timeline_seconds
        return self.timeline_seconds + max(0.0, now - self.timeline_anchor)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "mode": self.mode.value,
            "locked": self.locked,
            "status": self.status.value,
            "confidence": round(self.confidence, 1),
            "timeline_seconds": self.timeline_seconds,
            "has_synced": self.has_synced,
            "verification_count": self.verification_count,
            "drift": self.drift,
            "stabilizing_remaining": round(self.stabilizing_remaining, 2),
        }


class SyncController:
    """
    Decides on every tick how to scan and when to trust a match.

    The controller owns no timer; SyncSession (or a test) calls tick().
    Matching runs outside the state lock on a buffer snapshot. Any seek(),
    force_resync() or reset() during that scan bumps an epoch counter and
    the stale result is discarded.
    """

    def __init__(
        self,
        matcher: AudioMatcher,
        buffer: RollingLiveBuffer,
        cues: Optional[CueTracker] = None,
        clock: Callable[[], float] = time.monotonic,
        min_chunks: int = BUFFER["min_chunks"],
        latency_compensation: float = SYNC["latency_compensation"],
        stabilize_seconds: float = SYNC["stabilize_seconds"],
        drift_threshold: float = SYNC["drift_threshold"],
        verify_tolerance: float = SYNC["verify_tolerance"],
        verifications_required: int = SYNC["verifications_required"],
        global_min_confidence: float = SYNC["global_min_confidence"],
        local_min_confidence: float = SYNC["local_min_confidence"],
        local_scan_width: float = SYNC["local_scan_width"],
    ):
        self.matcher = matcher
        self.buffer = buffer
        self.cues = cues
        self._clock = clock

        self.min_chunks = min_chunks
        self.latency_compensation = latency_compensation
        self.stabilize_seconds = stabilize_seconds
        self.drift_threshold = drift_threshold
        self.verify_tolerance = verify_tolerance
        self.verifications_required = max(1, verifications_required)
        self.global_min_confidence = global_min_confidence
        self.local_min_confidence = local_min_confidence
        self.local_scan_width = local_scan_width

        self._lock = threading.RLock()
        self._epoch = 0
        self._state = SyncState(phase=SyncPhase.SCANNING, status=SyncStatus.SCANNING)

    @property
    def state(self) -> SyncState:
        """Copy of the current state."""
        with self._lock:
            return replace(self._state)

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._state.phase != SyncPhase.IDLE

    def current_position(self, now: Optional[float] = None) -> float:
        """Believed timeline position extrapolated to `now`."""
        now = self._clock() if now is None else now
        with self._lock:
            return self._state.position_at(now)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> SyncState:
        """Begin a session: empty buffer, global scan, no belief."""
        with self._lock:
            self._epoch += 1
            self.buffer.clear()
            self._state = SyncState(phase=SyncPhase.SCANNING, status=SyncStatus.SCANNING)
            if self.cues:
                self.cues.reset()
            logger.info("Sync session started (global scan)")
            return replace(self._state)

    def reset(self) -> SyncState:
        """End the session and discard buffer, candidate, lock and timeline."""
        with self._lock:
            self._epoch += 1
            self.buffer.clear()
            self._state = SyncState()
            if self.cues:
                self.cues.reset()
            logger.info("Sync session reset")
            return replace(self._state)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, now: Optional[float] = None) -> SyncState:
        """
        Run one sync step.

        Args:
            now: Clock reading (default: the controller clock)

        Returns:
            Copy of the updated state
        """
        now = self._clock() if now is None else now

        with self._lock:
            plan = self._plan_tick(now)
            if plan is None:
                return replace(self._state)
            epoch = self._epoch
            mode, hint, width, min_confidence = plan
            samples = self.buffer.snapshot()

        try:
            live = extract_envelope(samples, self.buffer.sample_rate, self.matcher.rate_hz)
            result = self.matcher.find_match(live, hint, width)
        except NoMasterFingerprintError:
            logger.error("Tick skipped: no master fingerprint has been built")
            with self._lock:
                if epoch == self._epoch:
                    self._state.phase = SyncPhase.SCANNING
                    self._state.status = SyncStatus.NO_MASTER
                    self._state.confidence = 0.0
                return replace(self._state)

        with self._lock:
            if epoch != self._epoch:
                logger.debug("State changed during scan, discarding result")
                return replace(self._state)
            self._apply_match(result, mode, min_confidence, now)
            return replace(self._state)

    def _plan_tick(self, now: float) -> Optional[Tuple[ScanMode, Optional[float], Optional[float], float]]:
        """
        Handle the no-scan cases. Returns scan parameters, or None when this
        tick must not match.
        """
        state = self._state

        if state.phase == SyncPhase.IDLE:
            return None

        if state.locked:
            state.phase = SyncPhase.LOCKED
            state.status = SyncStatus.LOCKED
            state.confidence = 100.0
            state.stabilizing_remaining = 0.0
            return None

        if state.stabilize_until is not None:
            if now < state.stabilize_until:
                state.phase = SyncPhase.STABILIZING
                state.status = SyncStatus.STABILIZING
                state.stabilizing_remaining = state.stabilize_until - now
                return None
            state.stabilize_until = None
            state.stabilizing_remaining = 0.0

        if not self.buffer.is_ready(self.min_chunks):
            state.phase = SyncPhase.COLLECTING
            state.status = SyncStatus.INSUFFICIENT_SIGNAL
            state.confidence = 0.0
            logger.debug(f"Collecting audio ({self.buffer.chunk_count}/{self.min_chunks} chunks)")
            return None

        if state.mode == ScanMode.GLOBAL:
            return ScanMode.GLOBAL, None, None, self.global_min_confidence
        return ScanMode.LOCAL, state.position_at(now), self.local_scan_width, self.local_min_confidence

    def _apply_match(self, result: MatchResult, mode: ScanMode, min_confidence: float, now: float) -> None:
        state = self._state
        state.last_match = result
        state.confidence = result.confidence

        if result.confidence < min_confidence:
            if state.candidate is not None:
                logger.debug(
                    f"Candidate at {state.candidate.estimated_seconds:.1f}s dropped "
                    f"(confidence {result.confidence:.1f}% < {min_confidence:.0f}%)"
                )
            state.candidate = None
            state.drift = None
            if result.reason == REASON_INSUFFICIENT:
                # Enough chunks, but too little audio in them to fill a live window
                state.phase = SyncPhase.COLLECTING
                state.status = SyncStatus.INSUFFICIENT_SIGNAL
                return
            state.phase = SyncPhase.SCANNING
            state.status = SyncStatus.SILENT_OR_FLAT if result.is_gated else SyncStatus.WEAK_SIGNAL
            return

        adjusted = result.offset_seconds - self.latency_compensation
        drift = abs(adjusted - state.position_at(now))
        state.drift = drift

        if drift <= self.drift_threshold and mode == ScanMode.LOCAL:
            # Agrees with the current belief; nothing to commit
            state.candidate = None
            state.phase = SyncPhase.SCANNING
            state.status = SyncStatus.STABLE
            logger.debug(f"Stable at {format_time(adjusted)} (drift {drift:.2f}s)")
            return

        candidate = state.candidate
        if candidate is None:
            state.candidate = CandidateLock.first(adjusted, now)
            logger.debug(f"Candidate {adjusted:.2f}s ({result.confidence:.1f}%), awaiting confirmation")
        elif candidate.agrees_with(adjusted, now, self.verify_tolerance):
            state.candidate = candidate.confirm(adjusted, now)
            logger.debug(
                f"Candidate confirmed {state.candidate.verification_count}/{self.verifications_required} "
                f"at {adjusted:.2f}s (expected {candidate.expected_at(now):.2f}s)"
            )
        else:
            logger.debug(
                f"Candidate diverged: {adjusted:.2f}s vs expected {candidate.expected_at(now):.2f}s, restarting"
            )
            state.candidate = CandidateLock.first(adjusted, now)

        if state.candidate.verification_count >= self.verifications_required:
            self._commit(adjusted, now, result.confidence)
        else:
            state.phase = SyncPhase.VERIFYING
            state.status = SyncStatus.VERIFYING

    def _commit(self, position: float, now: float, confidence: float) -> None:
        state = self._state
        state.timeline_seconds = position
        state.timeline_anchor = now
        state.mode = ScanMode.LOCAL
        state.locked = True
        state.has_synced = True
        state.candidate = None
        state.phase = SyncPhase.LOCKED
        state.status = SyncStatus.COMMITTED
        if self.cues:
            self.cues.forget_after(position)
        logger.info(f"Locked at {format_time(position)} ({position:.2f}s, confidence {confidence:.1f}%)")

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    def seek(self, time_seconds: float, now: Optional[float] = None) -> SyncState:
        """
        Jump the believed timeline to `time_seconds`.

        Drops the lock and opens a stabilization window during which ticks
        do not match, so the matcher cannot fight a user-driven jump.
        """
        now = self._clock() if now is None else now
        position = max(0.0, float(time_seconds))

        with self._lock:
            self._epoch += 1
            state = self._state
            state.timeline_seconds = position
            state.timeline_anchor = now
            state.has_synced = True
            state.locked = False
            state.candidate = None
            state.drift = None
            state.stabilize_until = now + self.stabilize_seconds
            state.stabilizing_remaining = self.stabilize_seconds
            if state.phase != SyncPhase.IDLE:
                state.phase = SyncPhase.STABILIZING
                state.status = SyncStatus.STABILIZING
            if self.cues:
                self.cues.forget_after(position)
            logger.info(f"Seek to {format_time(position)}, stabilizing for {self.stabilize_seconds:.0f}s")
            return replace(state)

    def force_resync(self) -> SyncState:
        """
        Abandon the current belief and rescan the whole master.

        Clears the live buffer so audio from before the intervention is not
        matched again.
        """
        with self._lock:
            self._epoch += 1
            self.buffer.clear()
            state = self._state
            state.locked = False
            state.candidate = None
            state.drift = None
            state.stabilize_until = None
            state.stabilizing_remaining = 0.0
            state.mode = ScanMode.GLOBAL
            state.confidence = 0.0
            if state.phase != SyncPhase.IDLE:
                state.phase = SyncPhase.SCANNING
                state.status = SyncStatus.SCANNING
            logger.info("Forced resync, next tick runs a global scan")
            return replace(state)
