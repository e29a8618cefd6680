"""
Sync Session Module

Host-facing entry point for the sync core. Wires the matcher, the rolling
live buffer, the controller and the cue tracker together, and runs the
periodic tick loop on asyncio.

Features:
- Fixed-interval ticks that never overlap
- A failing tick is logged and the loop carries on
- stop() halts the timer and discards all session state
"""

import asyncio
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional

from config import BUFFER, SYNC
from logging_config import get_logger
from .buffer import RollingLiveBuffer
from .controller import SyncController, SyncState, SyncStatus
from .envelope import Fingerprint
from .matcher import AudioMatcher
from .subtitles import CueTracker, SrtEntry

logger = get_logger(__name__)


class SyncSession:
    """
    One synchronization session against one reference track.

    The four host operations are build_master_fingerprint(),
    push_live_chunk(), tick() and seek()/force_resync(). start()/stop()
    drive tick() from an asyncio task.
    """

    def __init__(
        self,
        live_sample_rate: int,
        tick_interval: float = SYNC["tick_interval"],
        max_chunks: int = BUFFER["max_chunks"],
        entries: Iterable[SrtEntry] = (),
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[Callable[[SyncState], None]] = None,
        **controller_options: Any
    ):
        """
        Initialize the session.

        Args:
            live_sample_rate: Sample rate of the chunks passed to push_live_chunk()
            tick_interval: Seconds between ticks while running
            max_chunks: Rolling buffer capacity in chunks
            entries: Subtitle cues for poll_cue()
            clock: Monotonic clock, injectable for tests
            on_state_change: Called with the new state when phase or status changes
            **controller_options: Threshold overrides passed to SyncController
        """
        self.tick_interval = tick_interval
        self.on_state_change = on_state_change
        self._clock = clock

        self.matcher = AudioMatcher()
        self.buffer = RollingLiveBuffer(live_sample_rate, max_chunks)
        self.cues = CueTracker(entries)
        self.controller = SyncController(
            self.matcher, self.buffer, self.cues, clock=clock, **controller_options
        )

        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._last_state: Optional[SyncState] = None
        self._notify_lock = threading.Lock()
        self._tick_count = 0
        self._failed_ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def state(self) -> SyncState:
        return self.controller.state

    # ------------------------------------------------------------------
    # Host operations
    # ------------------------------------------------------------------

    def build_master_fingerprint(self, samples, source_rate_hz: int, duration_seconds: Optional[float] = None) -> Fingerprint:
        """Fingerprint the decoded reference track. Call once per session."""
        return self.matcher.build_master(samples, source_rate_hz, duration_seconds)

    def push_live_chunk(self, samples) -> None:
        """Append one capture block. Safe to call from the audio thread."""
        self.buffer.push(samples)

    def tick(self) -> SyncState:
        """Run one controller step and notify listeners of changes."""
        state = self.controller.tick()
        self._tick_count += 1
        self._notify(state)
        return state

    def seek(self, time_seconds: float) -> SyncState:
        state = self.controller.seek(time_seconds)
        self._notify(state)
        return state

    def force_resync(self) -> SyncState:
        state = self.controller.force_resync()
        self._notify(state)
        return state

    def load_subtitles(self, entries: Iterable[SrtEntry]) -> None:
        self.cues.load(entries)

    def current_position(self) -> float:
        """Believed playback position right now."""
        return self.controller.current_position()

    def poll_cue(self) -> Optional[SrtEntry]:
        """
        Return the subtitle cue due at the current position, if any.

        Nothing fires until the timeline has been committed or set by a seek.
        """
        state = self.controller.state
        if not state.has_synced:
            return None
        return self.cues.due(state.position_at(self._clock()))

    def get_status(self) -> Dict[str, Any]:
        """
        Get comprehensive session status.

        Returns:
            Status dict for the host UI
        """
        state = self.controller.state
        status = state.to_dict()
        status.update({
            "is_running": self.is_running,
            "position": state.position_at(self._clock()),
            "has_master": self.matcher.has_master,
            "buffer_chunks": self.buffer.chunk_count,
            "buffer_seconds": round(self.buffer.duration_seconds, 2),
            "audio_level": self.buffer.get_level(),
            "tick_count": self._tick_count,
            "failed_ticks": self._failed_ticks,
        })
        return status

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start the tick loop.

        If already running, does nothing.
        """
        if self.is_running:
            logger.warning("Sync session already running")
            return

        self._stop_requested = False
        self.controller.start()
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """
        Stop the tick loop and discard session state.

        The controller is reset before waiting on the task, so a tick that is
        still scanning cannot commit its result.
        """
        self._stop_requested = True
        self.controller.reset()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=3.0)
            except asyncio.TimeoutError:
                logger.warning("Sync loop stop timeout, cancelling task")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            finally:
                self._task = None

        self._notify(self.controller.state)
        logger.info("Sync session stopped")

    async def _run_loop(self) -> None:
        """Tick every tick_interval seconds until stop() is called."""
        logger.info(f"Sync loop started (interval: {self.tick_interval}s)")
        loop = asyncio.get_running_loop()

        while not self._stop_requested:
            started = time.monotonic()
            try:
                # The scan is CPU-bound; keep the event loop responsive
                await loop.run_in_executor(None, self.tick)
            except asyncio.CancelledError:
                logger.debug("Sync loop cancelled")
                break
            except Exception as e:
                self._failed_ticks += 1
                logger.error(f"Sync tick error: {e}", exc_info=True)

            # Sleep in small slices so stop() is honoured quickly
            end_time = started + self.tick_interval
            while not self._stop_requested and time.monotonic() < end_time:
                await asyncio.sleep(min(0.2, max(0.0, end_time - time.monotonic())))

        logger.info("Sync loop ended")

    def _notify(self, state: SyncState) -> None:
        # Called from the executor thread (ticks) and the host thread (seek)
        with self._notify_lock:
            previous = self._last_state
            self._last_state = state
        if previous is not None and previous.phase == state.phase and previous.status == state.status:
            return

        if state.status == SyncStatus.NO_MASTER:
            logger.warning("Sync status: no master fingerprint, build one before ticking")
        else:
            logger.debug(f"Sync status: {state.status.value} ({state.phase.value})")

        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")
