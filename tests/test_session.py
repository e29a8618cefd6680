"""Tests for the host-facing sync session and its tick loop"""
import asyncio
import threading
from unittest.mock import Mock

import pytest

from audio_sync import SrtEntry, SyncPhase, SyncSession, SyncStatus
from conftest import SAMPLE_RATE, push_clip


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


async def _wait_until(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.02)
    return True


@pytest.fixture
def clock():
    return FakeClock(100.0)


@pytest.fixture
def session(reference_track, clock):
    s = SyncSession(SAMPLE_RATE, tick_interval=0.05, clock=clock, entries=[
        SrtEntry("1", 10.0, 11.0, "Lights dim."),
        SrtEntry("2", 36.0, 38.0, "The train arrives."),
    ])
    s.build_master_fingerprint(reference_track, SAMPLE_RATE)
    return s


def test_manual_ticks_lock(session, clock, live_clip):
    push_clip(session.buffer, live_clip)

    assert session.tick().status == SyncStatus.VERIFYING
    clock.now += 2.0
    state = session.tick()

    assert state.locked
    assert session.current_position() == pytest.approx(35.5, abs=0.05)


def test_state_change_callback_only_on_change(reference_track, clock, live_clip):
    callback = Mock()
    session = SyncSession(SAMPLE_RATE, clock=clock, on_state_change=callback)
    session.build_master_fingerprint(reference_track, SAMPLE_RATE)
    push_clip(session.buffer, live_clip)

    session.tick()
    session.tick()  # same clip, same clock: confirms and commits
    clock.now += 1.0
    session.tick()
    session.tick()

    statuses = [call.args[0].status for call in callback.call_args_list]
    assert statuses == [SyncStatus.VERIFYING, SyncStatus.COMMITTED, SyncStatus.LOCKED]


def test_callback_errors_do_not_break_tick(reference_track, clock, live_clip):
    session = SyncSession(SAMPLE_RATE, clock=clock, on_state_change=Mock(side_effect=RuntimeError("ui gone")))
    session.build_master_fingerprint(reference_track, SAMPLE_RATE)
    push_clip(session.buffer, live_clip)

    assert session.tick().status == SyncStatus.VERIFYING


def test_poll_cue_waits_for_timeline(session, clock):
    clock.now = 200.0
    assert session.poll_cue() is None

    session.seek(10.0)
    cue = session.poll_cue()

    assert cue.text == "Lights dim."
    assert session.poll_cue() is None


def test_poll_cue_after_lock(session, clock, live_clip):
    push_clip(session.buffer, live_clip)
    session.tick()
    clock.now += 2.0
    session.tick()

    clock.now += 0.5  # believed position 36.0
    assert session.poll_cue().id == "2"


def test_get_status(session, live_clip):
    push_clip(session.buffer, live_clip)
    session.tick()

    status = session.get_status()

    assert status["has_master"]
    assert status["buffer_chunks"] == 30
    assert status["buffer_seconds"] == pytest.approx(6.0)
    assert status["tick_count"] == 1
    assert status["failed_ticks"] == 0
    assert status["status"] == "verifying"
    assert not status["is_running"]


def test_session_without_master_reports_no_master(clock, live_clip):
    session = SyncSession(SAMPLE_RATE, clock=clock)
    push_clip(session.buffer, live_clip)

    assert session.tick().status == SyncStatus.NO_MASTER


def test_concurrent_notifications_report_change_once(clock):
    callback = Mock()
    session = SyncSession(SAMPLE_RATE, clock=clock, on_state_change=callback)
    state = session.controller.seek(12.0)
    barrier = threading.Barrier(8)

    def notify():
        barrier.wait()
        session._notify(state)

    threads = [threading.Thread(target=notify) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    callback.assert_called_once_with(state)


async def test_loop_locks_and_stop_discards_state(session, clock, live_clip):
    await session.start()
    # The task has not run yet; the buffer is filled before the first tick
    push_clip(session.buffer, live_clip)
    assert session.is_running

    locked = await _wait_until(lambda: session.state.locked)
    assert locked

    await session.stop()

    state = session.state
    assert not session.is_running
    assert state.phase == SyncPhase.IDLE
    assert not state.locked
    assert not state.has_synced
    assert session.buffer.is_empty


async def test_loop_survives_failing_tick(session, live_clip):
    real_tick = session.controller.tick
    calls = {"n": 0}

    def flaky_tick(now=None):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("scan blew up")
        return real_tick(now)

    session.controller.tick = flaky_tick
    await session.start()
    push_clip(session.buffer, live_clip)

    assert await _wait_until(lambda: session.get_status()["tick_count"] >= 2)
    await session.stop()

    assert session.get_status()["failed_ticks"] == 1


async def test_start_twice_keeps_one_loop(session):
    await session.start()
    task = session._task
    await session.start()

    assert session._task is task
    await session.stop()
