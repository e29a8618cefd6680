"""
CineVoz Sync command line.

Offline tools for checking a reference track against a recorded clip:

    python sync_cinevoz.py match reference.wav clip.wav [--hint 95 --width 30]
    python sync_cinevoz.py replay reference.wav room_recording.wav [--srt film.srt]

`match` runs a single correlation scan. `replay` feeds a recording through
a full sync session in capture-sized chunks on a simulated clock, printing
the controller state after every tick.
"""

import argparse
import sys
import wave
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from config import DEBUG, SYNC
from logging_config import setup_logging, get_logger
import audio_sync.matcher
from audio_sync import (
    AudioMatcher, CueTracker, SrtEntry, SyncSession, extract_envelope, format_time, parse_srt, to_float_pcm
)

logger = get_logger(__name__)

CHUNK_FRAMES = 4096  # One capture callback's worth of samples

_SAMPLE_TYPES = {1: np.uint8, 2: '<i2', 4: '<i4'}


def load_wav(path: Path) -> Tuple[np.ndarray, int]:
    """
    Read a PCM WAV file as mono float samples.

    Args:
        path: WAV file (8, 16 or 32-bit integer PCM)

    Returns:
        (samples in [-1, 1], sample rate)
    """
    with wave.open(str(path), 'rb') as wf:
        channels = wf.getnchannels()
        width = wf.getsampwidth()
        rate = wf.getframerate()
        frames = wf.readframes(wf.getnframes())

    if width not in _SAMPLE_TYPES:
        raise ValueError(f"{path.name}: unsupported sample width {width * 8} bits")

    data = np.frombuffer(frames, dtype=_SAMPLE_TYPES[width])
    if channels > 1:
        data = data.reshape(-1, channels)
    return to_float_pcm(data), rate


def _load_subtitles(path: Optional[Path]) -> List[SrtEntry]:
    if path is None:
        return []
    return parse_srt(path.read_text(encoding='utf-8-sig'))


def cmd_match(args) -> int:
    reference, ref_rate = load_wav(args.reference)
    clip, clip_rate = load_wav(args.clip)

    matcher = AudioMatcher()
    matcher.build_master(reference, ref_rate)
    live = extract_envelope(clip, clip_rate, matcher.rate_hz)
    result = matcher.find_match(live, args.hint, args.width)

    if result.reason:
        print(f"No match: {result.reason}")
        return 1

    position = result.offset_seconds - SYNC["latency_compensation"] if args.compensate else result.offset_seconds
    print(f"Clip ends at {format_time(position)} ({position:.2f}s), confidence {result.confidence:.1f}%")

    entries = _load_subtitles(args.srt)
    if entries:
        entry = CueTracker(entries).entry_at(position)
        if entry:
            print(f"Subtitle [{entry.id}] {entry.text}")
    return 0


def cmd_replay(args) -> int:
    reference, ref_rate = load_wav(args.reference)
    recording, rec_rate = load_wav(args.recording)

    clock = [0.0]
    session = SyncSession(rec_rate, entries=_load_subtitles(args.srt), clock=lambda: clock[0])
    session.build_master_fingerprint(reference, ref_rate)

    seconds_per_chunk = CHUNK_FRAMES / rec_rate
    next_tick = session.tick_interval
    for start in range(0, len(recording) - CHUNK_FRAMES + 1, CHUNK_FRAMES):
        session.push_live_chunk(recording[start:start + CHUNK_FRAMES])
        clock[0] += seconds_per_chunk

        if clock[0] >= next_tick:
            next_tick += session.tick_interval
            state = session.tick()
            print(
                f"t={clock[0]:7.2f}s  {state.phase.value:<11} {state.status.value:<19} "
                f"conf={state.confidence:5.1f}%  timeline={format_time(session.current_position())}"
            )

        cue = session.poll_cue()
        if cue:
            print(f"  cue [{cue.id}] {cue.text}")

    return 0 if session.state.locked else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='CineVoz Sync - locate live audio inside a reference track')
    sub = parser.add_subparsers(dest='command', required=True)

    match = sub.add_parser('match', help='Find where a recorded clip sits in the reference track')
    match.add_argument('reference', type=Path, help='Reference track (WAV)')
    match.add_argument('clip', type=Path, help='Recorded clip (WAV, at least 2 seconds)')
    match.add_argument('--hint', type=float, default=None, help='Believed position in seconds (local scan)')
    match.add_argument('--width', type=float, default=None, help='Local scan half-width in seconds')
    match.add_argument('--compensate', action='store_true', help='Apply the configured latency compensation')
    match.add_argument('--srt', type=Path, default=None, help='Print the subtitle at the matched position')
    match.set_defaults(func=cmd_match)

    replay = sub.add_parser('replay', help='Replay a room recording through a sync session')
    replay.add_argument('reference', type=Path, help='Reference track (WAV)')
    replay.add_argument('recording', type=Path, help='Live recording (WAV)')
    replay.add_argument('--srt', type=Path, default=None, help='Subtitle cues to fire while replaying')
    replay.set_defaults(func=cmd_replay)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(
        console_level=DEBUG.get("log_level", "INFO"),
        file_level="DEBUG" if DEBUG.get("log_detailed", False) else "INFO",
        console=DEBUG.get("log_to_console", True),
        log_file=DEBUG.get("log_file", "cinevoz.log"),
        max_bytes=DEBUG["log_rotation"]["max_bytes"],
        backup_count=DEBUG["log_rotation"]["backup_count"],
        quiet_loggers=[] if DEBUG.get("log_matcher", True) else [audio_sync.matcher.__name__],
    )

    try:
        return args.func(args)
    except (OSError, wave.Error, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
