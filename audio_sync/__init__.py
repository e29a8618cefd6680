"""
Audio Sync Module for CineVoz

Locates the playback position of a reference track from short live
microphone samples using energy-envelope fingerprints, and keeps the
position locked with a verifying sync controller.
"""

from .buffer import RollingLiveBuffer
from .controller import CandidateLock, ScanMode, SyncController, SyncPhase, SyncState, SyncStatus
from .envelope import Fingerprint, build_fingerprint, extract_envelope, to_float_pcm
from .errors import InvalidAudioError, NoMasterFingerprintError, SyncError
from .matcher import AudioMatcher, MatchResult, find_match
from .session import SyncSession
from .subtitles import CueTracker, SrtEntry, format_time, parse_srt

__all__ = [
    'AudioMatcher',
    'CandidateLock',
    'CueTracker',
    'Fingerprint',
    'InvalidAudioError',
    'MatchResult',
    'NoMasterFingerprintError',
    'RollingLiveBuffer',
    'ScanMode',
    'SrtEntry',
    'SyncController',
    'SyncError',
    'SyncPhase',
    'SyncSession',
    'SyncState',
    'SyncStatus',
    'build_fingerprint',
    'extract_envelope',
    'find_match',
    'format_time',
    'parse_srt',
    'to_float_pcm',
]
