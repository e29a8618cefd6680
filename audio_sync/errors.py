"""
Exception types for the sync core.

Only programming errors are raised. Recoverable conditions such as a short
buffer, a weak correlation or a silent microphone are reported through
SyncStatus on the controller state instead.
"""


class SyncError(Exception):
    """Base class for sync core errors."""


class NoMasterFingerprintError(SyncError):
    """The matcher was asked to scan before a reference track was fingerprinted."""

    def __init__(self, message: str = "Master fingerprint has not been built"):
        super().__init__(message)


class InvalidAudioError(SyncError, ValueError):
    """Audio input has an unusable shape or sample rate."""
