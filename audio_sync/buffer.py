"""
Rolling Live Buffer

Keeps the most recent live capture blocks for building live fingerprints.

Design Note:
    The capture callback runs on its own thread and must never wait on a
    tick. Pushes and snapshots only hold the lock long enough to append or
    copy chunk references, and eviction drops whole chunks, so a snapshot is
    always a consistent sequence of complete blocks.
"""

import threading
from collections import deque
from typing import Deque

import numpy as np

from config import BUFFER
from logging_config import get_logger
from .envelope import to_float_pcm

logger = get_logger(__name__)


class RollingLiveBuffer:
    """
    FIFO of fixed-size PCM chunks with a chunk-count cap.

    Features:
    - Oldest-first eviction once max_chunks is exceeded
    - Point-in-time snapshot as one concatenated float array
    - Thread-safe push/snapshot/clear
    """

    def __init__(self, sample_rate: int, max_chunks: int = BUFFER["max_chunks"]):
        """
        Initialize buffer.

        Args:
            sample_rate: Sample rate of the pushed chunks
            max_chunks: Maximum number of chunks retained
        """
        if max_chunks < 1:
            raise ValueError("max_chunks must be at least 1")
        self.sample_rate = sample_rate
        self.max_chunks = max_chunks
        self._chunks: Deque[np.ndarray] = deque(maxlen=max_chunks)
        self._samples = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def chunk_count(self) -> int:
        """Number of chunks currently held."""
        return len(self._chunks)

    @property
    def duration_seconds(self) -> float:
        """Seconds of audio currently held."""
        return self._samples / self.sample_rate

    @property
    def is_empty(self) -> bool:
        return not self._chunks

    def is_ready(self, min_chunks: int = BUFFER["min_chunks"]) -> bool:
        """True once enough chunks are held to attempt a match."""
        return len(self._chunks) >= min_chunks

    def push(self, chunk) -> None:
        """
        Append one capture block.

        Args:
            chunk: PCM samples (float or integer, mono or frames x channels).
                   The data is copied, so the caller may reuse its array.
        """
        data = np.array(to_float_pcm(chunk), dtype=np.float64)
        with self._lock:
            if len(self._chunks) == self.max_chunks:
                self._samples -= len(self._chunks[0])
            self._chunks.append(data)
            self._samples += len(data)

    def snapshot(self) -> np.ndarray:
        """
        Concatenate the chunks present right now.

        Returns:
            float64 array (empty if the buffer is empty)
        """
        with self._lock:
            chunks = list(self._chunks)
        if not chunks:
            return np.zeros(0, dtype=np.float64)
        return np.concatenate(chunks)

    def clear(self) -> None:
        """Drop all buffered audio."""
        with self._lock:
            self._chunks.clear()
            self._samples = 0
        logger.debug("Live buffer cleared")

    def get_level(self) -> float:
        """
        Get current audio level (RMS) of the most recent chunk.

        Returns:
            Level from 0.0 to 1.0
        """
        with self._lock:
            if not self._chunks:
                return 0.0
            recent = self._chunks[-1]
        if len(recent) == 0:
            return 0.0
        rms = float(np.sqrt(np.mean(recent ** 2)))
        return min(1.0, rms * 3)  # Amplify for visibility
