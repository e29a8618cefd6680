"""
Subtitle Cues

Parses SRT scripts and tracks which cues have already been announced so
the host can fire each line once as the synced timeline passes it.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from config import SUBTITLES
from logging_config import get_logger

logger = get_logger(__name__)

_TIMECODE_RE = re.compile(r'(\d{2}:\d{2}:\d{2},\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2},\d{3})')
_TAG_RE = re.compile(r'<[^>]*>')


@dataclass(frozen=True)
class SrtEntry:
    id: str
    start_time: float
    end_time: float
    text: str


def parse_time(timecode: str) -> float:
    """Convert an SRT timestamp (00:00:00,000) to seconds."""
    hms, ms = timecode.split(',')
    h, m, s = (int(part) for part in hms.split(':'))
    return h * 3600 + m * 60 + s + int(ms) / 1000


def format_time(seconds: Optional[float]) -> str:
    """Format seconds as HH:MM:SS ("--:--:--" when unknown)."""
    if seconds is None:
        return "--:--:--"
    total = int(max(0.0, seconds))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def parse_srt(data: str) -> List[SrtEntry]:
    """
    Parse an SRT document.

    Blocks need an id line, a timecode line and at least one text line;
    anything else is skipped. Multi-line text is joined with spaces and
    HTML-style tags are stripped.

    Args:
        data: Raw SRT text

    Returns:
        Entries in file order
    """
    normalized = data.replace('\r\n', '\n').replace('\r', '\n')
    entries = []

    for block in normalized.split('\n\n'):
        lines = block.strip().split('\n')
        if len(lines) < 3:
            continue

        match = _TIMECODE_RE.search(lines[1].strip())
        if not match:
            logger.debug(f"Skipping SRT block without timecode: {lines[0].strip()!r}")
            continue

        text = _TAG_RE.sub('', ' '.join(line.strip() for line in lines[2:]))
        entries.append(SrtEntry(
            id=lines[0].strip(),
            start_time=parse_time(match.group(1)),
            end_time=parse_time(match.group(2)),
            text=text,
        ))

    return entries


class CueTracker:
    """
    Remembers which cues were already fired.

    due() is polled with the current timeline position; seek() calls
    forget_after() so lines ahead of the new position can fire again.
    """

    def __init__(self, entries: Iterable[SrtEntry] = (), window: float = SUBTITLES["cue_window"]):
        self.entries = sorted(entries, key=lambda e: e.start_time)
        self.window = window
        self._announced: Set[str] = set()

    def __len__(self) -> int:
        return len(self.entries)

    def load(self, entries: Iterable[SrtEntry]) -> None:
        """Replace the script and forget announcement history."""
        self.entries = sorted(entries, key=lambda e: e.start_time)
        self._announced.clear()

    def is_announced(self, entry_id: str) -> bool:
        return entry_id in self._announced

    def due(self, position: float) -> Optional[SrtEntry]:
        """
        Return the next cue to fire at `position`, marking it as fired.

        Args:
            position: Current timeline position in seconds

        Returns:
            The cue whose start lies within the window, or None
        """
        for entry in self.entries:
            if entry.start_time - position > self.window:
                break
            if abs(entry.start_time - position) < self.window and entry.id not in self._announced:
                self._announced.add(entry.id)
                return entry
        return None

    def entry_at(self, position: float) -> Optional[SrtEntry]:
        """The cue whose [start, end] span contains `position`."""
        for entry in self.entries:
            if entry.start_time <= position <= entry.end_time:
                return entry
        return None

    def forget_after(self, position: float) -> int:
        """
        Allow cues that start after `position` to fire again.

        Returns:
            Number of cues re-armed
        """
        rearmed = {e.id for e in self.entries if e.start_time > position and e.id in self._announced}
        self._announced -= rearmed
        if rearmed:
            logger.debug(f"Re-armed {len(rearmed)} cues after {format_time(position)}")
        return len(rearmed)

    def reset(self) -> None:
        self._announced.clear()
